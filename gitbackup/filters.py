"""
Repository inclusion rules

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import re
from typing import Optional, Pattern

from .base import ConfigurationError, Target


def _compile(field: str, pattern: Optional[str]) -> Optional[Pattern]:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(
            f'"{field}" does not specify a valid regular expression: {pattern!r}: {e}'
        ) from e


class InclusionFilter:
    """
    Decides whether a repository is backed up.

    ``skip`` excludes every name it matches; otherwise ``only`` restricts the
    backup to the names it matches. When both are configured only ``skip`` is
    consulted. Patterns are searched anywhere in the name, anchor them with
    ``^``/``$`` for exact matches. Both patterns are compiled up front so a
    broken one is reported before anything is backed up.
    """

    def __init__(self, skip: Optional[str] = None, only: Optional[str] = None):
        self.skip = _compile("skip", skip)
        self.only = _compile("only", only)

    @classmethod
    def for_target(cls, target: Target) -> "InclusionFilter":
        return cls(skip=target.skip, only=target.only)

    def includes(self, repository_name: str) -> bool:
        if self.skip is not None:
            return self.skip.search(repository_name) is None
        if self.only is not None:
            return self.only.search(repository_name) is not None
        return True


def should_include(repository_name: str, target: Target) -> bool:
    return InclusionFilter.for_target(target).includes(repository_name)
