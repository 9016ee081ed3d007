"""
Base classes for repository discovery

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

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from loguru import logger

USER_TYPE = "users"
ORGANIZATION_TYPE = "orgs"

DEFAULT_API_TIMEOUT = 30


class BackupError(Exception):
    """Base class for every error raised while backing up repositories."""


class ConfigurationError(BackupError):
    """Invalid target configuration (unknown source, bad filter pattern, ...)."""


class DiscoveryError(BackupError):
    """The list of repositories could not be retrieved from a provider."""


@dataclass(frozen=True)
class Target:
    name: str
    source: str
    entity: str
    type: str = USER_TYPE
    token: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    url: Optional[str] = None
    skip: Optional[str] = None
    only: Optional[str] = None

    @property
    def is_organization(self) -> bool:
        return self.type == ORGANIZATION_TYPE

    def __repr__(self) -> str:
        # Credentials are left out so targets can be logged safely
        return (
            f"Target(name={self.name!r}, source={self.source!r}, "
            f"entity={self.entity!r}, type={self.type!r})"
        )


@dataclass(frozen=True)
class Repository:
    name: str
    clone_url: str


def excerpt(payload: Any, limit: int = 200) -> str:
    """Short printable fragment of a provider payload for error messages"""
    text = repr(payload)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class RepositoryManager(ABC):
    platform = ""

    def __init__(
        self, target: Target, timeout: float = DEFAULT_API_TIMEOUT, logger=None
    ):
        self.target = target
        self.timeout = timeout
        self.logger = logger or _default_logger(target)

    @abstractmethod
    def list_repositories(self) -> List[Repository]:
        pass

    def deduplicate(self, repos: List[Repository]) -> List[Repository]:
        seen = set()
        unique_repos = []
        for repo in repos:
            if repo.name in seen:
                self.logger.warning(
                    f"[DISCOVER] Duplicate repository {repo.name} in {self.platform} listing, keeping the first one"
                )
                continue
            seen.add(repo.name)
            unique_repos.append(repo)
        return unique_repos


def _default_logger(target: Target):
    return logger.bind(target=target.name)
