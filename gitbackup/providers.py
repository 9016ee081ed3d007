"""
Registry of supported git hosting providers

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

from typing import Dict, Type

from .base import DEFAULT_API_TIMEOUT, ConfigurationError, RepositoryManager, Target
from .bitbucket_manager import BitbucketManager
from .github_manager import GitHubManager
from .gitlab_manager import GitLabManager

MANAGERS: Dict[str, Type[RepositoryManager]] = {
    GitHubManager.platform: GitHubManager,
    BitbucketManager.platform: BitbucketManager,
    GitLabManager.platform: GitLabManager,
}


def get_manager(
    target: Target, timeout: float = DEFAULT_API_TIMEOUT, logger=None
) -> RepositoryManager:
    """Build the repository manager matching the target's source"""
    manager_class = MANAGERS.get(target.source)
    if manager_class is None:
        raise ConfigurationError(
            f'"{target.source}" is not a recognized source type '
            f"(supported: {', '.join(sorted(MANAGERS))})"
        )
    return manager_class(target, timeout=timeout, logger=logger)
