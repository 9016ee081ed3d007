"""
git-backup - Mirror backups of Git hosting accounts

Keeps a local bare mirror of every repository owned by GitHub, GitLab and
Bitbucket users or organizations, updated incrementally on each run.

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

__version__ = "1.0.0"
__license__ = "Apache-2.0"
__description__ = "Mirror backups of every repository of GitHub, GitLab and Bitbucket accounts"

from .base import (
    BackupError,
    ConfigurationError,
    DiscoveryError,
    Repository,
    RepositoryManager,
    Target,
)
from .bitbucket_manager import BitbucketManager
from .config import BackupConfig, load_config
from .filters import InclusionFilter, should_include
from .github_manager import GitHubManager
from .gitlab_manager import GitLabManager
from .main import main
from .mirror import BackupOutcome, BackupStatus, MirrorSynchronizer
from .runner import TargetRunner, TargetSummary, run_batch

__all__ = [
    "BackupConfig",
    "BackupError",
    "BackupOutcome",
    "BackupStatus",
    "BitbucketManager",
    "ConfigurationError",
    "DiscoveryError",
    "GitHubManager",
    "GitLabManager",
    "InclusionFilter",
    "MirrorSynchronizer",
    "Repository",
    "RepositoryManager",
    "Target",
    "TargetRunner",
    "TargetSummary",
    "load_config",
    "main",
    "run_batch",
    "should_include",
]
