"""
GitLab repository manager

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

from typing import List

import gitlab
import requests
from gitlab.exceptions import GitlabAuthenticationError, GitlabError

from .base import (
    DEFAULT_API_TIMEOUT,
    DiscoveryError,
    Repository,
    RepositoryManager,
    Target,
    excerpt,
)
from .credentials import embed_credentials

GITLAB_URL = "https://gitlab.com"
PER_PAGE = 100


class GitLabManager(RepositoryManager):
    platform = "gitlab"

    def __init__(
        self, target: Target, timeout: float = DEFAULT_API_TIMEOUT, logger=None
    ):
        super().__init__(target, timeout, logger)
        self.url = (target.url or GITLAB_URL).rstrip("/")
        self.client = gitlab.Gitlab(
            self.url,
            private_token=target.token,
            timeout=timeout,
            per_page=PER_PAGE,
        )

    def list_repositories(self) -> List[Repository]:
        kind = "group" if self.target.is_organization else "user"
        self.logger.info(
            f"[DISCOVER] Listing GitLab projects of {kind} {self.target.entity} on {self.url}"
        )

        try:
            repos = [self._to_repository(project) for project in self._projects()]
        except GitlabAuthenticationError as e:
            raise DiscoveryError(
                f"GitLab rejected the token for {self.target.entity}: {e.error_message}"
            ) from e
        except GitlabError as e:
            raise DiscoveryError(
                f"GitLab returned HTTP {e.response_code} while listing projects of {self.target.entity}: {e.error_message}"
            ) from e
        except requests.RequestException as e:
            raise DiscoveryError(
                f"Failed to connect to GitLab to retrieve the list of repositories: {e}"
            ) from e

        return self.deduplicate(repos)

    def _projects(self):
        if self.target.is_organization:
            group = self.client.groups.get(self.target.entity, lazy=True)
            return group.projects.list(iterator=True)

        users = self.client.users.list(username=self.target.entity, get_all=False)
        if not users:
            raise DiscoveryError(f"GitLab user {self.target.entity} was not found")
        return users[0].projects.list(iterator=True)

    def _to_repository(self, project) -> Repository:
        name = getattr(project, "path", None)
        clone_url = getattr(project, "http_url_to_repo", None)
        if not isinstance(name, str) or not name:
            raise DiscoveryError(
                f"GitLab project entry has no usable 'path' field: {excerpt(name)}"
            )
        if not isinstance(clone_url, str) or not clone_url:
            raise DiscoveryError(
                f"GitLab project {name} has no usable 'http_url_to_repo' field: {excerpt(clone_url)}"
            )

        if self.target.token:
            try:
                clone_url = embed_credentials(clone_url, "oauth2", self.target.token)
            except ValueError as e:
                raise DiscoveryError(
                    f"GitLab project {name} has an unexpected 'http_url_to_repo': {e}"
                ) from e

        return Repository(name=name, clone_url=clone_url)
