"""
GitHub repository manager

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

import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    UnknownObjectException,
)

from .base import (
    DEFAULT_API_TIMEOUT,
    DiscoveryError,
    Repository,
    RepositoryManager,
    Target,
    excerpt,
)
from .credentials import embed_credentials

PER_PAGE = 100


class GitHubManager(RepositoryManager):
    """
    Lists the repositories of a GitHub user or organization.

    PyGithub's paginated lists follow the Link headers, so accounts with more
    than one page of repositories are listed completely.
    """

    platform = "github"

    def __init__(
        self, target: Target, timeout: float = DEFAULT_API_TIMEOUT, logger=None
    ):
        super().__init__(target, timeout, logger)

        client_args = {"per_page": PER_PAGE, "timeout": timeout}
        if target.url:
            client_args["base_url"] = target.url.rstrip("/")
        if target.token:
            client_args["auth"] = Auth.Token(target.token)
        else:
            self.logger.warning(
                f"[CONFIG] No GitHub token for {target.entity}, only public repositories will be listed"
            )
        self.client = Github(**client_args)

    def list_repositories(self) -> List[Repository]:
        kind = "organization" if self.target.is_organization else "user"
        self.logger.info(
            f"[DISCOVER] Listing GitHub repositories of {kind} {self.target.entity}"
        )

        try:
            repos = [self._to_repository(repo) for repo in self._listing()]
        except BadCredentialsException as e:
            raise DiscoveryError(
                f"GitHub rejected the token for {self.target.entity}: {e.status} {excerpt(e.data)}"
            ) from e
        except UnknownObjectException as e:
            raise DiscoveryError(
                f"GitHub {kind} {self.target.entity} was not found ({e.status})"
            ) from e
        except GithubException as e:
            raise DiscoveryError(
                f"GitHub returned HTTP {e.status} while listing repositories of {self.target.entity}: {excerpt(e.data)}"
            ) from e
        except requests.RequestException as e:
            raise DiscoveryError(
                f"Failed to connect to GitHub to retrieve the list of repositories: {e}"
            ) from e

        return self.deduplicate(repos)

    def _listing(self):
        if self.target.is_organization:
            return self.client.get_organization(self.target.entity).get_repos(
                type="all"
            )

        if self.target.token:
            # Private repositories are only listed through the authenticated user
            user = self.client.get_user()
            if user.login.lower() == self.target.entity.lower():
                return user.get_repos(affiliation="owner")

        return self.client.get_user(self.target.entity).get_repos(type="owner")

    def _to_repository(self, repo) -> Repository:
        name = repo.name
        clone_url = repo.clone_url
        if not isinstance(name, str) or not name:
            raise DiscoveryError(
                f"GitHub repository entry has no usable 'name' field: {excerpt(name)}"
            )
        if not isinstance(clone_url, str) or not clone_url:
            raise DiscoveryError(
                f"GitHub repository {name} has no usable 'clone_url' field: {excerpt(clone_url)}"
            )

        if self.target.token:
            try:
                clone_url = embed_credentials(
                    clone_url, self.target.entity, self.target.token
                )
            except ValueError as e:
                raise DiscoveryError(
                    f"GitHub repository {name} has an unexpected 'clone_url': {e}"
                ) from e

        return Repository(name=name, clone_url=clone_url)
