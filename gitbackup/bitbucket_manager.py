"""
Bitbucket repository manager

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

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlsplit

import requests

from .base import (
    DEFAULT_API_TIMEOUT,
    DiscoveryError,
    Repository,
    RepositoryManager,
    Target,
    excerpt,
)
from .credentials import embed_credentials

API_URL = "https://api.bitbucket.org/2.0"
PAGE_LENGTH = 100


@dataclass
class BitbucketPage:
    """
    One page of a Bitbucket Cloud v2 listing.

    Bitbucket wraps results in an envelope object: the repositories are in
    ``values`` and the pagination state is carried by ``next``, ``page``,
    ``pagelen`` and ``size`` (all optional).
    """

    values: List[Dict[str, Any]]
    next: Optional[str] = None
    page: Optional[int] = None
    pagelen: Optional[int] = None
    size: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "BitbucketPage":
        if not isinstance(payload, dict):
            raise DiscoveryError(
                f"Expected a paginated envelope object from Bitbucket, got {type(payload).__name__}: {excerpt(payload)}"
            )

        values = payload.get("values")
        if not isinstance(values, list):
            raise DiscoveryError(
                f"Bitbucket response field 'values' is missing or not a list: {excerpt(payload)}"
            )

        next_url = payload.get("next")
        if next_url is not None and not isinstance(next_url, str):
            raise DiscoveryError(
                f"Bitbucket response field 'next' is not a string: {excerpt(next_url)}"
            )

        counters = {}
        for field in ("page", "pagelen", "size"):
            value = payload.get(field)
            if value is not None and (
                not isinstance(value, int) or isinstance(value, bool)
            ):
                raise DiscoveryError(
                    f"Bitbucket response field '{field}' is not an integer: {excerpt(value)}"
                )
            counters[field] = value

        return cls(values=values, next=next_url or None, **counters)


class BitbucketManager(RepositoryManager):
    """
    Lists the repositories of a Bitbucket Cloud workspace.

    Authentication is HTTP basic auth with an app password. The login defaults
    to the workspace name, which is how personal workspaces work; set
    ``username`` on the target when the workspace belongs to a team.
    """

    platform = "bitbucket"

    def __init__(
        self,
        target: Target,
        timeout: float = DEFAULT_API_TIMEOUT,
        logger=None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(target, timeout, logger)
        self.api_url = (target.url or API_URL).rstrip("/")
        self.username = target.username or target.entity
        self.session = session or requests.Session()

        if not target.password:
            self.logger.warning(
                f"[CONFIG] No Bitbucket password for {target.entity}, only public repositories will be listed"
            )

    def _check_same_origin(self, url: str):
        """Credentials are only ever sent to the configured API host"""
        api = urlsplit(self.api_url)
        link = urlsplit(url)
        if (link.scheme, link.netloc.lower()) != (api.scheme, api.netloc.lower()):
            raise DiscoveryError(
                f"Bitbucket pagination link {url} points outside {api.scheme}://{api.netloc}"
            )

    def list_repositories(self) -> List[Repository]:
        self.logger.info(
            f"[DISCOVER] Listing Bitbucket repositories of workspace {self.target.entity}"
        )

        url = f"{self.api_url}/repositories/{quote(self.target.entity, safe='')}"
        params = {"pagelen": PAGE_LENGTH}
        visited = set()
        expected_size = None
        repos = []

        while url:
            if url in visited:
                raise DiscoveryError(
                    f"Bitbucket pagination returned an already visited page: {url}"
                )
            visited.add(url)
            self._check_same_origin(url)

            page = self._fetch_page(url, params)
            # The next link already carries the query string
            params = None

            for value in page.values:
                repos.append(self._to_repository(value))
            if page.size is not None:
                expected_size = page.size
            url = page.next

        if expected_size is not None and expected_size != len(repos):
            self.logger.warning(
                f"[DISCOVER] Bitbucket announced {expected_size} repositories but {len(repos)} were listed"
            )

        return self.deduplicate(repos)

    def _fetch_page(self, url: str, params: Optional[dict]) -> BitbucketPage:
        auth = (self.username, self.target.password) if self.target.password else None
        try:
            response = self.session.get(
                url, params=params, auth=auth, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DiscoveryError(
                f"Failed to connect to Bitbucket to retrieve the list of repositories: {e}"
            ) from e

        if response.status_code == 401:
            raise DiscoveryError(
                f"Bitbucket authentication failed for {self.username}: check the app password "
                "(required permissions: Account Read, Repositories Read)"
            )
        if response.status_code != 200:
            raise DiscoveryError(
                f"Bitbucket returned HTTP {response.status_code} for {url}: {response.text[:500]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DiscoveryError(
                f"Bitbucket response is not valid JSON: {response.text[:200]}"
            ) from e

        return BitbucketPage.from_payload(payload)

    def _to_repository(self, value: Any) -> Repository:
        if not isinstance(value, dict):
            raise DiscoveryError(
                f"Bitbucket repository entry is not an object: {excerpt(value)}"
            )

        name = value.get("name")
        if not isinstance(name, str) or not name:
            raise DiscoveryError(
                f"Bitbucket repository entry has no usable 'name' field: {excerpt(value)}"
            )

        links = value.get("links")
        if not isinstance(links, dict):
            raise DiscoveryError(
                f"Bitbucket repository {name} has no 'links' object: {excerpt(links)}"
            )
        clone_links = links.get("clone")
        if not isinstance(clone_links, list):
            raise DiscoveryError(
                f"Bitbucket repository {name} has no 'links.clone' list: {excerpt(clone_links)}"
            )

        href = None
        for link in clone_links:
            if isinstance(link, dict) and link.get("name") == "https":
                href = link.get("href")
        if not isinstance(href, str) or not href:
            raise DiscoveryError(
                f"Could not determine HTTPS cloning URL for {name}: {excerpt(clone_links)}"
            )

        # Without a password the user info is dropped so git never prompts
        username = self.username if self.target.password else None
        try:
            clone_url = embed_credentials(href, username, self.target.password)
        except ValueError as e:
            raise DiscoveryError(
                f"Bitbucket repository {name} has an unexpected HTTPS clone link: {e}"
            ) from e

        return Repository(name=name, clone_url=clone_url)
