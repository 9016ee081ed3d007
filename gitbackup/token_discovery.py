"""
Credential lookup for targets that do not configure any

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

import netrc
import os
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import yaml
from loguru import logger

from .base import Target

GITHUB_HOST = "github.com"
GITLAB_HOST = "gitlab.com"
BITBUCKET_HOSTS = ("bitbucket.org", "api.bitbucket.org")

# Variables the gh CLI reads for github.com and for Enterprise hosts
GITHUB_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
GITHUB_ENTERPRISE_ENV_VARS = ("GH_ENTERPRISE_TOKEN", "GITHUB_ENTERPRISE_TOKEN")


def host_of(url: Optional[str], default: str) -> str:
    """Web host a provider URL belongs to (``api.github.com`` is github.com)"""
    if not url:
        return default
    host = (urlsplit(url).hostname or default).lower()
    if host == f"api.{GITHUB_HOST}":
        return GITHUB_HOST
    return host


class CredentialResolver:
    """
    Fills in the token or password of targets that leave it empty.

    Lookups are per host: a GitHub Enterprise target gets the token of its
    own instance, never the github.com one. Results are cached for the life
    of the resolver, so ``gh`` runs and config files are read at most once per
    host however many targets share it.

    Sources, in order:
        GitHub: GITHUB_TOKEN / GH_TOKEN (github.com) or GH_ENTERPRISE_TOKEN /
            GITHUB_ENTERPRISE_TOKEN (other hosts), then ``gh auth token``
        GitLab: GITLAB_TOKEN, then the glab CLI config for the host
        Bitbucket: BITBUCKET_USERNAME + BITBUCKET_APP_PASSWORD, then .netrc;
            when the target names a username only entries for that login match
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
        gh_binary: str = "gh",
    ):
        self.environ = os.environ if environ is None else environ
        self.home = Path(home) if home else Path.home()
        self.gh_binary = gh_binary
        self._github_tokens: Dict[str, Optional[str]] = {}
        self._glab_hosts: Optional[dict] = None
        self._netrc: Optional[netrc.netrc] = None
        self._netrc_loaded = False

    def resolve(self, target: Target) -> Target:
        if target.source == "github" and not target.token:
            token = self.github_token(target.url)
            if token:
                return replace(target, token=token)
        elif target.source == "gitlab" and not target.token:
            token = self.gitlab_token(target.url)
            if token:
                return replace(target, token=token)
        elif target.source == "bitbucket" and not target.password:
            password, username = self.bitbucket_credentials(target.username)
            if password:
                return replace(target, password=password, username=username)
        return target

    def github_token(self, api_url: Optional[str] = None) -> Optional[str]:
        host = host_of(api_url, GITHUB_HOST)
        if host not in self._github_tokens:
            self._github_tokens[host] = self._find_github_token(host)
        return self._github_tokens[host]

    def _find_github_token(self, host: str) -> Optional[str]:
        env_vars = GITHUB_ENV_VARS if host == GITHUB_HOST else GITHUB_ENTERPRISE_ENV_VARS
        for var in env_vars:
            if self.environ.get(var):
                logger.debug(f"[TOKEN] GitHub token for {host} found in {var}")
                return self.environ[var]

        try:
            result = subprocess.run(
                [self.gh_binary, "auth", "token", "--hostname", host],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"[TOKEN] gh CLI unavailable: {e}")
            return None

        if result.returncode == 0 and result.stdout.strip():
            logger.info(f"[TOKEN] GitHub token for {host} discovered from gh CLI")
            return result.stdout.strip()
        return None

    def gitlab_token(self, url: Optional[str] = None) -> Optional[str]:
        token = self.environ.get("GITLAB_TOKEN")
        if token:
            logger.debug("[TOKEN] GitLab token found in GITLAB_TOKEN env var")
            return token

        host = host_of(url, GITLAB_HOST)
        host_config = self._glab_config().get(host)
        if isinstance(host_config, dict) and host_config.get("token"):
            logger.info(f"[TOKEN] GitLab token for {host} discovered from glab config")
            return str(host_config["token"])
        return None

    def _glab_config_paths(self) -> List[Path]:
        paths = []
        xdg = self.environ.get("XDG_CONFIG_HOME")
        if xdg:
            paths.append(Path(xdg) / "glab-cli" / "config.yml")
        paths.append(self.home / ".config" / "glab-cli" / "config.yml")
        return paths

    def _glab_config(self) -> dict:
        if self._glab_hosts is not None:
            return self._glab_hosts

        self._glab_hosts = {}
        for config_path in self._glab_config_paths():
            if not config_path.is_file():
                continue
            try:
                with open(config_path, encoding="utf-8") as f:
                    config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"[TOKEN] Failed to read glab config {config_path}: {e}")
                continue
            if isinstance(config, dict) and isinstance(config.get("hosts"), dict):
                self._glab_hosts = config["hosts"]
                break
        return self._glab_hosts

    def bitbucket_credentials(
        self, username: Optional[str] = None
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(app_password, login)``, both None when nothing matches"""
        env_username = self.environ.get("BITBUCKET_USERNAME")
        env_password = self.environ.get("BITBUCKET_APP_PASSWORD")
        if env_username and env_password and username in (None, env_username):
            logger.debug("[TOKEN] Bitbucket credentials found in environment")
            return env_password, env_username

        auth = self._netrc_file()
        if auth is not None:
            for host in BITBUCKET_HOSTS:
                entry = auth.authenticators(host)
                if not entry:
                    continue
                login, _, password = entry
                if password and username in (None, login):
                    logger.info(f"[TOKEN] Bitbucket credentials for {login} discovered from .netrc")
                    return password, login

        return None, None

    def _netrc_file(self) -> Optional[netrc.netrc]:
        if self._netrc_loaded:
            return self._netrc

        self._netrc_loaded = True
        netrc_path = Path(self.environ.get("NETRC") or self.home / ".netrc")
        if netrc_path.is_file():
            try:
                self._netrc = netrc.netrc(str(netrc_path))
            except (OSError, netrc.NetrcParseError) as e:
                logger.warning(f"[TOKEN] Failed to read {netrc_path}: {e}")
        return self._netrc
