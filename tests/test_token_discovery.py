"""
Tests for token_discovery module

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

import subprocess
from unittest.mock import patch

import pytest

from gitbackup.base import Target
from gitbackup.token_discovery import CredentialResolver, host_of


def gh_result(stdout="", returncode=0):
    return subprocess.CompletedProcess(
        args=["gh"], returncode=returncode, stdout=stdout, stderr=""
    )


@pytest.fixture
def make_resolver(tmp_path):
    """Resolver reading an isolated environment and home directory"""

    def factory(**environ):
        return CredentialResolver(environ=environ, home=tmp_path)

    return factory


class TestHostOf:
    @pytest.mark.parametrize(
        "url,expected",
        [
            (None, "github.com"),
            ("https://api.github.com", "github.com"),
            ("https://GHE.example.com/api/v3", "ghe.example.com"),
        ],
    )
    def test_github_hosts(self, url, expected):
        assert host_of(url, "github.com") == expected


class TestGitHubToken:
    def test_environment_for_github_com(self, make_resolver):
        resolver = make_resolver(GH_TOKEN="ghp_second", GITHUB_TOKEN="ghp_first")
        with patch("gitbackup.token_discovery.subprocess.run") as run:
            assert resolver.github_token() == "ghp_first"
        run.assert_not_called()

    def test_enterprise_host_ignores_github_com_variables(self, make_resolver):
        resolver = make_resolver(
            GITHUB_TOKEN="ghp_public", GH_ENTERPRISE_TOKEN="ghe_internal"
        )
        assert resolver.github_token("https://ghe.example.com/api/v3") == "ghe_internal"

    def test_gh_cli_is_asked_for_the_target_host(self, make_resolver):
        resolver = make_resolver()
        with patch(
            "gitbackup.token_discovery.subprocess.run",
            return_value=gh_result("gho_enterprise\n"),
        ) as run:
            token = resolver.github_token("https://ghe.example.com/api/v3")

        assert token == "gho_enterprise"
        assert run.call_args[0][0] == [
            "gh",
            "auth",
            "token",
            "--hostname",
            "ghe.example.com",
        ]

    def test_gh_cli_runs_once_per_host(self, make_resolver):
        resolver = make_resolver()
        with patch(
            "gitbackup.token_discovery.subprocess.run",
            return_value=gh_result("gho_cached\n"),
        ) as run:
            for _ in range(3):
                assert resolver.github_token() == "gho_cached"
            assert resolver.github_token("https://api.github.com") == "gho_cached"
            resolver.github_token("https://ghe.example.com/api/v3")

        assert run.call_count == 2

    def test_missing_token_is_remembered(self, make_resolver):
        resolver = make_resolver()
        with patch(
            "gitbackup.token_discovery.subprocess.run", side_effect=FileNotFoundError
        ) as run:
            assert resolver.github_token() is None
            assert resolver.github_token() is None

        assert run.call_count == 1

    def test_gh_not_logged_in(self, make_resolver):
        resolver = make_resolver()
        with patch(
            "gitbackup.token_discovery.subprocess.run",
            return_value=gh_result(returncode=1),
        ):
            assert resolver.github_token() is None

    def test_gh_timeout(self, make_resolver):
        resolver = make_resolver()
        with patch(
            "gitbackup.token_discovery.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["gh"], 5),
        ):
            assert resolver.github_token() is None


class TestGitLabToken:
    @pytest.fixture
    def glab_config(self, tmp_path):
        path = tmp_path / ".config" / "glab-cli" / "config.yml"
        path.parent.mkdir(parents=True)
        path.write_text(
            "hosts:\n"
            "  gitlab.com:\n"
            "    token: glpat-saas\n"
            "  gitlab.internal.example:\n"
            "    token: glpat-internal\n"
        )
        return path

    def test_environment_wins(self, make_resolver, glab_config):
        resolver = make_resolver(GITLAB_TOKEN="glpat-env")
        assert resolver.gitlab_token("https://gitlab.internal.example") == "glpat-env"

    def test_token_per_instance(self, make_resolver, glab_config):
        resolver = make_resolver()
        assert resolver.gitlab_token() == "glpat-saas"
        assert resolver.gitlab_token("https://gitlab.internal.example") == "glpat-internal"
        assert resolver.gitlab_token("https://gitlab.unknown.example") is None

    def test_config_is_read_once(self, make_resolver, glab_config):
        resolver = make_resolver()
        assert resolver.gitlab_token() == "glpat-saas"

        glab_config.write_text("hosts: {}\n")

        assert resolver.gitlab_token() == "glpat-saas"

    def test_xdg_config_home(self, make_resolver, tmp_path):
        path = tmp_path / "xdg" / "glab-cli" / "config.yml"
        path.parent.mkdir(parents=True)
        path.write_text("hosts:\n  gitlab.com:\n    token: glpat-xdg\n")

        resolver = make_resolver(XDG_CONFIG_HOME=str(tmp_path / "xdg"))

        assert resolver.gitlab_token() == "glpat-xdg"

    def test_unparseable_config(self, make_resolver, glab_config):
        glab_config.write_text("hosts: [unclosed\n")
        assert make_resolver().gitlab_token() is None


class TestBitbucketCredentials:
    @pytest.fixture
    def netrc_file(self, tmp_path):
        path = tmp_path / ".netrc"
        path.write_text(
            "machine bitbucket.org login alice password alice-pass\n"
            "machine api.bitbucket.org login bob password bob-pass\n"
        )
        return path

    def test_environment(self, make_resolver):
        resolver = make_resolver(
            BITBUCKET_USERNAME="carol", BITBUCKET_APP_PASSWORD="carol-pass"
        )
        assert resolver.bitbucket_credentials() == ("carol-pass", "carol")

    def test_environment_for_another_user_is_skipped(self, make_resolver, netrc_file):
        resolver = make_resolver(
            BITBUCKET_USERNAME="carol", BITBUCKET_APP_PASSWORD="carol-pass"
        )
        assert resolver.bitbucket_credentials("bob") == ("bob-pass", "bob")

    def test_netrc_without_username_takes_first_host(self, make_resolver, netrc_file):
        assert make_resolver().bitbucket_credentials() == ("alice-pass", "alice")

    def test_netrc_entry_for_configured_username(self, make_resolver, netrc_file):
        assert make_resolver().bitbucket_credentials("bob") == ("bob-pass", "bob")

    def test_netrc_has_no_entry_for_username(self, make_resolver, netrc_file):
        assert make_resolver().bitbucket_credentials("dave") == (None, None)

    def test_netrc_path_from_environment(self, make_resolver, tmp_path):
        custom = tmp_path / "custom-netrc"
        custom.write_text("machine bitbucket.org login erin password erin-pass\n")

        resolver = make_resolver(NETRC=str(custom))

        assert resolver.bitbucket_credentials() == ("erin-pass", "erin")

    def test_nothing_configured(self, make_resolver):
        assert make_resolver().bitbucket_credentials() == (None, None)


class TestResolve:
    def test_targets_sharing_a_host_share_one_lookup(self, make_resolver):
        resolver = make_resolver()
        targets = [Target(name=n, source="github", entity=n) for n in "abc"]

        with patch(
            "gitbackup.token_discovery.subprocess.run",
            return_value=gh_result("gho_shared\n"),
        ) as run:
            resolved = [resolver.resolve(t) for t in targets]

        assert [t.token for t in resolved] == ["gho_shared"] * 3
        assert run.call_count == 1

    def test_bitbucket_target_gets_its_own_login(self, make_resolver, tmp_path):
        (tmp_path / ".netrc").write_text(
            "machine bitbucket.org login alice password alice-pass\n"
        )
        target = Target(name="b", source="bitbucket", entity="acme", username="alice")

        resolved = make_resolver().resolve(target)

        assert (resolved.username, resolved.password) == ("alice", "alice-pass")

    def test_configured_credentials_are_untouched(self, make_resolver):
        resolver = make_resolver(GITHUB_TOKEN="ghp_env")
        target = Target(name="o", source="github", entity="o", token="ghp_config")
        assert resolver.resolve(target) is target

    def test_unknown_source(self, make_resolver):
        target = Target(name="x", source="sourceforge", entity="x")
        assert make_resolver().resolve(target) is target
