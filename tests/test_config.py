"""Tests for CDNConfig."""

import pytest

from gitcdn import CDNConfig, ConfigError


class TestFromEnv:
    def test_gitcdn_vars(self):
        c = CDNConfig.from_env({
            "GITCDN_OWNER": "acme", "GITCDN_REPO": "assets",
            "GITCDN_BRANCH": "cdn", "GITCDN_TOKEN": "tok",
        })
        assert (c.owner, c.repo, c.branch, c.token) == ("acme", "assets", "cdn", "tok")

    def test_github_fallback(self):
        c = CDNConfig.from_env({"GITHUB_OWNER": "acme", "GITHUB_TOKEN": "tok"})
        assert c.owner == "acme"
        assert c.token == "tok"

    def test_gitcdn_wins_over_github(self):
        c = CDNConfig.from_env({"GITCDN_REPO": "a", "GITHUB_REPO": "b"})
        assert c.repo == "a"

    def test_defaults(self):
        c = CDNConfig.from_env({})
        assert c.branch == "main"
        assert c.api_url == "https://api.github.com"
        assert c.retries == 5

    def test_overrides_win(self):
        c = CDNConfig.from_env({"GITCDN_OWNER": "acme"}, owner="other", repo=None)
        assert c.owner == "other"

    def test_numeric_vars(self):
        c = CDNConfig.from_env({"GITCDN_TIMEOUT": "2.5", "GITCDN_RETRIES": "9"})
        assert c.timeout == 2.5
        assert c.retries == 9

    def test_invalid_numeric(self):
        with pytest.raises(ConfigError):
            CDNConfig.from_env({"GITCDN_RETRIES": "many"})


class TestValidation:
    def test_empty_branch(self):
        with pytest.raises(ConfigError):
            CDNConfig(branch="")

    def test_zero_retries(self):
        with pytest.raises(ConfigError):
            CDNConfig(retries=0)

    def test_missing(self):
        assert CDNConfig(owner="acme").missing() == ["GitHub token", "GitHub repository"]

    def test_local_needs_nothing(self):
        c = CDNConfig(local_path="/tmp/x.git")
        assert c.missing() == []
        assert c.require() is c

    def test_require_raises(self):
        with pytest.raises(ConfigError, match="GitHub owner"):
            CDNConfig(repo="assets", token="t").require()

    def test_has_location(self):
        assert CDNConfig(owner="acme", repo="assets").has_location
        assert not CDNConfig(owner="acme").has_location


class TestRepoUrl:
    def test_repo_url_sets_owner(self):
        c = CDNConfig.from_env({}, repo="https://github.com/acme/assets.git")
        assert (c.owner, c.repo) == ("acme", "assets")

    def test_bad_repo_url(self):
        with pytest.raises(ConfigError):
            CDNConfig.from_env({"GITCDN_REPO": "https://github.com/acme"})
