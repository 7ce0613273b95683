"""Explicit configuration for stores and the committer."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .exceptions import ConfigError
from .urls import parse_github_url

DEFAULT_API_URL = "https://api.github.com"

# Setting name -> environment variables consulted, first match wins.
_ENV_VARS = {
    "owner": ("GITCDN_OWNER", "GITHUB_OWNER"),
    "repo": ("GITCDN_REPO", "GITHUB_REPO"),
    "branch": ("GITCDN_BRANCH", "GITHUB_BRANCH"),
    "token": ("GITCDN_TOKEN", "GITHUB_TOKEN"),
    "api_url": ("GITCDN_API_URL",),
    "local_path": ("GITCDN_LOCAL",),
    "author_name": ("GITCDN_AUTHOR_NAME",),
    "author_email": ("GITCDN_AUTHOR_EMAIL",),
}

_LABELS = {
    "token": "GitHub token",
    "owner": "GitHub owner",
    "repo": "GitHub repository",
}


@dataclass(frozen=True)
class CDNConfig:
    """Where files live and how to reach them.

    Attributes:
        owner: Repository owner (user or organization).
        repo: Repository name.
        branch: Branch that holds the files (default ``"main"``).
        token: GitHub access token.
        api_url: GitHub REST API root.
        timeout: Seconds allowed for each HTTP call.
        retries: Attempts per operation when the branch moves concurrently.
        author_name: Commit author name.
        author_email: Commit author email.
        local_path: Use a local bare repository instead of GitHub.
    """

    owner: str = ""
    repo: str = ""
    branch: str = "main"
    token: str | None = None
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    retries: int = 5
    author_name: str = "gitcdn"
    author_email: str = "gitcdn@localhost"
    local_path: str | None = None

    def __post_init__(self):
        if not self.branch:
            raise ConfigError("Branch must not be empty")
        if self.retries < 1:
            raise ConfigError(f"retries must be >= 1, got {self.retries}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> CDNConfig:
        """Build a config from ``GITCDN_*`` (or ``GITHUB_*``) variables.

        Keyword *overrides* that are not ``None`` win over the environment.
        ``repo`` may also be a GitHub URL such as ``github.com/owner/repo``.
        """
        if environ is None:
            environ = os.environ
        values: dict = {}
        for name, keys in _ENV_VARS.items():
            for key in keys:
                if environ.get(key):
                    values[name] = environ[key]
                    break
        for key, cast in (("GITCDN_TIMEOUT", float), ("GITCDN_RETRIES", int)):
            if environ.get(key):
                try:
                    values[key[len("GITCDN_"):].lower()] = cast(environ[key])
                except ValueError:
                    raise ConfigError(f"Invalid {key}: {environ[key]!r}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        # A repository URL names both the owner and the repository.
        if "github.com" in values.get("repo", ""):
            try:
                values["owner"], values["repo"] = parse_github_url(values["repo"])
            except ValueError as exc:
                raise ConfigError(str(exc))
        return cls(**values)

    @property
    def is_local(self) -> bool:
        return self.local_path is not None

    @property
    def has_location(self) -> bool:
        """True when public URLs can be derived (owner and repo are known)."""
        return bool(self.owner and self.repo)

    def missing(self) -> list[str]:
        """Human-readable names of required settings that are absent."""
        if self.is_local:
            return []
        return [label for name, label in _LABELS.items() if not getattr(self, name)]

    def require(self) -> CDNConfig:
        """Return self, or raise :class:`ConfigError` naming missing settings."""
        missing = self.missing()
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")
        return self
