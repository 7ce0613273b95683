"""Exceptions for gitcdn."""

from __future__ import annotations


class GitCDNError(Exception):
    """Base class for all gitcdn errors.

    ``retryable`` tells callers whether repeating the whole operation from
    a fresh read of the branch is safe.
    """

    retryable = False


class ConfigError(GitCDNError):
    """Raised when required configuration is missing or invalid."""


class PathCollision(GitCDNError):
    """Raised when a write targets a path that already exists."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Path already exists: {path!r}")


class NotFound(GitCDNError):
    """Raised when a path or object does not exist."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Not found: {path!r}")


class IsADirectory(NotFound):
    """Raised when a file operation targets a directory."""

    def __init__(self, path: str):
        super().__init__(path, f"Is a directory: {path!r}")


class BranchNotFound(GitCDNError):
    """Raised when the branch ref does not exist."""

    def __init__(self, branch: str):
        self.branch = branch
        super().__init__(f"Branch not found: {branch!r}")


class RefUpdateConflict(GitCDNError):
    """Raised when a branch advanced between reading and updating its ref.

    Re-read the branch head and reapply the change.  The committer does
    this automatically up to ``CDNConfig.retries`` times.
    """

    retryable = True

    def __init__(self, branch: str, expected: str, actual: str | None = None):
        self.branch = branch
        self.expected = expected
        self.actual = actual
        super().__init__(f"Branch {branch!r} has advanced since {expected[:7]}")


class StorageUnavailable(GitCDNError):
    """Raised on transient provider or network failures (timeouts, 5xx)."""

    retryable = True


class GitHubAPIError(GitCDNError):
    """Raised for GitHub API client errors that are not retryable."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"GitHub API error {status_code}: {message}")


class TreeTruncated(GitCDNError):
    """Raised when GitHub cannot list a single directory in full."""

    def __init__(self, tree_id: str):
        self.tree_id = tree_id
        super().__init__(f"Tree listing for {tree_id[:7]} is truncated by GitHub")


class RenameAborted(GitCDNError):
    """Raised when a rename failed after its first phase and was undone.

    The branch holds the original tree again; ``__cause__`` is the error
    that stopped the second phase.
    """

    retryable = True

    def __init__(self, old_path: str, new_path: str, states=()):
        self.old_path = old_path
        self.new_path = new_path
        self.states = list(states)
        super().__init__(f"Rename {old_path!r} -> {new_path!r} aborted and rolled back")


class PartialRename(GitCDNError):
    """Raised when a rename could neither finish nor be rolled back.

    Both ``old_path`` and ``new_path`` may exist on the branch with the
    same content.  Must be reconciled by the caller, never retried blindly.
    """

    def __init__(self, old_path: str, new_path: str, states=()):
        self.old_path = old_path
        self.new_path = new_path
        self.states = list(states)
        super().__init__(
            f"Rename {old_path!r} -> {new_path!r} left both paths present; "
            f"remove one of them manually"
        )

    @property
    def paths(self) -> tuple[str, str]:
        """The two surviving paths."""
        return (self.old_path, self.new_path)
