"""Object stores: where blobs, trees, commits and refs live.

Every store exposes the same small capability set so the committer never
needs to know whether it is talking to GitHub or a local bare repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

from ..tree import CommitRecord, TreeEntry, TreeSnapshot

if TYPE_CHECKING:
    from ..config import CDNConfig

__all__ = ["ObjectStore", "RepoInfo", "open_store"]


@dataclass(frozen=True)
class RepoInfo:
    """Summary of the backing repository."""
    name: str
    default_branch: str
    description: str = ""
    size: int = 0
    private: bool = False
    html_url: str | None = None


@runtime_checkable
class ObjectStore(Protocol):
    """Blob, tree, commit and ref capabilities of a git host."""

    #: True when :meth:`create_tree` edits on top of a base tree.
    sparse_edits: bool

    def create_blob(self, data: bytes) -> str: ...

    def read_blob(self, content_id: str) -> bytes: ...

    def read_tree(self, tree_id: str, recursive: bool = False, *, sizes: bool = False) -> TreeSnapshot:
        """List *tree_id*; blob sizes are filled in only when *sizes* is True."""

    def create_tree(self, base_tree_id: str | None, entries: Sequence[TreeEntry]) -> str: ...

    def read_commit(self, commit_id: str) -> CommitRecord: ...

    def create_commit(self, tree_id: str, parent_ids: Sequence[str], message: str) -> str: ...

    def read_ref(self, branch: str) -> str: ...

    def update_ref(self, branch: str, expected_old: str, new: str) -> bool: ...

    def describe(self) -> RepoInfo: ...


def open_store(config: CDNConfig) -> ObjectStore:
    """Return the store *config* points at.

    A local bare repository when ``config.local_path`` is set, the GitHub
    API otherwise.
    """
    if config.is_local:
        from .local import LocalStore
        return LocalStore.open(config.local_path, config=config)
    from .github import GitHubStore
    return GitHubStore(config.require())
