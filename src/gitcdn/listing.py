"""File listing and download on top of an object store."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .exceptions import IsADirectory, NotFound
from .tree import ObjectType, TreeSnapshot, normalize_path
from .urls import raw_url

if TYPE_CHECKING:
    from .config import CDNConfig
    from .stores import ObjectStore

__all__ = ["FileInfo", "list_files", "read_file", "file_exists"]


@dataclass(frozen=True)
class FileInfo:
    """A stored file as shown to users.

    Attributes:
        name: Last path segment.
        path: Repo path.
        size: Size in bytes (0 when the store does not report it).
        sha: Content id of the blob.
        download_url: Raw URL, or ``None`` when owner/repo are not configured.
    """
    name: str
    path: str
    size: int
    sha: str
    download_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "sha": self.sha,
            "download_url": self.download_url,
        }


def _branch_snapshot(store: ObjectStore, branch: str, *, sizes: bool = False) -> TreeSnapshot:
    commit = store.read_commit(store.read_ref(branch))
    return store.read_tree(commit.tree_id, recursive=True, sizes=sizes)


def list_files(
    store: ObjectStore,
    config: CDNConfig,
    *,
    branch: str | None = None,
    prefix: str | None = None,
) -> list[FileInfo]:
    """List every file on *branch* (optionally under *prefix*), sorted by path.

    One recursive tree read; directories and submodules are skipped.
    """
    branch = branch or config.branch
    if prefix:
        prefix = normalize_path(prefix) + "/"
    files = []
    for entry in _branch_snapshot(store, branch, sizes=True).blobs():
        if entry.object_type is not ObjectType.BLOB:
            continue
        if prefix and not entry.path.startswith(prefix):
            continue
        url = raw_url(config.owner, config.repo, branch, entry.path) if config.has_location else None
        files.append(FileInfo(entry.name, entry.path, entry.size or 0, entry.content_id, url))
    return files


def read_file(store: ObjectStore, path: str | os.PathLike[str], *, branch: str) -> bytes:
    """Return the content of the file at *path* on *branch*.

    Raises:
        NotFound: If *path* does not exist.
        IsADirectory: If *path* is a directory.
    """
    path = normalize_path(path)
    entry = _branch_snapshot(store, branch).get(path)
    if entry is None:
        raise NotFound(path)
    if entry.is_dir:
        raise IsADirectory(path)
    return store.read_blob(entry.content_id)


def file_exists(store: ObjectStore, path: str | os.PathLike[str], *, branch: str) -> bool:
    """Return True if *path* exists on *branch* (file or directory)."""
    return normalize_path(path) in _branch_snapshot(store, branch)
