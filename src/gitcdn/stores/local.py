"""LocalStore: object store backed by a bare git repository on disk."""

from __future__ import annotations

import logging
import os
import time
import zlib
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from dulwich.file import FileLocked
from dulwich.objects import Blob, Commit, Tree
from dulwich.repo import Repo

from ..exceptions import BranchNotFound, NotFound
from ..tree import CommitRecord, EntryMode, ObjectType, TreeEntry, TreeSnapshot
from . import RepoInfo

if TYPE_CHECKING:
    from ..config import CDNConfig

logger = logging.getLogger(__name__)

__all__ = ["LocalStore"]


def _mode(raw: int) -> EntryMode:
    try:
        return EntryMode(raw)
    except ValueError:
        # Legacy modes such as 0o100664 are plain files.
        return EntryMode.FILE


class _BlobSizer:
    """Blob sizes read from loose-object headers.

    Only the first bytes of a loose object are inflated.  Packed objects
    are read in full through dulwich.
    """

    def __init__(self, object_store):
        self._store = object_store

    def size(self, sha: bytes) -> int:
        h = sha.decode()
        try:
            with open(os.path.join(self._store.path, h[:2], h[2:]), "rb") as f:
                header = zlib.decompressobj().decompress(f.read(64), 256)
        except FileNotFoundError:
            _, raw = self._store.get_raw(sha)
            return len(raw)
        _, size = header[:header.index(b"\x00")].split(b" ", 1)
        return int(size)


class LocalStore:
    """A bare git repository used as the object store.

    Ref updates are compare-and-set through dulwich's locked
    ``set_if_equals``, so concurrent writers in other threads or
    processes are detected rather than overwritten.
    """

    sparse_edits = True

    def __init__(self, repo: Repo, *, author: str = "gitcdn", email: str = "gitcdn@localhost"):
        self._repo = repo
        self._identity = f"{author} <{email}>".encode()

    def __repr__(self) -> str:
        return f"LocalStore({self._repo.path!r})"

    @property
    def path(self) -> str:
        return self._repo.path

    @classmethod
    def open(cls, path: str | Path, *, config: CDNConfig | None = None) -> LocalStore:
        """Open an existing bare repository.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Repository not found: {path}")
        return cls(Repo(str(path)), **_identity_kwargs(config))

    @classmethod
    def init(
        cls,
        path: str | Path,
        *,
        branch: str = "main",
        config: CDNConfig | None = None,
    ) -> LocalStore:
        """Create a bare repository with an initial empty commit on *branch*."""
        path = Path(path)
        if path.exists():
            raise FileExistsError(f"Repository already exists: {path}")
        repo = Repo.init_bare(str(path), mkdir=True)
        store = cls(repo, **_identity_kwargs(config))
        empty = Tree()
        repo.object_store.add_object(empty)
        commit_id = store.create_commit(empty.id.decode(), [], f"Initialize {branch}")
        ref = f"refs/heads/{branch}".encode()
        repo.refs[ref] = commit_id.encode()
        repo.refs.set_symbolic_ref(b"HEAD", ref)
        return store

    def close(self) -> None:
        self._repo.close()

    def _object(self, object_id: str | bytes, kind: type):
        sha = object_id.encode() if isinstance(object_id, str) else object_id
        try:
            obj = self._repo.object_store[sha]
        except (KeyError, ValueError):
            raise NotFound(sha.decode(), f"Object not found: {sha.decode()}")
        if not isinstance(obj, kind):
            raise NotFound(sha.decode(), f"Not a {kind.__name__.lower()}: {sha.decode()}")
        return obj

    # --- Blobs ---

    def create_blob(self, data: bytes) -> str:
        blob = Blob.from_string(data)
        self._repo.object_store.add_object(blob)
        return blob.id.decode()

    def read_blob(self, content_id: str) -> bytes:
        return self._object(content_id, Blob).data

    # --- Trees ---

    def read_tree(self, tree_id: str, recursive: bool = False, *, sizes: bool = False) -> TreeSnapshot:
        sizer = _BlobSizer(self._repo.object_store) if sizes else None
        entries = list(self._iter_tree(tree_id.encode(), "", recursive, sizer))
        return TreeSnapshot(tree_id, entries, recursive=recursive)

    def _iter_tree(self, tree_sha: bytes, prefix: str, recursive: bool, sizer):
        for item in self._object(tree_sha, Tree).iteritems():
            path = f"{prefix}{item.path.decode()}"
            mode = _mode(item.mode)
            size = None
            if sizer is not None and mode.object_type is ObjectType.BLOB:
                size = sizer.size(item.sha)
            yield TreeEntry(path, mode, mode.object_type, item.sha.decode(), size)
            if recursive and mode is EntryMode.SUBDIRECTORY:
                yield from self._iter_tree(item.sha, f"{path}/", recursive, sizer)

    def create_tree(self, base_tree_id: str | None, entries: Sequence[TreeEntry]) -> str:
        edits = {e.path: e for e in entries}
        base = base_tree_id.encode() if base_tree_id is not None else None
        return self._rebuild(base, edits).decode()

    def _rebuild(self, base_sha: bytes | None, edits: dict[str, TreeEntry]) -> bytes:
        """Rebuild a tree with *edits* applied.

        Only the ancestor chain from changed leaves to root is rebuilt.
        Sibling subtrees are shared by hash reference.
        """
        leaf_edits: dict[str, TreeEntry] = {}
        sub_edits: dict[str, dict[str, TreeEntry]] = defaultdict(dict)
        for path, entry in edits.items():
            head, _, rest = path.partition("/")
            if rest:
                sub_edits[head][rest] = entry
            else:
                leaf_edits[head] = entry

        items: dict[bytes, tuple[int, bytes]] = {}
        if base_sha is not None:
            for item in self._object(base_sha, Tree).iteritems():
                items[item.path] = (item.mode, item.sha)

        for name, entry in leaf_edits.items():
            key = name.encode()
            if entry.content_id is None:
                items.pop(key, None)
            else:
                items[key] = (int(entry.mode), entry.content_id.encode())

        for name, edits_below in sub_edits.items():
            key = name.encode()
            existing = items.get(key)
            sub_base = existing[1] if existing and existing[0] == EntryMode.SUBDIRECTORY else None
            if sub_base is None and all(e.content_id is None for e in edits_below.values()):
                continue
            new_sub = self._rebuild(sub_base, edits_below)
            # Prune empty directories
            if len(self._object(new_sub, Tree)) == 0:
                items.pop(key, None)
            else:
                items[key] = (int(EntryMode.SUBDIRECTORY), new_sub)

        tree = Tree()
        for name, (mode, sha) in sorted(items.items()):
            tree.add(name, mode, sha)
        self._repo.object_store.add_object(tree)
        return tree.id

    # --- Commits ---

    def read_commit(self, commit_id: str) -> CommitRecord:
        commit = self._object(commit_id, Commit)
        return CommitRecord(
            commit_id=commit.id.decode(),
            tree_id=commit.tree.decode(),
            parent_ids=tuple(p.decode() for p in commit.parents),
            message=commit.message.decode().rstrip("\n"),
            author=commit.author.decode(),
        )

    def create_commit(self, tree_id: str, parent_ids: Sequence[str], message: str) -> str:
        c = Commit()
        c.tree = tree_id.encode()
        c.parents = [p.encode() for p in parent_ids]
        c.author = c.committer = self._identity
        now = int(time.time())
        c.author_time = c.commit_time = now
        c.author_timezone = c.commit_timezone = 0
        msg = message.encode()
        if not msg.endswith(b"\n"):
            msg += b"\n"
        c.message = msg
        c.encoding = b"UTF-8"
        self._repo.object_store.add_object(c)
        return c.id.decode()

    # --- Refs ---

    def read_ref(self, branch: str) -> str:
        try:
            return self._repo.refs[f"refs/heads/{branch}".encode()].decode()
        except KeyError:
            raise BranchNotFound(branch)

    def update_ref(self, branch: str, expected_old: str, new: str) -> bool:
        ref = f"refs/heads/{branch}".encode()
        if ref not in self._repo.refs:
            raise BranchNotFound(branch)
        message = (self._object(new, Commit).message.splitlines() or [b""])[0]
        try:
            ok = self._repo.refs.set_if_equals(
                ref, expected_old.encode(), new.encode(),
                committer=self._identity, message=b"commit: " + message,
            )
        except FileLocked:
            # Another writer holds the ref lock right now.
            ok = False
        if not ok:
            logger.debug("ref %s moved away from %s", branch, expected_old[:7])
        return ok

    def describe(self) -> RepoInfo:
        path = Path(self._repo.path)
        name = path.name[:-4] if path.name.endswith(".git") else path.name
        head = self._repo.refs.get_symrefs().get(b"HEAD", b"refs/heads/main")
        size = 0
        for root, _dirs, files in os.walk(path / "objects"):
            size += sum(os.path.getsize(os.path.join(root, f)) for f in files)
        return RepoInfo(
            name=name,
            default_branch=head.decode().removeprefix("refs/heads/"),
            size=size // 1024,
        )


def _identity_kwargs(config: CDNConfig | None) -> dict:
    if config is None:
        return {}
    return {"author": config.author_name, "email": config.author_email}
