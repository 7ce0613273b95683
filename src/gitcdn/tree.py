"""Tree data model for gitcdn.

Trees, commits and refs as the committer sees them, independent of the
backing object store.  Paths are always normalized, repo-relative and
``/``-separated.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Iterable, Iterator, NamedTuple


class ObjectType(str, Enum):
    """Git object type referenced by a tree entry."""
    BLOB = "blob"
    TREE = "tree"
    COMMIT = "commit"

    def __str__(self) -> str:          # noqa: D105
        return self.value


class EntryMode(IntEnum):
    """Git filemode of a tree entry.

    Members: ``FILE``, ``EXECUTABLE``, ``SUBDIRECTORY``, ``SUBMODULE``,
    ``SYMLINK``.
    """
    FILE = 0o100644
    EXECUTABLE = 0o100755
    SUBDIRECTORY = 0o040000
    SUBMODULE = 0o160000
    SYMLINK = 0o120000

    @classmethod
    def parse(cls, value: int | str | EntryMode) -> EntryMode:
        """Accept an int filemode or its octal string form (``"100644"``)."""
        if isinstance(value, str):
            value = int(value, 8)
        return cls(value)

    @property
    def octal(self) -> str:
        """Octal string used by the GitHub API (``"100644"``)."""
        return f"{int(self):06o}"

    @property
    def object_type(self) -> ObjectType:
        """The object type an entry with this mode points to."""
        if self is EntryMode.SUBDIRECTORY:
            return ObjectType.TREE
        if self is EntryMode.SUBMODULE:
            return ObjectType.COMMIT
        return ObjectType.BLOB


class TreeEntry(NamedTuple):
    """A single path in a tree snapshot.

    In a tree edit, ``content_id=None`` removes *path*.
    """

    path: str
    mode: EntryMode
    object_type: ObjectType
    content_id: str | None
    size: int | None = None

    @classmethod
    def make(cls, path: str, content_id: str | None, mode: EntryMode | int = EntryMode.FILE,
             size: int | None = None) -> TreeEntry:
        """Build an entry, deriving the object type from *mode*."""
        mode = EntryMode.parse(mode)
        return cls(path, mode, mode.object_type, content_id, size)

    @classmethod
    def removal(cls, path: str) -> TreeEntry:
        """An edit entry that deletes *path*."""
        return cls(path, EntryMode.FILE, ObjectType.BLOB, None)

    @property
    def name(self) -> str:
        """Last path segment."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_dir(self) -> bool:
        return self.mode is EntryMode.SUBDIRECTORY

    @property
    def is_removal(self) -> bool:
        return self.content_id is None


class TreeSnapshot:
    """An immutable tree listing addressed by *tree_id*.

    Entries are keyed by path and iterate in sorted path order.  A
    recursive snapshot lists every nested entry (directories included);
    a shallow one lists only the top level.
    """

    def __init__(self, tree_id: str, entries: Iterable[TreeEntry], *, recursive: bool = True):
        self.tree_id = tree_id
        self.recursive = recursive
        self._entries = {e.path: e for e in entries}

    def __repr__(self) -> str:
        return f"TreeSnapshot({self.tree_id[:7]}, entries={len(self)})"

    def __iter__(self) -> Iterator[TreeEntry]:
        for path in sorted(self._entries):
            yield self._entries[path]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def get(self, path: str) -> TreeEntry | None:
        return self._entries.get(path)

    def paths(self) -> list[str]:
        return sorted(self._entries)

    def blobs(self) -> list[TreeEntry]:
        """Entries that are not directories, in path order."""
        return [e for e in self if not e.is_dir]

    def entry_set(self) -> set[tuple[str, str]]:
        """The ``(path, content_id)`` pairs of all non-directory entries."""
        return {(e.path, e.content_id) for e in self.blobs()}

    def collision(self, path: str) -> TreeEntry | None:
        """Return the entry that prevents writing a file at *path*.

        That is the entry at *path* itself, or a non-directory entry at one
        of its parent directories.
        """
        entry = self._entries.get(path)
        if entry is not None:
            return entry
        parts = path.split("/")
        for i in range(1, len(parts)):
            parent = self._entries.get("/".join(parts[:i]))
            if parent is not None and not parent.is_dir:
                return parent
        return None


@dataclass(frozen=True)
class CommitRecord:
    """An immutable commit: one tree, zero or more parents."""
    commit_id: str
    tree_id: str
    parent_ids: tuple[str, ...]
    message: str
    author: str = ""


@dataclass(frozen=True)
class BranchRef:
    """A named, mutable pointer to a head commit."""
    name: str
    head_commit_id: str

    @property
    def ref_name(self) -> str:
        return f"refs/heads/{self.name}"


@dataclass
class TreeDelta:
    """The structural change one commit applies to a tree.

    Attributes:
        writes: ``{path: TreeEntry}`` entries to add or replace.
        removes: Paths to delete.
    """
    writes: dict[str, TreeEntry] = field(default_factory=dict)
    removes: set[str] = field(default_factory=set)

    def write(self, entry: TreeEntry) -> TreeDelta:
        self.removes.discard(entry.path)
        self.writes[entry.path] = entry
        return self

    def remove(self, path: str) -> TreeDelta:
        self.writes.pop(path, None)
        self.removes.add(path)
        return self

    def __bool__(self) -> bool:
        return bool(self.writes or self.removes)

    def entries(self) -> list[TreeEntry]:
        """Edit list for a sparse tree edit, removals included."""
        edits = list(self.writes.values())
        edits.extend(TreeEntry.removal(p) for p in self.removes)
        return sorted(edits, key=lambda e: e.path)

    def apply_to(self, snapshot: TreeSnapshot) -> list[TreeEntry]:
        """Full entry list of *snapshot* with this delta applied.

        Used when the store cannot edit a tree sparsely: every surviving
        file entry is carried over with its original content id, and
        directory entries are dropped so the store rebuilds them.
        """
        entries = {
            e.path: e for e in snapshot.blobs()
            if e.path not in self.removes
        }
        entries.update(self.writes)
        return [entries[p] for p in sorted(entries)]


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize a path: strip leading/trailing slashes, reject bad segments."""
    path = os.fspath(path)
    if os.name == "nt":
        path = path.replace("\\", "/")
    path = path.strip("/")
    if not path:
        raise ValueError("Path must not be empty")
    segments = path.split("/")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid path segment: {seg!r}")
    return "/".join(segments)
