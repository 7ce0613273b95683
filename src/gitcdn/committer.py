"""TreeMutationCommitter: one structural tree change per commit.

Every operation reads the branch head, derives a new tree from the head's
tree, writes one commit on top of the head and moves the branch with a
compare-and-set ref update.  A concurrent writer makes the ref update
fail; the whole operation is then replayed from a fresh read of the head.

Usage::

    from gitcdn import CDNConfig, TreeMutationCommitter, open_store

    config = CDNConfig.from_env()
    committer = TreeMutationCommitter(open_store(config), config)
    result = committer.upload("img/logo.png", data)
    committer.rename("img/logo.png", "img/brand.png")
    committer.remove("img/brand.png")
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .exceptions import (
    GitCDNError,
    IsADirectory,
    NotFound,
    PartialRename,
    PathCollision,
    RefUpdateConflict,
    RenameAborted,
    StorageUnavailable,
)
from .tree import BranchRef, EntryMode, TreeDelta, TreeEntry, TreeSnapshot, normalize_path
from .urls import raw_url

if TYPE_CHECKING:
    from .config import CDNConfig
    from .stores import ObjectStore

logger = logging.getLogger(__name__)

# Commits examined when checking whether an ambiguous ref update landed.
_ANCESTRY_LIMIT = 100

__all__ = ["TreeMutationCommitter", "CommitResult", "RenameResult", "RenameState"]


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a single-commit operation.

    Attributes:
        branch: Branch that was updated.
        commit_id: New head commit (the unchanged head when ``changed`` is False).
        tree_id: Root tree of ``commit_id``.
        path: The path the operation targeted.
        url: Raw URL of *path*, or ``None`` when owner/repo are not configured.
        changed: False when the edit left the tree as it was.
    """
    branch: str
    commit_id: str
    tree_id: str
    path: str
    url: str | None = None
    changed: bool = True


class RenameState(str, Enum):
    """States of the two-phase rename."""
    START = "start"
    PHASE_A_IN_FLIGHT = "phase_a_in_flight"
    PHASE_A_FAILED = "phase_a_failed"
    PHASE_A_DONE = "phase_a_done"
    PHASE_B_IN_FLIGHT = "phase_b_in_flight"
    PHASE_B_DONE = "phase_b_done"
    PHASE_B_FAILED = "phase_b_failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    PARTIAL_RENAME = "partial_rename"

    def __str__(self) -> str:          # noqa: D105
        return self.value


_TRANSITIONS = {
    RenameState.START: {RenameState.PHASE_A_IN_FLIGHT},
    RenameState.PHASE_A_IN_FLIGHT: {RenameState.PHASE_A_FAILED, RenameState.PHASE_A_DONE},
    RenameState.PHASE_A_DONE: {RenameState.PHASE_B_IN_FLIGHT},
    RenameState.PHASE_B_IN_FLIGHT: {RenameState.PHASE_B_DONE, RenameState.PHASE_B_FAILED},
    RenameState.PHASE_B_FAILED: {RenameState.COMPENSATING},
    RenameState.COMPENSATING: {RenameState.COMPENSATED, RenameState.PARTIAL_RENAME},
}


class _RenameMachine:
    """Tracks the rename state and rejects illegal transitions."""

    def __init__(self, old_path: str, new_path: str):
        self.old_path = old_path
        self.new_path = new_path
        self.state = RenameState.START
        self.history = [RenameState.START]

    def advance(self, state: RenameState) -> None:
        if state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"Illegal rename transition {self.state} -> {state}")
        logger.debug("rename %s -> %s: %s", self.old_path, self.new_path, state)
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class RenameResult:
    """Outcome of a completed rename: two commits, *new_path* holds the content.

    Attributes:
        old_path: Path that was removed.
        new_path: Path that now holds the content.
        content_id: Blob shared by the old and new entries.
        added: Commit that added *new_path* (phase A).
        removed: Commit that removed *old_path* (phase B).
        states: Rename states visited, in order.
    """
    old_path: str
    new_path: str
    content_id: str
    added: CommitResult
    removed: CommitResult
    states: tuple[RenameState, ...]

    @property
    def commit_id(self) -> str:
        """Head commit after the rename."""
        return self.removed.commit_id

    @property
    def url(self) -> str | None:
        return self.added.url


def _backoff(attempt: int) -> None:
    """Exponential backoff with jitter (base 10ms, factor 2x, cap 200ms)."""
    delay = min(0.01 * (2 ** attempt), 0.2)
    time.sleep(random.uniform(0, delay))


class TreeMutationCommitter:
    """Adds, removes and renames entries on a branch, one commit each.

    Args:
        store: The object store holding the branch.
        config: Supplies the default branch, retry budget and URL location.
    """

    def __init__(self, store: ObjectStore, config: CDNConfig):
        self._store = store
        self._config = config

    def __repr__(self) -> str:
        return f"TreeMutationCommitter({self._store!r}, branch={self._config.branch!r})"

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def config(self) -> CDNConfig:
        return self._config

    def _branch(self, branch: str | None) -> str:
        return branch or self._config.branch

    def url_for(self, path: str, branch: str | None = None) -> str | None:
        """Raw URL of *path*, or ``None`` without owner/repo."""
        if not self._config.has_location:
            return None
        c = self._config
        return raw_url(c.owner, c.repo, self._branch(branch), path)

    # --- Reads ---

    def head(self, branch: str | None = None) -> BranchRef:
        """Current head of *branch*."""
        branch = self._branch(branch)
        return BranchRef(branch, self._store.read_ref(branch))

    def snapshot(self, branch: str | None = None) -> TreeSnapshot:
        """Recursive tree snapshot of the head of *branch*."""
        ref = self.head(branch)
        commit = self._store.read_commit(ref.head_commit_id)
        return self._store.read_tree(commit.tree_id, recursive=True)

    # --- Single-commit operations ---

    def add_or_replace(
        self,
        path: str | os.PathLike[str],
        content_id: str,
        mode: EntryMode | int = EntryMode.FILE,
        *,
        branch: str | None = None,
        overwrite: bool = False,
        message: str | None = None,
    ) -> CommitResult:
        """Add an entry for already-stored content at *path*.

        Args:
            path: Repo path of the new entry.
            content_id: Address of content already in the store.
            mode: Filemode of the entry (default regular file).
            branch: Target branch (default ``config.branch``).
            overwrite: Replace an existing file at *path* instead of failing.
            message: Commit message (default ``"Upload <path>"``).

        Raises:
            PathCollision: If *path* exists (and *overwrite* is False), is a
                directory, or lies below an existing file.
            BranchNotFound: If *branch* does not exist.
            RefUpdateConflict: If the branch kept moving for every attempt.
            StorageUnavailable: On transient store failure.
        """
        path = normalize_path(path)
        entry = TreeEntry.make(path, content_id, mode)

        def plan(snapshot: TreeSnapshot) -> TreeDelta:
            hit = snapshot.collision(path)
            if hit is not None and (hit.path != path or hit.is_dir or not overwrite):
                raise PathCollision(path)
            return TreeDelta().write(entry)

        return self._commit(self._branch(branch), path, plan, message or f"Upload {path}")

    def upload(
        self,
        path: str | os.PathLike[str],
        data: bytes,
        *,
        mode: EntryMode | int = EntryMode.FILE,
        branch: str | None = None,
        overwrite: bool = False,
        message: str | None = None,
    ) -> CommitResult:
        """Store *data* as a blob and add it at *path*.

        Same failure modes as :meth:`add_or_replace`.  A blob written
        before a failure is an unreferenced orphan.
        """
        path = normalize_path(path)
        content_id = self._store.create_blob(data)
        return self.add_or_replace(
            path, content_id, mode,
            branch=branch, overwrite=overwrite, message=message,
        )

    def remove(
        self,
        path: str | os.PathLike[str],
        *,
        branch: str | None = None,
        message: str | None = None,
    ) -> CommitResult:
        """Remove the file at *path*; every other entry keeps its content id.

        Raises:
            NotFound: If *path* does not exist.
            IsADirectory: If *path* is a directory.
        """
        path = normalize_path(path)
        return self._remove(path, self._branch(branch), message or f"Delete {path}")

    def _remove(self, path: str, branch: str, message: str,
                expect_content_id: str | None = None) -> CommitResult:
        def plan(snapshot: TreeSnapshot) -> TreeDelta:
            entry = snapshot.get(path)
            if entry is None:
                raise NotFound(path)
            if entry.is_dir:
                raise IsADirectory(path)
            if expect_content_id is not None and entry.content_id != expect_content_id:
                raise PathCollision(path, f"{path!r} was changed by another writer; not removing")
            return TreeDelta().remove(path)

        return self._commit(branch, path, plan, message)

    def _build_tree(self, snapshot: TreeSnapshot, delta: TreeDelta) -> str:
        if self._store.sparse_edits:
            return self._store.create_tree(snapshot.tree_id, delta.entries())
        return self._store.create_tree(None, delta.apply_to(snapshot))

    def _commit(
        self,
        branch: str,
        path: str,
        plan: Callable[[TreeSnapshot], TreeDelta],
        message: str,
    ) -> CommitResult:
        """Read head, apply *plan*'s delta, commit and advance the branch.

        Replays from a fresh head read on :class:`RefUpdateConflict`.
        """
        store = self._store
        retries = self._config.retries
        for attempt in range(retries):
            head = store.read_ref(branch)
            commit = store.read_commit(head)
            snapshot = store.read_tree(commit.tree_id, recursive=True)
            delta = plan(snapshot)
            new_tree = self._build_tree(snapshot, delta)
            if new_tree == commit.tree_id:
                return CommitResult(branch, head, new_tree, path, self.url_for(path, branch), changed=False)

            new_commit = store.create_commit(new_tree, [head], message)
            try:
                self._advance(branch, head, new_commit)
            except RefUpdateConflict:
                if attempt == retries - 1:
                    raise
                logger.warning(
                    "branch %r moved during %r (attempt %d/%d); retrying",
                    branch, message, attempt + 1, retries,
                )
                _backoff(attempt)
                continue
            logger.debug("%s: %s -> %s", message, head[:7], new_commit[:7])
            return CommitResult(branch, new_commit, new_tree, path, self.url_for(path, branch))
        raise AssertionError("unreachable")

    def _advance(self, branch: str, old: str, new: str) -> None:
        """Compare-and-set *branch* from *old* to *new*.

        When the update call itself fails or is interrupted, the ref is
        re-read to learn whether the update landed.
        """
        try:
            ok = self._store.update_ref(branch, old, new)
        except StorageUnavailable:
            if self._landed(branch, old, new):
                return
            raise
        except KeyboardInterrupt:
            self._report_interrupt(branch, old, new)
            raise
        if not ok:
            raise RefUpdateConflict(branch, old)

    def _report_interrupt(self, branch: str, old: str, new: str) -> None:
        try:
            landed = self._landed(branch, old, new)
        except GitCDNError as exc:
            logger.error("interrupted; could not confirm update of %r to %s: %s", branch, new[:7], exc)
            return
        logger.warning(
            "interrupted; update of %r to %s %s",
            branch, new[:7], "landed" if landed else "did not land",
        )

    def _landed(self, branch: str, old: str, new: str) -> bool:
        try:
            current = self._store.read_ref(branch)
            if current == old:
                return False
            # Another writer may already have committed on top of ours.
            landed = current == new or self._reaches(current, new, stop=old)
        except StorageUnavailable as exc:
            raise StorageUnavailable(
                f"Could not confirm whether {branch!r} moved to {new[:7]}"
            ) from exc
        if not landed:
            raise RefUpdateConflict(branch, old, current)
        logger.info("ref update of %r to %s landed despite error", branch, new[:7])
        return True

    def _reaches(self, head: str, target: str, *, stop: str) -> bool:
        """True if *target* is an ancestor of *head* within a bounded walk.

        Commits at or behind *stop* are not explored.
        """
        pending = [head]
        seen = set()
        while pending and len(seen) < _ANCESTRY_LIMIT:
            commit_id = pending.pop()
            if commit_id == target:
                return True
            if commit_id == stop or commit_id in seen:
                continue
            seen.add(commit_id)
            pending.extend(self._store.read_commit(commit_id).parent_ids)
        return False

    # --- Composite operation ---

    def rename(
        self,
        old_path: str | os.PathLike[str],
        new_path: str | os.PathLike[str],
        *,
        branch: str | None = None,
        message: str | None = None,
    ) -> RenameResult:
        """Move the file at *old_path* to *new_path* in two commits.

        Phase A adds *new_path* pointing at the existing content id (no
        download or upload).  Phase B removes *old_path*.  If phase B fails,
        *new_path* is removed again so the branch returns to its original
        tree.  At worst both paths remain; never neither.

        Raises:
            ValueError: If the paths are equal.
            NotFound: If *old_path* does not exist.
            PathCollision: If *new_path* exists (no commit is made).
            RenameAborted: Phase B failed and phase A was undone.
            PartialRename: Phase B and the undo both failed; both paths exist.
        """
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        if old_path == new_path:
            raise ValueError(f"Source and destination are the same: {old_path!r}")
        branch = self._branch(branch)
        message = message or f"Rename {old_path} to {new_path}"
        machine = _RenameMachine(old_path, new_path)

        snapshot = self.snapshot(branch)
        entry = snapshot.get(old_path)
        if entry is None:
            raise NotFound(old_path)
        if entry.is_dir:
            raise IsADirectory(old_path)
        if snapshot.collision(new_path) is not None:
            raise PathCollision(new_path)

        machine.advance(RenameState.PHASE_A_IN_FLIGHT)
        try:
            added = self.add_or_replace(
                new_path, entry.content_id, entry.mode,
                branch=branch, message=message,
            )
        except GitCDNError:
            machine.advance(RenameState.PHASE_A_FAILED)
            raise
        machine.advance(RenameState.PHASE_A_DONE)

        machine.advance(RenameState.PHASE_B_IN_FLIGHT)
        try:
            removed = self._remove(old_path, branch, message)
        except GitCDNError as exc:
            if isinstance(exc, NotFound) and not isinstance(exc, IsADirectory):
                # Another writer already removed the old path: the rename holds.
                logger.warning("%r was already removed from %r", old_path, branch)
                removed = added
            else:
                machine.advance(RenameState.PHASE_B_FAILED)
                logger.warning("rename %s -> %s: removing old path failed: %s", old_path, new_path, exc)
                self._compensate(machine, branch, entry.content_id, exc)
        machine.advance(RenameState.PHASE_B_DONE)

        return RenameResult(
            old_path=old_path,
            new_path=new_path,
            content_id=entry.content_id,
            added=added,
            removed=removed,
            states=tuple(machine.history),
        )

    def _compensate(self, machine: _RenameMachine, branch: str,
                    content_id: str, cause: GitCDNError) -> None:
        """Undo phase A; always raises."""
        machine.advance(RenameState.COMPENSATING)
        try:
            self._remove(
                machine.new_path, branch,
                f"Revert rename of {machine.old_path} to {machine.new_path}",
                expect_content_id=content_id,
            )
        except GitCDNError as exc:
            machine.advance(RenameState.PARTIAL_RENAME)
            logger.error(
                "rename %s -> %s left both paths on %r: %s",
                machine.old_path, machine.new_path, branch, exc,
            )
            raise PartialRename(machine.old_path, machine.new_path, machine.history) from exc
        machine.advance(RenameState.COMPENSATED)
        raise RenameAborted(machine.old_path, machine.new_path, machine.history) from cause
