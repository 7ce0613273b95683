"""Tests for the two-phase rename."""

import pytest

from gitcdn import (
    IsADirectory,
    NotFound,
    PartialRename,
    PathCollision,
    RenameAborted,
    RenameState,
    StorageUnavailable,
    TreeMutationCommitter,
)
from gitcdn.committer import _RenameMachine
from gitcdn.tree import EntryMode


def removes(path):
    """Match ``create_tree`` calls that delete *path*."""
    def match(base_tree_id, entries):
        return any(e.path == path and e.content_id is None for e in entries)
    return match


@pytest.fixture
def two_files(flaky):
    """(FlakyStore, committer) with a.txt and c.txt on 'main'."""
    f, committer = flaky
    committer.upload("a.txt", b"h1")
    committer.upload("c.txt", b"h2")
    return f, committer


class TestRename:
    def test_moves_content(self, two_files):
        _, committer = two_files
        before = dict(committer.snapshot().entry_set())
        result = committer.rename("a.txt", "b.txt")
        after = committer.snapshot().entry_set()
        assert after == {("b.txt", before["a.txt"]), ("c.txt", before["c.txt"])}
        assert result.content_id == before["a.txt"]

    def test_two_commits(self, two_files, store):
        _, committer = two_files
        head = store.read_ref("main")
        result = committer.rename("a.txt", "b.txt")
        assert store.read_ref("main") == result.commit_id
        assert store.read_commit(result.removed.commit_id).parent_ids == (result.added.commit_id,)
        assert store.read_commit(result.added.commit_id).parent_ids == (head,)

    def test_no_new_blob(self, two_files):
        f, committer = two_files
        committer.rename("a.txt", "b.txt")
        assert f.count("create_blob") == 2

    def test_default_message(self, two_files, store):
        _, committer = two_files
        result = committer.rename("a.txt", "b.txt")
        assert store.read_commit(result.commit_id).message == "Rename a.txt to b.txt"

    def test_states(self, two_files):
        _, committer = two_files
        result = committer.rename("a.txt", "b.txt")
        assert result.states == (
            RenameState.START,
            RenameState.PHASE_A_IN_FLIGHT,
            RenameState.PHASE_A_DONE,
            RenameState.PHASE_B_IN_FLIGHT,
            RenameState.PHASE_B_DONE,
        )

    def test_into_new_directory(self, two_files):
        _, committer = two_files
        result = committer.rename("a.txt", "docs/a.txt")
        assert result.url == "https://raw.githubusercontent.com/acme/assets/main/docs/a.txt"
        assert committer.snapshot().paths() == ["c.txt", "docs", "docs/a.txt"]

    def test_keeps_mode(self, committer):
        committer.upload("run.sh", b"#!/bin/sh\n", mode=EntryMode.EXECUTABLE)
        committer.rename("run.sh", "bin/run.sh")
        assert committer.snapshot().get("bin/run.sh").mode is EntryMode.EXECUTABLE


class TestRenamePrecheck:
    def test_collision_makes_no_commit(self, two_files, store):
        f, committer = two_files
        head = store.read_ref("main")
        with pytest.raises(PathCollision):
            committer.rename("a.txt", "c.txt")
        assert store.read_ref("main") == head
        assert f.count("create_commit") == 2

    def test_collision_below_file(self, two_files):
        _, committer = two_files
        with pytest.raises(PathCollision):
            committer.rename("a.txt", "c.txt/a.txt")

    def test_missing_source(self, two_files):
        _, committer = two_files
        with pytest.raises(NotFound):
            committer.rename("nope.txt", "b.txt")

    def test_directory_source(self, seeded):
        with pytest.raises(IsADirectory):
            seeded.rename("img", "images")

    def test_same_path(self, two_files):
        _, committer = two_files
        with pytest.raises(ValueError):
            committer.rename("a.txt", "/a.txt/")


class TestRenameFailures:
    def test_phase_a_failure(self, two_files, store):
        f, committer = two_files
        tree = committer.snapshot().tree_id
        f.fail("create_commit", StorageUnavailable("503"))
        with pytest.raises(StorageUnavailable):
            committer.rename("a.txt", "b.txt")
        assert committer.snapshot().tree_id == tree

    def test_phase_b_failure_is_rolled_back(self, two_files):
        f, committer = two_files
        original = committer.snapshot()
        f.fail("create_tree", StorageUnavailable("503"), when=removes("a.txt"))
        with pytest.raises(RenameAborted) as exc_info:
            committer.rename("a.txt", "b.txt")
        exc = exc_info.value
        assert exc.retryable
        assert isinstance(exc.__cause__, StorageUnavailable)
        assert exc.states[-1] is RenameState.COMPENSATED
        after = committer.snapshot()
        assert after.tree_id == original.tree_id
        assert after.entry_set() == original.entry_set()

    def test_rollback_is_two_more_commits(self, two_files, store):
        f, committer = two_files
        head = store.read_ref("main")
        f.fail("create_tree", StorageUnavailable("503"), when=removes("a.txt"))
        with pytest.raises(RenameAborted):
            committer.rename("a.txt", "b.txt")
        revert = store.read_commit(store.read_ref("main"))
        assert revert.message == "Revert rename of a.txt to b.txt"
        assert store.read_commit(revert.parent_ids[0]).parent_ids == (head,)

    def test_rollback_failure_is_partial(self, two_files):
        f, committer = two_files
        cid = dict(committer.snapshot().entry_set())["a.txt"]
        f.fail("create_tree", StorageUnavailable("503"), when=removes("a.txt"))
        f.fail("create_tree", StorageUnavailable("503"), when=removes("b.txt"))
        with pytest.raises(PartialRename) as exc_info:
            committer.rename("a.txt", "b.txt")
        exc = exc_info.value
        assert not exc.retryable
        assert exc.paths == ("a.txt", "b.txt")
        assert exc.states[-1] is RenameState.PARTIAL_RENAME
        entries = committer.snapshot().entry_set()
        assert ("a.txt", cid) in entries
        assert ("b.txt", cid) in entries

    def test_rollback_spares_changed_new_path(self, two_files, store, config):
        f, committer = two_files
        writer = TreeMutationCommitter(store, config)
        f.fail("create_tree", StorageUnavailable("503"), when=removes("a.txt"))
        # Another writer replaces b.txt before the rollback reads the branch.
        f.hook("read_ref", lambda: writer.upload("b.txt", b"theirs", overwrite=True),
               when=lambda branch: f.count("create_tree") >= 4)
        with pytest.raises(PartialRename):
            committer.rename("a.txt", "b.txt")
        b = committer.snapshot().get("b.txt")
        assert store.read_blob(b.content_id) == b"theirs"

    def test_old_path_already_removed(self, two_files, store, config):
        f, committer = two_files
        writer = TreeMutationCommitter(store, config)
        f.hook("create_tree", lambda: writer.remove("a.txt"), when=removes("a.txt"))
        result = committer.rename("a.txt", "b.txt")
        assert result.states[-1] is RenameState.PHASE_B_DONE
        assert committer.snapshot().paths() == ["b.txt", "c.txt"]


class TestRenameMachine:
    def test_illegal_transition(self):
        m = _RenameMachine("a", "b")
        with pytest.raises(RuntimeError):
            m.advance(RenameState.PHASE_B_IN_FLIGHT)

    def test_terminal_states(self):
        m = _RenameMachine("a", "b")
        m.advance(RenameState.PHASE_A_IN_FLIGHT)
        m.advance(RenameState.PHASE_A_FAILED)
        with pytest.raises(RuntimeError):
            m.advance(RenameState.PHASE_A_DONE)
