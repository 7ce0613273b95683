"""Shared fixtures for gitcdn tests."""

import pytest
from click.testing import CliRunner

from gitcdn import CDNConfig, TreeMutationCommitter
from gitcdn.stores.local import LocalStore


class FlakyStore:
    """Delegates to a real store, failing or intercepting selected calls.

    ``fail(method, exc, when=...)`` raises *exc* instead of calling
    *method* (or after calling it with ``after=True``); ``hook(method, fn)``
    runs *fn* just before *method*.
    """

    def __init__(self, inner):
        self._inner = inner
        self.sparse_edits = inner.sparse_edits
        self._rules = []
        self.calls = []

    def fail(self, method, exc, *, times=1, when=None, after=False):
        self._rules.append({"method": method, "exc": exc, "times": times,
                            "when": when, "after": after, "hook": None})

    def hook(self, method, fn, *, times=1, when=None):
        self._rules.append({"method": method, "exc": None, "times": times,
                            "when": when, "after": False, "hook": fn})

    def count(self, method):
        return sum(1 for name, _ in self.calls if name == method)

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            self.calls.append((name, args))
            for rule in self._rules:
                if rule["method"] != name or rule["times"] <= 0:
                    continue
                if rule["when"] is not None and not rule["when"](*args):
                    continue
                rule["times"] -= 1
                if rule["hook"] is not None:
                    rule["hook"]()
                    continue
                if rule["after"]:
                    attr(*args, **kwargs)
                raise rule["exc"]
            return attr(*args, **kwargs)

        return call


@pytest.fixture
def repo_path(tmp_path):
    """Return a path to a not-yet-created repo."""
    return str(tmp_path / "cdn.git")


@pytest.fixture
def config(repo_path):
    return CDNConfig(owner="acme", repo="assets", local_path=repo_path)


@pytest.fixture
def store(repo_path, config):
    """A bare repository with an empty initial commit on 'main'."""
    s = LocalStore.init(repo_path, config=config)
    yield s
    s.close()


@pytest.fixture
def committer(store, config):
    return TreeMutationCommitter(store, config)


@pytest.fixture
def seeded(committer):
    """Committer whose branch holds a.txt, c.txt and img/logo.png."""
    committer.upload("a.txt", b"alpha")
    committer.upload("c.txt", b"gamma")
    committer.upload("img/logo.png", b"\x89PNG\r\n\x1a\n")
    return committer


@pytest.fixture
def flaky(store, config):
    """(FlakyStore, committer) pair over the local store."""
    f = FlakyStore(store)
    return f, TreeMutationCommitter(f, config)


@pytest.fixture
def runner():
    return CliRunner()
