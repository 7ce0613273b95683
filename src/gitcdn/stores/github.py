"""GitHubStore: object store backed by the GitHub Git Data REST API."""

from __future__ import annotations

import base64
import logging
from typing import Sequence

import httpx

from ..config import CDNConfig
from ..exceptions import BranchNotFound, GitHubAPIError, NotFound, StorageUnavailable, TreeTruncated
from ..tree import CommitRecord, EntryMode, TreeEntry, TreeSnapshot
from . import RepoInfo

logger = logging.getLogger(__name__)

__all__ = ["GitHubStore"]

API_VERSION = "2022-11-28"


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.reason_phrase
    except ValueError:
        return response.text or response.reason_phrase


def _entry(item: dict, prefix: str) -> TreeEntry:
    return TreeEntry.make(f"{prefix}{item['path']}", item["sha"], item["mode"], item.get("size"))


def _not_fast_forward(response: httpx.Response) -> bool:
    """True for the 422 GitHub sends when a ref update would lose commits."""
    if response.status_code != 422:
        return False
    return "fast forward" in _error_message(response).lower().replace("-", " ")


class GitHubStore:
    """The Git Data API of one GitHub repository.

    Every call is a single blocking request bounded by ``config.timeout``.
    Expired timeouts, transport failures, 5xx responses and rate limiting
    raise :class:`StorageUnavailable`.
    """

    sparse_edits = True

    def __init__(self, config: CDNConfig, *, client: httpx.Client | None = None):
        self._config = config
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "gitcdn",
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        if client is None:
            client = httpx.Client(
                base_url=config.api_url,
                headers=headers,
                timeout=httpx.Timeout(config.timeout),
            )
        else:
            client.headers.update(headers)
        self._client = client
        self._repo_path = f"/repos/{config.owner}/{config.repo}"

    def __repr__(self) -> str:
        return f"GitHubStore({self._config.owner}/{self._config.repo})"

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send one request; map transient failures to StorageUnavailable.

        404 and 422 responses are returned to the caller, which knows what
        they mean for the resource in question.
        """
        url = path if path.startswith("/") else f"{self._repo_path}/{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise StorageUnavailable(f"GitHub request timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            raise StorageUnavailable(f"GitHub unreachable: {exc}") from exc

        status = response.status_code
        if status >= 500 or status == 429:
            raise StorageUnavailable(f"GitHub returned {status} for {method} {url}")
        if status == 403 and response.headers.get("x-ratelimit-remaining") == "0":
            raise StorageUnavailable("GitHub rate limit exhausted")
        if status in (404, 409, 422) or status < 400:
            return response
        raise GitHubAPIError(status, _error_message(response))

    def _expect(self, response: httpx.Response, *ok: int) -> dict:
        if response.status_code not in ok:
            raise GitHubAPIError(response.status_code, _error_message(response))
        return response.json()

    # --- Blobs ---

    def create_blob(self, data: bytes) -> str:
        response = self._request("POST", "git/blobs", json={
            "content": base64.b64encode(data).decode("ascii"),
            "encoding": "base64",
        })
        return self._expect(response, 201)["sha"]

    def read_blob(self, content_id: str) -> bytes:
        response = self._request("GET", f"git/blobs/{content_id}")
        if response.status_code == 404:
            raise NotFound(content_id, f"Blob not found: {content_id}")
        body = self._expect(response, 200)
        if body.get("encoding") == "base64":
            return base64.b64decode(body["content"])
        return body["content"].encode()

    # --- Trees ---

    def read_tree(self, tree_id: str, recursive: bool = False, *, sizes: bool = False) -> TreeSnapshot:
        # GitHub reports blob sizes in every listing; *sizes* costs nothing here.
        body = self._get_tree(tree_id, recursive)
        if recursive and body.get("truncated"):
            logger.warning("tree %s listing truncated by GitHub; walking subtrees", tree_id[:7])
            entries = list(self._walk_tree(tree_id, ""))
        else:
            entries = [_entry(item, "") for item in body.get("tree", [])]
        return TreeSnapshot(body.get("sha", tree_id), entries, recursive=recursive)

    def _get_tree(self, tree_id: str, recursive: bool) -> dict:
        params = {"recursive": "1"} if recursive else None
        response = self._request("GET", f"git/trees/{tree_id}", params=params)
        if response.status_code == 404:
            raise NotFound(tree_id, f"Tree not found: {tree_id}")
        return self._expect(response, 200)

    def _walk_tree(self, tree_id: str, prefix: str):
        """List a tree one directory per request."""
        body = self._get_tree(tree_id, False)
        if body.get("truncated"):
            raise TreeTruncated(tree_id)
        for item in body.get("tree", []):
            entry = _entry(item, prefix)
            yield entry
            if entry.is_dir:
                yield from self._walk_tree(entry.content_id, f"{entry.path}/")

    def create_tree(self, base_tree_id: str | None, entries: Sequence[TreeEntry]) -> str:
        payload: dict = {
            "tree": [
                {
                    "path": e.path,
                    "mode": e.mode.octal,
                    "type": str(e.object_type),
                    "sha": e.content_id,
                }
                for e in entries
            ],
        }
        if base_tree_id is not None:
            payload["base_tree"] = base_tree_id
        response = self._request("POST", "git/trees", json=payload)
        return self._expect(response, 201)["sha"]

    # --- Commits ---

    def read_commit(self, commit_id: str) -> CommitRecord:
        response = self._request("GET", f"git/commits/{commit_id}")
        if response.status_code == 404:
            raise NotFound(commit_id, f"Commit not found: {commit_id}")
        body = self._expect(response, 200)
        author = body.get("author") or {}
        return CommitRecord(
            commit_id=body["sha"],
            tree_id=body["tree"]["sha"],
            parent_ids=tuple(p["sha"] for p in body.get("parents", [])),
            message=body.get("message", ""),
            author=f"{author.get('name', '')} <{author.get('email', '')}>",
        )

    def create_commit(self, tree_id: str, parent_ids: Sequence[str], message: str) -> str:
        payload = {
            "message": message,
            "tree": tree_id,
            "parents": list(parent_ids),
            "author": {
                "name": self._config.author_name,
                "email": self._config.author_email,
            },
        }
        response = self._request("POST", "git/commits", json=payload)
        return self._expect(response, 201)["sha"]

    # --- Refs ---

    def read_ref(self, branch: str) -> str:
        response = self._request("GET", f"git/ref/heads/{branch}")
        if response.status_code == 404:
            raise BranchNotFound(branch)
        body = self._expect(response, 200)
        # A prefix match returns a list of refs instead of the exact ref.
        if isinstance(body, list):
            raise BranchNotFound(branch)
        return body["object"]["sha"]

    def update_ref(self, branch: str, expected_old: str, new: str) -> bool:
        """Move *branch* from *expected_old* to *new*.

        GitHub has no native compare-and-set, so the ref is re-read first
        and the update is sent with ``force: false``.  *new* descends from
        *expected_old*, so GitHub rejects it as a non-fast-forward if
        another writer moved the branch in between.
        """
        if self.read_ref(branch) != expected_old:
            return False
        response = self._request("PATCH", f"git/refs/heads/{branch}", json={
            "sha": new,
            "force": False,
        })
        if response.status_code == 404:
            raise BranchNotFound(branch)
        if response.status_code == 409 or _not_fast_forward(response):
            logger.debug("ref update rejected: %s", _error_message(response))
            return False
        self._expect(response, 200)
        return True

    def describe(self) -> RepoInfo:
        response = self._request("GET", self._repo_path)
        if response.status_code == 404:
            raise NotFound(
                f"{self._config.owner}/{self._config.repo}",
                f"Repository not found: {self._config.owner}/{self._config.repo}",
            )
        body = self._expect(response, 200)
        return RepoInfo(
            name=body["name"],
            default_branch=body.get("default_branch", "main"),
            description=body.get("description") or "",
            size=body.get("size", 0),
            private=body.get("private", False),
            html_url=body.get("html_url"),
        )
