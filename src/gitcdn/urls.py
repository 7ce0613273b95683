"""Public URL derivation for stored files.

Pure string formatting over owner, repo, branch and path; no network.
"""

from __future__ import annotations

import re
from typing import NamedTuple
from urllib.parse import quote

__all__ = ["CDNUrl", "raw_url", "jsdelivr_url", "blob_url", "cdn_urls", "parse_github_url"]

RAW_HOST = "https://raw.githubusercontent.com"
JSDELIVR_HOST = "https://cdn.jsdelivr.net/gh"
GITHUB_HOST = "https://github.com"

_GITHUB_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+)")


class CDNUrl(NamedTuple):
    """A labelled URL for one file."""
    name: str
    url: str


def _quote_path(path: str) -> str:
    return quote(path.strip("/"), safe="/")


def raw_url(owner: str, repo: str, branch: str, path: str) -> str:
    """URL of the raw file on raw.githubusercontent.com."""
    return f"{RAW_HOST}/{owner}/{repo}/{quote(branch, safe='/')}/{_quote_path(path)}"


def jsdelivr_url(owner: str, repo: str, branch: str, path: str) -> str:
    """URL of the file on the jsDelivr GitHub CDN."""
    return f"{JSDELIVR_HOST}/{owner}/{repo}@{quote(branch, safe='/')}/{_quote_path(path)}"


def blob_url(owner: str, repo: str, branch: str, path: str) -> str:
    """URL of the file's page on github.com."""
    return f"{GITHUB_HOST}/{owner}/{repo}/blob/{quote(branch, safe='/')}/{_quote_path(path)}"


def cdn_urls(owner: str, repo: str, branch: str, path: str) -> list[CDNUrl]:
    """All public URLs for *path*, most direct first."""
    return [
        CDNUrl("GitHub Raw", raw_url(owner, repo, branch, path)),
        CDNUrl("jsDelivr", jsdelivr_url(owner, repo, branch, path)),
    ]


def parse_github_url(url: str) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from a GitHub repository URL.

    Accepts ``https://github.com/o/r``, ``github.com/o/r.git`` and
    ``git@github.com:o/r.git``.

    Raises:
        ValueError: If *url* is not a GitHub repository URL.
    """
    match = _GITHUB_URL_RE.search(url)
    if match is None:
        raise ValueError(f"Not a GitHub repository URL: {url!r}")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not repo:
        raise ValueError(f"Not a GitHub repository URL: {url!r}")
    return owner, repo
