"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import logging
from contextlib import contextmanager

import click

from ..committer import TreeMutationCommitter
from ..config import CDNConfig
from ..exceptions import GitCDNError, PartialRename
from ..stores import open_store
from ..tree import normalize_path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _strip_colon(raw: str) -> str:
    """Strip an optional leading ':' from a repo-side path."""
    return raw[1:] if raw.startswith(":") else raw


def _normalize_repo_path(path: str) -> str:
    """Normalize and validate a repo-side path."""
    path = _strip_colon(path)
    if not path:
        raise click.ClickException("Repo path must not be empty")
    try:
        return normalize_path(path)
    except ValueError as exc:
        raise click.ClickException(f"Invalid repo path: {exc}")


def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


@contextmanager
def _cli_errors():
    """Turn gitcdn errors into click errors with a readable message."""
    try:
        yield
    except PartialRename as exc:
        raise click.ClickException(
            f"{exc}\n  still present: {exc.old_path}\n  still present: {exc.new_path}"
        )
    except GitCDNError as exc:
        hint = " (safe to retry)" if exc.retryable else ""
        raise click.ClickException(f"{exc}{hint}")


def _get_config(ctx) -> CDNConfig:
    """Build the config from the environment plus command-line overrides."""
    cfg = ctx.obj.get("config")
    if cfg is None:
        with _cli_errors():
            cfg = CDNConfig.from_env(**ctx.obj["overrides"])
        ctx.obj["config"] = cfg
    return cfg


def _get_committer(ctx) -> TreeMutationCommitter:
    committer = ctx.obj.get("committer")
    if committer is None:
        config = _get_config(ctx)
        with _cli_errors():
            try:
                store = open_store(config)
            except FileNotFoundError as exc:
                raise click.ClickException(str(exc))
        committer = TreeMutationCommitter(store, config)
        ctx.obj["committer"] = committer
    return committer


def _branch_option(f):
    """Shared --branch/-b option for commands that target a branch."""
    return click.option("--branch", "-b", default=None,
                        help="Branch to use (default: configured branch).")(f)


def _message_option(f):
    """Shared --message/-m option for write commands."""
    return click.option("--message", "-m", default=None,
                        help="Commit message (auto-generated if omitted).")(f)


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logger = logging.getLogger("gitcdn")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--local", "local_path", type=click.Path(), default=None,
              help="Use a local bare git repository instead of GitHub (or set GITCDN_LOCAL).")
@click.option("--owner", default=None, help="GitHub owner (or set GITCDN_OWNER).")
@click.option("--repo", default=None, help="GitHub repository (or set GITCDN_REPO).")
@click.option("--token", default=None, help="GitHub token (or set GITCDN_TOKEN).")
@click.option("--default-branch", "branch", default=None,
              help="Branch holding the files (or set GITCDN_BRANCH; default main).")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output on stderr.")
@click.pass_context
def main(ctx, local_path, owner, repo, token, branch, verbose):
    """gitcdn: serve files from a git repository.

    Upload, rename, delete and list files in a GitHub repository used as
    a CDN.  Every change is one commit; links are raw.githubusercontent.com
    and jsDelivr URLs.

    \b
    Quick start:
      export GITCDN_OWNER=me GITCDN_REPO=assets GITCDN_TOKEN=...
      gitcdn upload logo.png :img/logo.png
      gitcdn ls
      gitcdn mv :img/logo.png :img/brand.png
      gitcdn rm :img/brand.png

    \b
    Repo paths may be prefixed with ':' (e.g. :path/to/file).
    Use --local PATH to work on a local bare repository.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["overrides"] = {
        "local_path": local_path,
        "owner": owner,
        "repo": repo,
        "token": token,
        "branch": branch,
    }
    _configure_logging(verbose)
