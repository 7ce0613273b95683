"""Basic commands: init, ls, upload, rm, mv, cat, url, status."""

from __future__ import annotations

import json
import os

import click

from ..exceptions import BranchNotFound
from ..listing import list_files, read_file
from ..stores.local import LocalStore
from ..tree import EntryMode
from ..urls import blob_url, cdn_urls
from ._helpers import (
    main,
    _branch_option,
    _message_option,
    _cli_errors,
    _get_config,
    _get_committer,
    _normalize_repo_path,
    _status,
)


def _mode_from_disk(local_path: str) -> EntryMode:
    """Return the entry mode based on the file's executable bit."""
    if os.stat(local_path).st_mode & 0o111:
        return EntryMode.EXECUTABLE
    return EntryMode.FILE


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@main.command()
@click.option("--branch", "-b", default=None, help="Initial branch name (default: configured branch).")
@click.pass_context
def init(ctx, branch):
    """Create a local bare repository (requires --local)."""
    config = _get_config(ctx)
    if not config.is_local:
        raise click.ClickException("init only works with --local PATH")
    branch = branch or config.branch
    try:
        LocalStore.init(config.local_path, branch=branch, config=config)
    except FileExistsError as exc:
        raise click.ClickException(str(exc))
    _status(ctx, f"Initialized {config.local_path} on branch {branch}")


# ---------------------------------------------------------------------------
# ls
# ---------------------------------------------------------------------------

@main.command()
@click.argument("prefix", required=False)
@_branch_option
@click.option("-l", "--long", "long_", is_flag=True, help="Show sizes, short hashes and URLs.")
@click.option("--json", "as_json", is_flag=True, help="JSON output.")
@click.pass_context
def ls(ctx, prefix, branch, long_, as_json):
    """List files, optionally only those under PREFIX.

    \b
    Examples:
        gitcdn ls
        gitcdn ls :img
        gitcdn ls -l
        gitcdn ls --json
    """
    committer = _get_committer(ctx)
    if prefix is not None:
        prefix = _normalize_repo_path(prefix)
    with _cli_errors():
        files = list_files(committer.store, committer.config, branch=branch, prefix=prefix)

    if as_json:
        click.echo(json.dumps({"files": [f.to_dict() for f in files], "total": len(files)}, indent=2))
        return
    for f in files:
        if long_:
            url = f.download_url or ""
            click.echo(f"{f.sha[:7]}  {f.size:>10}  {f.path}  {url}".rstrip())
        else:
            click.echo(f.path)


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------

@main.command()
@click.argument("local_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("dest", required=False)
@_branch_option
@_message_option
@click.option("--overwrite", is_flag=True, default=False,
              help="Replace the file if DEST already exists.")
@click.pass_context
def upload(ctx, local_file, dest, branch, message, overwrite):
    """Upload LOCAL_FILE to DEST (default: the file's name) and print its URL.

    \b
    Examples:
        gitcdn upload logo.png
        gitcdn upload logo.png :img/logo.png
        gitcdn upload logo.png :img/logo.png --overwrite
    """
    committer = _get_committer(ctx)
    dest = _normalize_repo_path(dest if dest is not None else os.path.basename(local_file))
    with open(local_file, "rb") as f:
        data = f.read()
    with _cli_errors():
        result = committer.upload(
            dest, data, mode=_mode_from_disk(local_file),
            branch=branch, overwrite=overwrite, message=message,
        )
    _status(ctx, f"Uploaded {dest} ({result.commit_id[:7]})")
    click.echo(result.url or result.path)


# ---------------------------------------------------------------------------
# rm
# ---------------------------------------------------------------------------

@main.command()
@click.argument("paths", nargs=-1, required=True)
@_branch_option
@_message_option
@click.pass_context
def rm(ctx, paths, branch, message):
    """Remove files from the repository, one commit per file."""
    committer = _get_committer(ctx)
    for raw in paths:
        path = _normalize_repo_path(raw)
        with _cli_errors():
            result = committer.remove(path, branch=branch, message=message)
        _status(ctx, f"Removed {path} ({result.commit_id[:7]})")


# ---------------------------------------------------------------------------
# mv
# ---------------------------------------------------------------------------

@main.command()
@click.argument("source")
@click.argument("dest")
@_branch_option
@_message_option
@click.pass_context
def mv(ctx, source, dest, branch, message):
    """Rename SOURCE to DEST.

    Adds DEST first and removes SOURCE second.  If the second step fails
    DEST is removed again; if that also fails both paths are reported.
    """
    committer = _get_committer(ctx)
    source = _normalize_repo_path(source)
    dest = _normalize_repo_path(dest)
    with _cli_errors():
        try:
            result = committer.rename(source, dest, branch=branch, message=message)
        except ValueError as exc:
            raise click.ClickException(str(exc))
    _status(ctx, f"Renamed {source} -> {dest} ({result.commit_id[:7]})")
    click.echo(result.url or result.new_path)


# ---------------------------------------------------------------------------
# cat
# ---------------------------------------------------------------------------

@main.command()
@click.argument("path")
@_branch_option
@click.pass_context
def cat(ctx, path, branch):
    """Write the content of PATH to stdout."""
    committer = _get_committer(ctx)
    path = _normalize_repo_path(path)
    with _cli_errors():
        data = read_file(committer.store, path, branch=branch or committer.config.branch)
    click.echo(data, nl=False)


# ---------------------------------------------------------------------------
# url
# ---------------------------------------------------------------------------

@main.command()
@click.argument("path")
@_branch_option
@click.option("--all", "all_urls", is_flag=True, help="Print every CDN URL, labelled.")
@click.pass_context
def url(ctx, path, branch, all_urls):
    """Print the public URL of PATH (no network access)."""
    config = _get_config(ctx)
    if not config.has_location:
        raise click.ClickException("URLs need a GitHub owner and repository (--owner/--repo)")
    path = _normalize_repo_path(path)
    urls = cdn_urls(config.owner, config.repo, branch or config.branch, path)
    if all_urls:
        for entry in urls:
            click.echo(f"{entry.name}: {entry.url}")
        click.echo(f"GitHub page: {blob_url(config.owner, config.repo, branch or config.branch, path)}")
    else:
        click.echo(urls[0].url)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

@main.command()
@_branch_option
@click.pass_context
def status(ctx, branch):
    """Check the connection and describe the repository."""
    committer = _get_committer(ctx)
    with _cli_errors():
        info = committer.store.describe()
        try:
            head = committer.head(branch)
        except BranchNotFound:
            head = None
    click.echo(f"Repository:     {info.name}")
    if info.description:
        click.echo(f"Description:    {info.description}")
    click.echo(f"Default branch: {info.default_branch}")
    branch = branch or committer.config.branch
    if head is None:
        click.echo(f"Branch:         {branch} (missing)")
    else:
        click.echo(f"Branch:         {branch} @ {head.head_commit_id[:7]}")
    click.echo(f"Size:           {info.size} KB")
    click.echo(f"Visibility:     {'private' if info.private else 'public'}")
    if info.html_url:
        click.echo(f"URL:            {info.html_url}")
