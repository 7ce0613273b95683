"""serve: JSON API for the file dashboard."""

from __future__ import annotations

import json
import logging
import mimetypes
from urllib.parse import parse_qs

import click

from ..exceptions import (
    BranchNotFound,
    ConfigError,
    GitCDNError,
    GitHubAPIError,
    NotFound,
    PartialRename,
    PathCollision,
    RefUpdateConflict,
    RenameAborted,
    StorageUnavailable,
    TreeTruncated,
)
from ..listing import list_files, read_file
from ._helpers import main, _get_committer

logger = logging.getLogger(__name__)

# Most specific first.
_ERROR_STATUS = [
    (PartialRename, "500 Internal Server Error"),
    (PathCollision, "409 Conflict"),
    (RefUpdateConflict, "409 Conflict"),
    (RenameAborted, "409 Conflict"),
    (NotFound, "404 Not Found"),
    (BranchNotFound, "404 Not Found"),
    (StorageUnavailable, "503 Service Unavailable"),
    (GitHubAPIError, "502 Bad Gateway"),
    (TreeTruncated, "502 Bad Gateway"),
    (ConfigError, "500 Internal Server Error"),
]


class _BadRequest(Exception):
    pass


def _guess_mime(path):
    mime, _ = mimetypes.guess_type(path)
    return mime or "application/octet-stream"


def _json_response(start_response, status, payload):
    body = json.dumps(payload).encode()
    start_response(status, [
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(body))),
    ])
    return [body]


def _error_response(start_response, exc: GitCDNError):
    status = "500 Internal Server Error"
    for cls, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            status = code
            break
    payload = {"error": str(exc), "retryable": exc.retryable}
    if isinstance(exc, PartialRename):
        payload["paths"] = list(exc.paths)
    return _json_response(start_response, status, payload)


def _read_body(environ) -> bytes:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        raise _BadRequest("Invalid Content-Length")
    if length <= 0:
        return b""
    return environ["wsgi.input"].read(length)


def _cors_middleware(app):
    """WSGI middleware that adds permissive CORS headers."""
    _CORS_HEADERS = [
        ("Access-Control-Allow-Origin", "*"),
        ("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS"),
        ("Access-Control-Allow-Headers", "Content-Type"),
    ]

    def wrapped(environ, start_response):
        if environ.get("REQUEST_METHOD") == "OPTIONS":
            start_response("204 No Content", _CORS_HEADERS)
            return [b""]

        def cors_start_response(status, headers):
            return start_response(status, headers + _CORS_HEADERS)

        return app(environ, cors_start_response)

    return wrapped


# ---------------------------------------------------------------------------
# WSGI app
# ---------------------------------------------------------------------------

def make_app(committer, *, cors=False):
    """Return a WSGI application exposing *committer* as a JSON API.

    GET    /api/config                 configured location
    GET    /api/files[?prefix=P]       file listing
    POST   /api/upload?path=P          raw body; &overwrite=1 to replace
    DELETE /api/files?path=P           remove a file
    POST   /api/rename                 {"from": ..., "to": ...}
    GET    /api/download?path=P        raw file content
    """
    store = committer.store
    config = committer.config

    def _param(query, name, required=True):
        values = query.get(name)
        if not values or not values[0]:
            if required:
                raise _BadRequest(f"Missing parameter: {name}")
            return None
        return values[0]

    def _config(environ, query, start_response):
        return _json_response(start_response, "200 OK", {
            "owner": config.owner,
            "repo": config.repo,
            "branch": config.branch,
            "configured": not config.missing(),
            "missing": config.missing(),
        })

    def _files(environ, query, start_response):
        method = environ["REQUEST_METHOD"]
        if method == "DELETE":
            path = _param(query, "path")
            result = committer.remove(path)
            return _json_response(start_response, "200 OK", {
                "success": True,
                "message": f"File {result.path} deleted successfully",
                "commit": result.commit_id,
            })
        files = list_files(store, config, prefix=_param(query, "prefix", required=False))
        return _json_response(start_response, "200 OK", {
            "files": [f.to_dict() for f in files],
            "total": len(files),
        })

    def _upload(environ, query, start_response):
        path = _param(query, "path")
        overwrite = _param(query, "overwrite", required=False) in ("1", "true", "yes")
        result = committer.upload(path, _read_body(environ), overwrite=overwrite)
        return _json_response(start_response, "201 Created", {
            "success": True,
            "path": result.path,
            "url": result.url,
            "commit": result.commit_id,
        })

    def _rename(environ, query, start_response):
        try:
            body = json.loads(_read_body(environ) or b"{}")
        except ValueError:
            raise _BadRequest("Request body must be JSON")
        if not isinstance(body, dict):
            raise _BadRequest("Request body must be a JSON object")
        old_path, new_path = body.get("from"), body.get("to")
        if not old_path or not new_path:
            raise _BadRequest("Missing 'from' or 'to'")
        if not isinstance(old_path, str) or not isinstance(new_path, str):
            raise _BadRequest("'from' and 'to' must be strings")
        result = committer.rename(old_path, new_path)
        return _json_response(start_response, "200 OK", {
            "success": True,
            "path": result.new_path,
            "url": result.url,
            "commit": result.commit_id,
        })

    def _download(environ, query, start_response):
        path = _param(query, "path")
        data = read_file(store, path, branch=config.branch)
        filename = path.rsplit("/", 1)[-1].replace('"', "")
        start_response("200 OK", [
            ("Content-Type", _guess_mime(path)),
            ("Content-Length", str(len(data))),
            ("Content-Disposition", f'attachment; filename="{filename}"'),
        ])
        return [data]

    routes = {
        ("GET", "/api/config"): _config,
        ("GET", "/api/files"): _files,
        ("DELETE", "/api/files"): _files,
        ("POST", "/api/upload"): _upload,
        ("POST", "/api/rename"): _rename,
        ("GET", "/api/download"): _download,
    }
    known_paths = {path for _, path in routes}

    def app(environ, start_response):
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("PATH_INFO", "/").rstrip("/") or "/"
        handler = routes.get((method, path))
        if handler is None:
            if path in known_paths:
                return _json_response(start_response, "405 Method Not Allowed",
                                      {"error": f"Method not allowed: {method}"})
            return _json_response(start_response, "404 Not Found", {"error": f"Not found: {path}"})
        query = parse_qs(environ.get("QUERY_STRING", ""))
        try:
            return handler(environ, query, start_response)
        except (_BadRequest, ValueError) as exc:
            return _json_response(start_response, "400 Bad Request", {"error": str(exc)})
        except GitCDNError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            return _error_response(start_response, exc)

    if cors:
        return _cors_middleware(app)
    return app


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
@click.option("--port", "-p", default=8000, type=int,
              help="Port to listen on (default: 8000, use 0 for OS-assigned).")
@click.option("--cors", is_flag=True, default=False,
              help="Enable CORS headers (Access-Control-Allow-Origin: *).")
@click.option("--quiet", "-q", is_flag=True, default=False,
              help="Suppress per-request log output.")
@click.pass_context
def serve(ctx, host, port, cors, quiet):
    """Serve the dashboard JSON API over HTTP.

    \b
    Examples:
        gitcdn serve
        gitcdn serve -p 9000 --cors
        gitcdn --local assets.git serve
    """
    from wsgiref.simple_server import make_server, WSGIRequestHandler

    app = make_app(_get_committer(ctx), cors=cors)

    if quiet:
        class _Handler(WSGIRequestHandler):
            def log_request(self, code="-", size="-"):
                pass
    else:
        class _Handler(WSGIRequestHandler):
            def log_request(self, code="-", size="-"):
                click.echo(
                    f"{self.client_address[0]} - {self.command} {self.path} {code}",
                    err=True,
                )

    server = make_server(host, port, app, handler_class=_Handler)
    click.echo(f"Serving gitcdn API on http://{host}:{server.server_port}/api/", err=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        click.echo("\nStopped.", err=True)
    finally:
        server.server_close()
