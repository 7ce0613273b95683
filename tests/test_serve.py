"""Tests for the dashboard JSON API."""

import io
import json

import pytest

from gitcdn import StorageUnavailable, TreeMutationCommitter, TreeTruncated
from gitcdn.cli._serve import make_app


def _call(app, method, path, query="", body=b"", content_type=""):
    """Invoke the WSGI app and return (status, headers, body)."""
    environ = {
        "REQUEST_METHOD": method,
        "PATH_INFO": path,
        "QUERY_STRING": query,
        "CONTENT_TYPE": content_type,
        "CONTENT_LENGTH": str(len(body)),
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8000",
        "SERVER_PROTOCOL": "HTTP/1.1",
        "wsgi.input": io.BytesIO(body),
        "wsgi.errors": io.BytesIO(),
    }
    holder = {}

    def start_response(status, headers, exc_info=None):
        holder["status"] = status
        holder["headers"] = dict(headers)

    result = b"".join(app(environ, start_response))
    return holder["status"], holder["headers"], result


def _json(app, *args, **kwargs):
    status, _, body = _call(app, *args, **kwargs)
    return status, json.loads(body)


@pytest.fixture
def app(seeded):
    return make_app(seeded)


class TestConfig:
    def test_config(self, app):
        status, data = _json(app, "GET", "/api/config")
        assert status == "200 OK"
        assert data == {
            "owner": "acme", "repo": "assets", "branch": "main",
            "configured": True, "missing": [],
        }


class TestFiles:
    def test_list(self, app):
        status, data = _json(app, "GET", "/api/files")
        assert status == "200 OK"
        assert data["total"] == 3
        assert [f["path"] for f in data["files"]] == ["a.txt", "c.txt", "img/logo.png"]

    def test_list_prefix(self, app):
        _, data = _json(app, "GET", "/api/files", "prefix=img")
        assert data["total"] == 1

    def test_delete(self, app, seeded):
        status, data = _json(app, "DELETE", "/api/files", "path=a.txt")
        assert status == "200 OK"
        assert data["success"] is True
        assert data["commit"] == seeded.head().head_commit_id
        assert "a.txt" not in seeded.snapshot()

    def test_delete_missing(self, app):
        status, data = _json(app, "DELETE", "/api/files", "path=nope.txt")
        assert status == "404 Not Found"
        assert data["retryable"] is False

    def test_delete_without_path(self, app):
        status, data = _json(app, "DELETE", "/api/files")
        assert status == "400 Bad Request"
        assert "path" in data["error"]


class TestUpload:
    def test_upload(self, app, seeded):
        status, data = _json(app, "POST", "/api/upload", "path=css/site.css", body=b"body{}")
        assert status == "201 Created"
        assert data["url"] == "https://raw.githubusercontent.com/acme/assets/main/css/site.css"
        assert "css/site.css" in seeded.snapshot()

    def test_upload_collision(self, app):
        status, data = _json(app, "POST", "/api/upload", "path=a.txt", body=b"x")
        assert status == "409 Conflict"
        assert "already exists" in data["error"]

    def test_upload_overwrite(self, app, seeded, store):
        status, _ = _json(app, "POST", "/api/upload", "path=a.txt&overwrite=1", body=b"new")
        assert status == "201 Created"
        assert store.read_blob(seeded.snapshot().get("a.txt").content_id) == b"new"

    def test_upload_invalid_path(self, app):
        status, _ = _json(app, "POST", "/api/upload", "path=a/../b", body=b"x")
        assert status == "400 Bad Request"


class TestRename:
    def test_rename(self, app, seeded):
        body = json.dumps({"from": "a.txt", "to": "b.txt"}).encode()
        status, data = _json(app, "POST", "/api/rename", body=body)
        assert status == "200 OK"
        assert data["path"] == "b.txt"
        assert "b.txt" in seeded.snapshot()
        assert "a.txt" not in seeded.snapshot()

    def test_rename_missing_fields(self, app):
        status, _ = _json(app, "POST", "/api/rename", body=b'{"from": "a.txt"}')
        assert status == "400 Bad Request"

    def test_rename_bad_json(self, app):
        status, _ = _json(app, "POST", "/api/rename", body=b"not json")
        assert status == "400 Bad Request"

    def test_rename_body_not_object(self, app):
        status, data = _json(app, "POST", "/api/rename", body=b"[1]")
        assert status == "400 Bad Request"
        assert "object" in data["error"]

    def test_rename_non_string_paths(self, app, seeded):
        body = json.dumps({"from": 123, "to": "b.txt"}).encode()
        status, data = _json(app, "POST", "/api/rename", body=body)
        assert status == "400 Bad Request"
        assert "strings" in data["error"]
        assert "b.txt" not in seeded.snapshot()

    def test_rename_collision(self, app):
        body = json.dumps({"from": "a.txt", "to": "c.txt"}).encode()
        status, _ = _json(app, "POST", "/api/rename", body=body)
        assert status == "409 Conflict"


class TestDownload:
    def test_download(self, app):
        status, headers, body = _call(app, "GET", "/api/download", "path=img/logo.png")
        assert status == "200 OK"
        assert body == b"\x89PNG\r\n\x1a\n"
        assert headers["Content-Type"] == "image/png"
        assert headers["Content-Disposition"] == 'attachment; filename="logo.png"'

    def test_download_missing(self, app):
        status, _ = _json(app, "GET", "/api/download", "path=nope.txt")
        assert status == "404 Not Found"


class TestRouting:
    def test_unknown_path(self, app):
        status, _ = _json(app, "GET", "/api/nope")
        assert status == "404 Not Found"

    def test_wrong_method(self, app):
        status, _ = _json(app, "PUT", "/api/files")
        assert status == "405 Method Not Allowed"

    def test_cors(self, seeded):
        app = make_app(seeded, cors=True)
        status, headers, _ = _call(app, "OPTIONS", "/api/files")
        assert status == "204 No Content"
        assert headers["Access-Control-Allow-Origin"] == "*"
        _, headers, _ = _call(app, "GET", "/api/config")
        assert headers["Access-Control-Allow-Origin"] == "*"


class TestErrors:
    def test_unavailable_is_503(self, flaky):
        f, committer = flaky
        f.fail("create_tree", StorageUnavailable("GitHub returned 502"))
        status, data = _json(make_app(committer), "POST", "/api/upload", "path=x.txt", body=b"x")
        assert status == "503 Service Unavailable"
        assert data["retryable"] is True

    def test_truncated_tree_is_502(self, flaky):
        f, committer = flaky
        f.fail("read_tree", TreeTruncated("t" * 40))
        status, data = _json(make_app(committer), "GET", "/api/files")
        assert status == "502 Bad Gateway"
        assert data["retryable"] is False

    def test_partial_rename_reports_paths(self, flaky):
        f, committer = flaky
        committer.upload("a.txt", b"a")
        f.fail("create_tree", StorageUnavailable("503"), times=2,
               when=lambda base, entries: any(e.content_id is None for e in entries))
        body = json.dumps({"from": "a.txt", "to": "b.txt"}).encode()
        status, data = _json(make_app(committer), "POST", "/api/rename", body=body)
        assert status == "500 Internal Server Error"
        assert data["paths"] == ["a.txt", "b.txt"]
        assert data["retryable"] is False

    def test_unconfigured(self, store, repo_path):
        from gitcdn import CDNConfig
        committer = TreeMutationCommitter(store, CDNConfig(owner="acme"))
        _, data = _json(make_app(committer), "GET", "/api/config")
        assert data["configured"] is False
        assert data["missing"] == ["GitHub token", "GitHub repository"]
