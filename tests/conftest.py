"""
Pytest fixtures for stack-ftp tests.

Provides an in-memory fake of the STACK public-share API, served through
httpx.MockTransport so no test ever touches the network.
"""

import re
from typing import Optional
from urllib.parse import parse_qs, unquote

import httpx
import pytest

from stack_ftp.binder import bind
from stack_ftp.models import DIRECTORY_MIMETYPE

SHARE = "photos"
DOMAIN = "stack.example.com"
LOGIN = f"{SHARE}@{DOMAIN}"
PASSWORD = "hunter2"
CSRF_TOKEN = "csrf-abc123"
SESSION_COOKIE = "PHPSESSID"

_ROUTE = re.compile(r"^/public-share/(?P<share>[^/]+)/(?P<endpoint>.*)$")


def make_record(path: str, mimetype: str = "text/plain", size: int = 0,
                mtime: int = 1_600_000_000, file_id: int = 1) -> dict:
    """Build a node record shaped like the STACK ``list`` endpoint returns."""
    return {
        "fileId": file_id,
        "path": path,
        "mimetype": mimetype,
        "etag": "e",
        "shareToken": "t",
        "fileSize": size,
        "mtime": mtime,
        "isFavorited": False,
    }


def make_dir_record(path: str, file_id: int = 1) -> dict:
    return make_record(path, mimetype=DIRECTORY_MIMETYPE, size=0, file_id=file_id)


class FakeStackApi:
    """Minimal stand-in for one STACK public share.

    - tree: directory path -> list of node records
    - files: file path -> content served by ``download``
    - uploads: file path -> content received by ``upload``
    - requests: every request seen, in order
    """

    def __init__(self, password: str = PASSWORD, csrf_token: str = CSRF_TOKEN):
        self.password = password
        self.csrf_token = csrf_token
        self.login_status: Optional[int] = None  # force a login status
        self.tree: dict[str, list[dict]] = {"/": []}
        self.files: dict[str, bytes] = {}
        self.uploads: dict[str, bytes] = {}
        self.list_errors: dict[int, int] = {}  # offset -> HTTP status
        self.upload_status = 200
        self.expired = False
        self.requests: list[httpx.Request] = []

    # -- helpers for tests --

    def add_file(self, path: str, content: bytes = b"", mtime: int = 1_600_000_000) -> None:
        parent = path.rsplit("/", 1)[0] or "/"
        self.tree.setdefault(parent, []).append(
            make_record(path, size=len(content), mtime=mtime, file_id=len(self.files) + 10)
        )
        self.files[path] = content

    def add_dir(self, path: str) -> None:
        parent = path.rsplit("/", 1)[0] or "/"
        self.tree.setdefault(parent, []).append(make_dir_record(path))
        self.tree.setdefault(path, [])

    def fill_dir(self, path: str, count: int) -> None:
        self.tree[path] = [
            make_record(f"{path.rstrip('/')}/file{i:04d}.txt", size=i, file_id=i)
            for i in range(count)
        ]

    def requests_to(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if _ROUTE.match(r.url.path).group("endpoint") == endpoint]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -- request handling --

    def _authorized(self, request: httpx.Request) -> bool:
        return not self.expired and f"{SESSION_COOKIE}=" in request.headers.get("cookie", "")

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        match = _ROUTE.match(request.url.path)
        if not match:
            return httpx.Response(404)
        endpoint = match.group("endpoint")

        if endpoint == "info/" and request.method == "POST":
            return self._login(request)
        if not self._authorized(request):
            return httpx.Response(401)
        if endpoint == "list" and request.method == "GET":
            return self._list(request)
        if endpoint == "download" and request.method == "POST":
            return self._download(request)
        if endpoint.startswith("upload") and request.method == "PUT":
            return self._upload(request, unquote(endpoint[len("upload"):]))
        return httpx.Response(404)

    def _login(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        status = self.login_status
        if status is None:
            status = 200 if form.get("password") == [self.password] else 401
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(
            200,
            headers={
                "csrf-token": self.csrf_token,
                "set-cookie": f"{SESSION_COOKIE}=s3ss10n; Path=/",
            },
            json={"name": SHARE},
        )

    def _list(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        offset = int(params["offset"])
        limit = int(params["limit"])
        if offset in self.list_errors:
            return httpx.Response(self.list_errors[offset])
        directory = params["dir"]
        if directory not in self.tree:
            return httpx.Response(404)
        nodes = self.tree[directory][offset:offset + limit]
        return httpx.Response(200, json={"nodes": nodes})

    def _download(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        if form.get("CSRF-Token") != [self.csrf_token]:
            return httpx.Response(403)
        path = form.get("paths[]", [""])[0]
        if path not in self.files:
            return httpx.Response(404)
        return httpx.Response(200, content=self.files[path])

    def _upload(self, request: httpx.Request, path: str) -> httpx.Response:
        if request.headers.get("CSRF-Token") != self.csrf_token:
            return httpx.Response(403)
        if self.upload_status != 200:
            return httpx.Response(self.upload_status)
        self.uploads[path] = request.content
        return httpx.Response(200, json={"path": path})


@pytest.fixture
def stack_api() -> FakeStackApi:
    """Fresh fake share for each test."""
    return FakeStackApi()


@pytest.fixture
def session(stack_api):
    """Authenticated session against the fake share."""
    sess = bind("127.0.0.1:50000", LOGIN, PASSWORD, transport=stack_api.transport)
    yield sess
    sess.close()
