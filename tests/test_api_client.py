"""Tests for StackApiClient request shapes and status handling."""

from urllib.parse import parse_qs

import httpx
import pytest

from stack_ftp.api_client import StackApiClient
from stack_ftp.errors import AuthenticationFailed, RemoteApiError, SessionExpired

from conftest import CSRF_TOKEN, PASSWORD, make_record

BASE_URL = "https://stack.example.com/public-share/photos/"


def _client(handler) -> StackApiClient:
    return StackApiClient(BASE_URL, transport=httpx.MockTransport(handler))


class TestAuthenticate:
    """Tests for the login handshake."""

    def test_returns_csrf_token(self, stack_api):
        client = StackApiClient(BASE_URL, transport=stack_api.transport)
        assert client.authenticate("photos@stack.example.com", PASSWORD) == CSRF_TOKEN
        assert "PHPSESSID" in client.cookies

    def test_posts_password_form_to_info(self, stack_api):
        client = StackApiClient(BASE_URL, transport=stack_api.transport)
        client.authenticate("photos@stack.example.com", PASSWORD)

        request = stack_api.requests[0]
        assert request.method == "POST"
        assert str(request.url) == BASE_URL + "info/"
        assert parse_qs(request.content.decode()) == {"password": [PASSWORD]}

    def test_wrong_password(self, stack_api):
        client = StackApiClient(BASE_URL, transport=stack_api.transport)
        with pytest.raises(AuthenticationFailed) as exc_info:
            client.authenticate("photos@stack.example.com", "wrong")
        assert exc_info.value.reason == "HTTP 401"

    @pytest.mark.parametrize("status", [201, 204, 302, 403, 500])
    def test_only_200_succeeds(self, stack_api, status):
        stack_api.login_status = status
        client = StackApiClient(BASE_URL, transport=stack_api.transport)
        with pytest.raises(AuthenticationFailed):
            client.authenticate("photos@stack.example.com", PASSWORD)

    def test_missing_csrf_header(self):
        client = _client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(AuthenticationFailed, match="no CSRF token"):
            client.authenticate("photos@stack.example.com", PASSWORD)

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(AuthenticationFailed, match="transport error"):
            client.authenticate("photos@stack.example.com", PASSWORD)

    def test_base_url_gets_trailing_slash(self):
        client = StackApiClient(BASE_URL.rstrip("/"))
        assert client.base_url == BASE_URL
        client.close()


class TestListPage:
    """Tests for a single listing request."""

    def test_query_parameters(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"nodes": [make_record("/docs/a.txt")]})

        nodes = _client(handler).list_page("/docs", 100, 100)

        assert len(nodes) == 1
        params = seen[0].url.params
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/public-share/photos/list"
        assert params["type"] == "folder"
        assert params["offset"] == "100"
        assert params["limit"] == "100"
        assert params["sortBy"] == "default"
        assert params["order"] == "asc"
        assert params["dir"] == "/docs"

    def test_missing_nodes_is_empty(self):
        assert _client(lambda r: httpx.Response(200, json={})).list_page("/", 0, 100) == []

    def test_null_nodes_is_empty(self):
        assert _client(lambda r: httpx.Response(200, json={"nodes": None})).list_page("/", 0, 100) == []

    def test_invalid_json(self):
        client = _client(lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(RemoteApiError, match="invalid JSON"):
            client.list_page("/", 0, 100)

    def test_server_error(self):
        client = _client(lambda r: httpx.Response(500))
        with pytest.raises(RemoteApiError) as exc_info:
            client.list_page("/", 0, 100)
        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, SessionExpired)

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_session(self, status):
        client = _client(lambda r: httpx.Response(status))
        with pytest.raises(SessionExpired) as exc_info:
            client.list_page("/", 0, 100)
        assert exc_info.value.status_code == status

    def test_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RemoteApiError, match="timed out"):
            _client(handler).list_page("/", 0, 100)


class TestDownload:
    """Tests for download request shape."""

    def test_form_carries_token_and_path(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"data")

        stream = _client(handler).download_stream("tok", "/a/b c.txt")
        assert stream.read() == b"data"
        stream.close()

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/public-share/photos/download"
        assert parse_qs(seen[0].content.decode()) == {
            "CSRF-Token": ["tok"], "paths[]": ["/a/b c.txt"],
        }

    def test_not_found(self):
        client = _client(lambda r: httpx.Response(404))
        with pytest.raises(RemoteApiError) as exc_info:
            client.download_stream("tok", "/missing")
        assert exc_info.value.status_code == 404


class TestUpload:
    """Tests for upload request shape."""

    def test_put_to_quoted_path(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        stream = _client(handler).upload_stream("tok", "/dir/new file.txt")
        stream.write(b"abc")
        stream.close()

        assert seen[0].method == "PUT"
        assert seen[0].url.raw_path == b"/public-share/photos/upload/dir/new%20file.txt"
        assert seen[0].headers["CSRF-Token"] == "tok"
        assert seen[0].content == b"abc"
        assert stream.status_code == 200
