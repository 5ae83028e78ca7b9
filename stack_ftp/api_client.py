"""HTTP API client for a STACK public share."""

import logging
from typing import Iterator, Optional
from urllib.parse import quote

import httpx

from .errors import AuthenticationFailed, RemoteApiError, SessionExpired
from .streams import DownloadStream, UploadStream

log = logging.getLogger(__name__)

# Response header carrying the anti-forgery token handed out at login
CSRF_HEADER = "csrf-token"


class StackApiClient:
    """HTTP client for the STACK shared-folder API.

    One instance per FTP connection. The underlying httpx client's cookie jar
    is the session cookie store: it is filled by authenticate() and sent with
    every later request.
    """

    def __init__(self, base_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            base_url: Share API root, e.g. https://example.stackstorage.com/public-share/photos/
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def cookies(self) -> httpx.Cookies:
        """Session cookies captured at login."""
        return self._client.cookies

    def _check(self, response: httpx.Response, operation: str, path: str) -> None:
        """Raise for non-2xx responses on authenticated calls."""
        if response.is_success:
            return
        if response.status_code in (401, 403):
            raise SessionExpired(operation, path, status_code=response.status_code)
        raise RemoteApiError(operation, path, status_code=response.status_code)

    def authenticate(self, username: str, password: str) -> str:
        """Log in to the share and return the CSRF token.

        Only HTTP 200 counts as success. Session cookies stay in the client jar.

        Args:
            username: Attempted FTP identity (only used in the error)
            password: Share password
        """
        try:
            response = self._client.post("info/", data={"password": password})
        except httpx.HTTPError as e:
            raise AuthenticationFailed(username, f"transport error: {e}") from e

        if response.status_code != 200:
            raise AuthenticationFailed(username, f"HTTP {response.status_code}")

        csrf_token = response.headers.get(CSRF_HEADER)
        if not csrf_token:
            raise AuthenticationFailed(username, "no CSRF token in login response")

        log.debug(f"Authenticated against {self.base_url}, {len(self._client.cookies)} cookie(s)")
        return csrf_token

    def list_page(self, path: str, offset: int, limit: int) -> list[dict]:
        """Fetch one page of a directory listing.

        Returns the raw node records; may be shorter than ``limit`` or empty.
        """
        params = {
            "type": "folder",
            "offset": offset,
            "limit": limit,
            "sortBy": "default",
            "order": "asc",
            "dir": path,
        }
        try:
            response = self._client.get("list", params=params)
        except httpx.HTTPError as e:
            raise RemoteApiError("list", path, detail=str(e)) from e
        self._check(response, "list", path)

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteApiError("list", path, status_code=response.status_code,
                                 detail="invalid JSON in listing") from e

        nodes = body.get("nodes") if isinstance(body, dict) else None
        if not nodes:
            return []
        if not isinstance(nodes, list):
            raise RemoteApiError("list", path, status_code=response.status_code,
                                 detail="unexpected listing format")
        return nodes

    def download_stream(self, csrf_token: str, path: str) -> DownloadStream:
        """Open a streamed download. Returns once the response headers are in."""
        request = self._client.build_request(
            "POST",
            "download",
            data={"CSRF-Token": csrf_token, "paths[]": path},
        )
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise RemoteApiError("download", path, detail=str(e)) from e

        try:
            self._check(response, "download", path)
        except RemoteApiError:
            response.close()
            raise
        return DownloadStream(response, path)

    def upload_stream(self, csrf_token: str, path: str) -> UploadStream:
        """Open a streamed upload. Bytes written to the result are sent as they arrive."""
        url = f"upload{quote(path)}"

        def send(body: Iterator[bytes]) -> httpx.Response:
            return self._client.put(
                url,
                content=body,
                headers={"CSRF-Token": csrf_token},
            )

        return UploadStream(send, path)

    def close(self) -> None:
        """Close the HTTP client and its connection pool."""
        self._client.close()
