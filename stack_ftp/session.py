"""
STACK session: the file-system provider for one authenticated FTP connection.

A StackSession only exists after a successful login: create() performs the
handshake and either returns a ready session or raises AuthenticationFailed.
The CSRF token and cookie jar are fixed from then on (no re-authentication);
only the working directory changes.
"""

import logging
import posixpath
from abc import ABC, abstractmethod
from typing import Optional, Union

import httpx

from .api_client import StackApiClient
from .errors import PathResolutionError, RemoteApiError, Unsupported
from .models import FileAttributes
from .streams import DownloadStream, UploadStream

log = logging.getLogger(__name__)

# The STACK API returns at most 100 nodes per listing request
PAGE_SIZE = 100

ROOT = "/"


def resolve_path(cwd: str, target: Optional[str] = None) -> str:
    """Resolve ``target`` against ``cwd`` with lexical POSIX semantics.

    Absolute targets replace cwd, relative ones are appended, and ``.``/``..``
    are collapsed without touching the remote store. ``..`` never climbs
    above the root.
    """
    if target is None or target == "":
        return cwd
    if not isinstance(target, str):
        raise PathResolutionError(target, "path must be a string")
    if "\x00" in target:
        raise PathResolutionError(target, "path contains a NUL byte")

    resolved = posixpath.normpath(posixpath.join(cwd, target))
    # normpath keeps a leading "//" (implementation-defined on POSIX); STACK has one root
    if resolved.startswith("//"):
        resolved = ROOT + resolved.lstrip("/")
    return resolved


class FileSystemProvider(ABC):
    """Contract the FTP layer drives for one connection.

    Backends that cannot support an operation raise Unsupported from it
    rather than leaving it out.
    """

    @abstractmethod
    def current_directory(self) -> str:
        """Return the working directory."""

    @abstractmethod
    def change_directory(self, target: str) -> str:
        """Change and return the working directory."""

    @abstractmethod
    def list(self, target: Optional[str] = None) -> list[FileAttributes]:
        """List a directory (working directory when target is None)."""

    @abstractmethod
    def stat(self, target: str) -> FileAttributes:
        """Return attributes for a single entry."""

    @abstractmethod
    def read(self, target: str) -> DownloadStream:
        """Open a file for streamed reading."""

    @abstractmethod
    def write(self, target: str) -> tuple[UploadStream, str]:
        """Open a file for streamed writing; returns (sink, resolved path)."""

    @abstractmethod
    def make_directory(self, target: str) -> str:
        """Create a directory."""

    @abstractmethod
    def delete_entry(self, target: str) -> None:
        """Delete a file or directory."""

    @abstractmethod
    def rename(self, source: str, destination: str) -> None:
        """Rename or move an entry."""

    @abstractmethod
    def change_mode(self, target: str, mode: Union[int, str]) -> None:
        """Change permissions of an entry."""

    @abstractmethod
    def unique_name(self, directory: Optional[str] = None) -> str:
        """Generate a name that does not exist yet."""

    @abstractmethod
    def close(self) -> None:
        """Release all resources held for the connection."""


class StackSession(FileSystemProvider):
    """File-system provider backed by the STACK shared-folder API."""

    def __init__(self, connection_id: str, api: StackApiClient, csrf_token: str):
        """Use StackSession.create(); this assumes authentication already succeeded."""
        self.connection_id = connection_id
        self._api = api
        self._csrf_token = csrf_token
        self._cwd = ROOT
        self._streams: set = set()
        self._closed = False

    @classmethod
    def create(cls, connection_id: str, base_url: str, username: str, password: str,
               timeout: float = 30.0,
               transport: Optional[httpx.BaseTransport] = None) -> "StackSession":
        """Log in to the share and return an authenticated session.

        Raises:
            AuthenticationFailed: login rejected or unreachable (nothing is leaked)
        """
        api = StackApiClient(base_url, timeout=timeout, transport=transport)
        try:
            csrf_token = api.authenticate(username, password)
        except BaseException:
            api.close()
            raise
        return cls(connection_id, api, csrf_token)

    @property
    def base_url(self) -> str:
        return self._api.base_url

    @property
    def csrf_token(self) -> str:
        return self._csrf_token

    @property
    def cookies(self) -> httpx.Cookies:
        return self._api.cookies

    @property
    def cwd(self) -> str:
        return self._cwd

    @property
    def closed(self) -> bool:
        return self._closed

    def _log(self, action: str, **fields) -> None:
        details = ", ".join(f"{key}={value}" for key, value in fields.items())
        suffix = f", {details}" if details else ""
        log.info(f"client={self.connection_id}, action={action}{suffix}")

    def _ensure_open(self, operation: str, path: str) -> None:
        if self._closed:
            raise RemoteApiError(operation, path, detail="session is closed")

    def _track(self, stream):
        # Forget finished transfers so the set only holds live streams
        self._streams = {s for s in self._streams if not s.closed}
        self._streams.add(stream)
        return stream

    def resolve(self, target: Optional[str] = None) -> str:
        """Resolve a client path against the working directory."""
        return resolve_path(self._cwd, target)

    # ── Navigation ──────────────────────────────────────────────────

    def current_directory(self) -> str:
        return self._cwd

    def change_directory(self, target: str) -> str:
        """Change the working directory.

        The remote store is not consulted; a missing directory only shows up
        on the next listing.
        """
        self._cwd = self.resolve(target)
        self._log("cwd", path=self._cwd)
        return self._cwd

    # ── Listing ─────────────────────────────────────────────────────

    def _fetch_listing(self, path: str) -> list[FileAttributes]:
        """Fetch every page of a directory, in offset order.

        Stops after the first page shorter than PAGE_SIZE, so a directory
        holding an exact multiple of PAGE_SIZE entries costs one trailing
        empty request. Any failing page fails the whole listing.
        """
        self._ensure_open("list", path)
        entries: list[FileAttributes] = []
        offset = 0
        while True:
            page = self._api.list_page(path, offset, PAGE_SIZE)
            entries.extend(FileAttributes.from_record(record) for record in page)
            if len(page) < PAGE_SIZE:
                return entries
            offset += PAGE_SIZE

    def list(self, target: Optional[str] = None) -> list[FileAttributes]:
        path = self.resolve(target)
        self._log("list", path=path)
        entries = self._fetch_listing(path)
        log.debug(f"client={self.connection_id}, listed {len(entries)} entries in {path}")
        return entries

    def stat(self, target: str) -> FileAttributes:
        """Look up one entry by listing its parent directory.

        The share root always exists and is never listed.
        """
        path = self.resolve(target)
        self._log("stat", path=path)
        if path == ROOT:
            return FileAttributes.root()

        parent, name = posixpath.split(path)
        for entry in self._fetch_listing(parent):
            if entry.name == name:
                return entry
        raise RemoteApiError("stat", path, status_code=404, detail="no such file or directory")

    # ── Transfers ───────────────────────────────────────────────────

    def read(self, target: str) -> DownloadStream:
        path = self.resolve(target)
        self._log("read", path=path)
        self._ensure_open("download", path)
        return self._track(self._api.download_stream(self._csrf_token, path))

    def write(self, target: str) -> tuple[UploadStream, str]:
        path = self.resolve(target)
        self._log("write", path=path)
        self._ensure_open("upload", path)
        return self._track(self._api.upload_stream(self._csrf_token, path)), path

    # ── Unsupported by the public-share API ─────────────────────────

    def make_directory(self, target: str) -> str:
        path = self.resolve(target)
        self._log("mkdir", path=path)
        raise Unsupported("mkdir", path)

    def delete_entry(self, target: str) -> None:
        path = self.resolve(target)
        self._log("delete", path=path)
        raise Unsupported("delete", path)

    def rename(self, source: str, destination: str) -> None:
        from_path = self.resolve(source)
        to_path = self.resolve(destination)
        self._log("rename", source=from_path, destination=to_path)
        raise Unsupported("rename", from_path)

    def change_mode(self, target: str, mode: Union[int, str]) -> None:
        path = self.resolve(target)
        self._log("chmod", path=path, mode=mode)
        raise Unsupported("chmod", path)

    def unique_name(self, directory: Optional[str] = None) -> str:
        path = self.resolve(directory)
        self._log("unique-name", path=path)
        raise Unsupported("unique-name", path)

    # ── Lifecycle ───────────────────────────────────────────────────

    def close(self) -> None:
        """Abort unfinished uploads, drop open downloads and close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        self._log("close")

        for stream in list(self._streams):
            if stream.closed:
                continue
            if isinstance(stream, UploadStream):
                log.warning(f"client={self.connection_id}, aborting unfinished upload {stream.name}")
                stream.abort()
            else:
                stream.close()
        self._streams.clear()
        self._api.close()
