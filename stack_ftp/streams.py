"""
File-like stream handles for STACK downloads and uploads.

Neither side ever holds a whole file in memory:
- DownloadStream pulls chunks from a streamed httpx response on read()
- UploadStream hands chunks to a worker thread that feeds a chunked PUT body
"""

import io
import logging
import queue
import threading
from typing import Callable, Iterator, Optional

import httpx

from .errors import RemoteApiError, SessionExpired

log = logging.getLogger(__name__)

# Chunks buffered between write() and the upload request body
UPLOAD_QUEUE_SIZE = 16

# How often blocked producers/consumers re-check for failure or abort
_POLL_INTERVAL = 0.1

# Longest abort() waits for the worker; it keeps running as a daemon afterwards
ABORT_JOIN_TIMEOUT = 0.5

_EOF = object()


class UploadAborted(Exception):
    """Raised inside the request body iterator to cancel an upload."""


class DownloadStream:
    """Read-only file object over a streamed STACK ``download`` response."""

    def __init__(self, response: httpx.Response, path: str):
        self.name = path
        self.mode = "rb"
        self._response = response
        self._chunks: Iterator[bytes] = response.iter_bytes()
        self._buffer = b""
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def _next_chunk(self) -> bytes:
        try:
            return next(self._chunks)
        except StopIteration:
            self._exhausted = True
            return b""
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise RemoteApiError("download", self.name, detail=str(e)) from e

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (everything remaining when negative)."""
        if self._closed:
            raise ValueError("I/O operation on closed download stream")

        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b""
            while not self._exhausted:
                parts.append(self._next_chunk())
            return b"".join(parts)

        while len(self._buffer) < size and not self._exhausted:
            self._buffer += self._next_chunk()

        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def seek(self, offset: int, whence: int = 0) -> int:
        raise io.UnsupportedOperation("download streams are not seekable")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer = b""
        self._response.close()

    def __enter__(self) -> "DownloadStream":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<DownloadStream {self.name!r} closed={self._closed}>"


class UploadStream:
    """Write-only file object that streams into a STACK ``upload`` PUT.

    ``write()`` is the producer, the request body iterator running in a
    worker thread is the consumer. The bounded queue between them gives
    backpressure when the remote side is slower than the FTP client.
    """

    def __init__(self, send: Callable[[Iterator[bytes]], httpx.Response], path: str,
                 queue_size: int = UPLOAD_QUEUE_SIZE):
        """
        Args:
            send: Performs the PUT with the given body iterator and returns the response
            path: Remote path being written (used for errors and as file name)
            queue_size: Max chunks buffered between producer and consumer
        """
        self.name = path
        self.mode = "wb"
        self._send = send
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._aborted = threading.Event()
        self._error: Optional[RemoteApiError] = None
        self._status_code: Optional[int] = None
        self._closed = False
        self.bytes_written = 0

        self._worker = threading.Thread(
            target=self._run, name=f"stack-upload:{path}", daemon=True
        )
        self._worker.start()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status of the finished upload (None while in flight)."""
        return self._status_code

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def _body(self) -> Iterator[bytes]:
        while True:
            try:
                chunk = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._aborted.is_set():
                    raise UploadAborted(self.name)
                continue
            if chunk is _EOF:
                return
            if self._aborted.is_set():
                raise UploadAborted(self.name)
            yield chunk

    def _run(self) -> None:
        try:
            response = self._send(self._body())
        except UploadAborted:
            log.info(f"Upload aborted: {self.name}")
            self._error = RemoteApiError("upload", self.name, detail="aborted")
            return
        except (httpx.HTTPError, httpx.StreamError) as e:
            log.error(f"Upload transport error for {self.name}: {e}")
            self._error = RemoteApiError("upload", self.name, detail=str(e))
            return

        self._status_code = response.status_code
        if not response.is_success:
            log.error(f"Upload rejected for {self.name}: HTTP {response.status_code}")
            error_cls = SessionExpired if response.status_code in (401, 403) else RemoteApiError
            self._error = error_cls("upload", self.name, status_code=response.status_code)

    def _put(self, item) -> None:
        while True:
            if self._error is not None:
                raise self._error
            if not self._worker.is_alive():
                raise RemoteApiError("upload", self.name, detail="upload ended before all data was sent")
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def write(self, data) -> int:
        """Queue ``data`` for upload. Raises the upload's error once it has failed."""
        if self._closed:
            raise ValueError("I/O operation on closed upload stream")
        chunk = bytes(data)
        if chunk:
            self._put(chunk)
            self.bytes_written += len(chunk)
        return len(chunk)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Finish the request body and wait for the STACK response."""
        if self._closed:
            return
        self._closed = True
        if self._error is None and self._worker.is_alive():
            self._put(_EOF)
        self._worker.join()
        if self._error is not None:
            raise self._error

    def abort(self) -> None:
        """Cancel the upload without completing the request body.

        Waits at most ABORT_JOIN_TIMEOUT for the worker. A stalled remote only
        notices the abort on its next body read.
        """
        if self._closed:
            return
        self._closed = True
        self._aborted.set()
        self._worker.join(timeout=ABORT_JOIN_TIMEOUT)
        if self._worker.is_alive():
            log.debug(f"Upload worker for {self.name} still draining after abort")

    def __enter__(self) -> "UploadStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()

    def __repr__(self) -> str:
        return f"<UploadStream {self.name!r} closed={self._closed}>"
