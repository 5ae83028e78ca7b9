"""
StackFS: pyftpdlib AbstractedFS backed by a StackSession.

pyftpdlib normally maps virtual FTP paths onto a local directory tree. Here
there is no local tree: the virtual path *is* the remote STACK path, and
every call is forwarded to the session the authorizer attached to the
connection (``cmd_channel.stack_session``).

Bridge errors are re-raised as OSError so pyftpdlib answers with its usual
``550 <reason>`` replies.
"""

import errno
import logging
import os
import posixpath
import stat
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from pyftpdlib.filesystems import AbstractedFS

from .errors import PathResolutionError, RemoteApiError, SessionExpired, StackError, Unsupported
from .models import FileAttributes
from .session import StackSession

log = logging.getLogger(__name__)

# Listing lines older than this show the year instead of the time (like ls)
_SIX_MONTHS = 180 * 24 * 60 * 60


def to_os_error(exc: StackError) -> OSError:
    """Map a bridge error onto the errno pyftpdlib reports to the client."""
    if isinstance(exc, Unsupported):
        return OSError(errno.EOPNOTSUPP, "Operation not supported by STACK", exc.path)
    if isinstance(exc, SessionExpired):
        return OSError(errno.EACCES, "STACK session expired, please log in again", exc.path)
    if isinstance(exc, RemoteApiError):
        if exc.status_code == 404:
            return OSError(errno.ENOENT, os.strerror(errno.ENOENT), exc.path)
        return OSError(errno.EIO, f"STACK API error: {exc}", exc.path)
    if isinstance(exc, PathResolutionError):
        return OSError(errno.EINVAL, f"Invalid path: {exc.reason}")
    return OSError(errno.EIO, str(exc))


@contextmanager
def stack_errors():
    """Re-raise bridge errors as OSError."""
    try:
        yield
    except StackError as e:
        err = to_os_error(e)
        log.debug(f"{e} (errno {errno.errorcode.get(err.errno, err.errno)})")
        raise err from e


def _stat_result(attrs: FileAttributes) -> os.stat_result:
    mtime = attrs.mtime.timestamp()
    return os.stat_result((
        attrs.mode, attrs.ino, attrs.dev, attrs.nlink, attrs.uid, attrs.gid,
        attrs.size, mtime, mtime, mtime,
    ))


class StackFS(AbstractedFS):
    """Virtual filesystem for one FTP connection."""

    def __init__(self, root: str, cmd_channel):
        # Bound before the base init, which may touch cwd
        self._session: StackSession = getattr(cmd_channel, "stack_session", None)
        if self._session is None:
            raise RuntimeError("StackFS requires an authenticated connection")
        # listdir() result waiting for the format_list()/format_mlsx() of the same command
        self._listing: dict[str, dict[str, FileAttributes]] = {}
        super().__init__(root, cmd_channel)

    # ── Path mapping ────────────────────────────────────────────────

    @property
    def cwd(self) -> str:
        return self._session.current_directory()

    @cwd.setter
    def cwd(self, path: str) -> None:
        with stack_errors():
            self._session.change_directory(path)

    def ftpnorm(self, ftppath: str) -> str:
        with stack_errors():
            return self._session.resolve(ftppath)

    def ftp2fs(self, ftppath: str) -> str:
        return self.ftpnorm(ftppath)

    def fs2ftp(self, fspath: str) -> str:
        return self.ftpnorm(fspath)

    def validpath(self, path: str) -> bool:
        # Resolution never escapes the share root
        return True

    def realpath(self, path: str) -> str:
        return self.ftpnorm(path)

    # ── Navigation ──────────────────────────────────────────────────

    def chdir(self, path: str) -> None:
        with stack_errors():
            self._session.change_directory(path)

    # ── Metadata ────────────────────────────────────────────────────

    def _attributes(self, path: str) -> FileAttributes:
        with stack_errors():
            return self._session.stat(path)

    def stat(self, path: str) -> os.stat_result:
        return _stat_result(self._attributes(path))

    lstat = stat

    def isdir(self, path: str) -> bool:
        try:
            return self._attributes(path).is_directory()
        except OSError:
            return False

    def isfile(self, path: str) -> bool:
        try:
            return self._attributes(path).is_file()
        except OSError:
            return False

    def islink(self, path: str) -> bool:
        return False

    def lexists(self, path: str) -> bool:
        try:
            self._attributes(path)
        except OSError:
            return False
        return True

    def getsize(self, path: str) -> int:
        return self._attributes(path).size

    def getmtime(self, path: str) -> float:
        return self._attributes(path).mtime.timestamp()

    def readlink(self, path: str) -> str:
        raise to_os_error(Unsupported("readlink", path))

    # ── Listing ─────────────────────────────────────────────────────

    def listdir(self, path: str) -> list[str]:
        with stack_errors():
            entries = self._session.list(path)
        self._listing = {path: {entry.name: entry for entry in entries}}
        return [entry.name for entry in entries]

    listdirinfo = listdir

    def discard_listing(self) -> None:
        """Forget a listdir() result no format step consumed (NLST, failed LIST)."""
        self._listing.clear()

    def _entries(self, basedir: str, listing: list,
                 ignore_err: bool) -> Iterator[tuple[str, FileAttributes]]:
        # Claimed now, not on first iteration: pyftpdlib drains the lines lazily
        # while later commands may already be running
        listed = self._listing.pop(basedir, {})

        def generate():
            for basename in listing:
                attrs = listed.get(basename)
                if attrs is None:
                    try:
                        attrs = self._attributes(posixpath.join(basedir, basename))
                    except OSError:
                        if ignore_err:
                            continue
                        raise
                yield basename, attrs

        return generate()

    def _time_struct(self, timestamp: float) -> time.struct_time:
        if getattr(self.cmd_channel, "use_gmt_times", True):
            return time.gmtime(timestamp)
        return time.localtime(timestamp)

    def _encode(self, line: str) -> bytes:
        return line.encode("utf8", getattr(self.cmd_channel, "unicode_errors", "replace"))

    def _list_line(self, basename: str, attrs: FileAttributes, now: float) -> bytes:
        mtime = attrs.mtime.timestamp()
        if now - _SIX_MONTHS < mtime <= now + 24 * 60 * 60:
            mtimestr = time.strftime("%b %d %H:%M", self._time_struct(mtime))
        else:
            mtimestr = time.strftime("%b %d  %Y", self._time_struct(mtime))

        line = "%s %3s %-8s %-8s %8s %s %s\r\n" % (
            stat.filemode(attrs.mode), attrs.nlink, "stack", "stack",
            attrs.size, mtimestr, basename,
        )
        return self._encode(line)

    def format_list(self, basedir: str, listing: list, ignore_err: bool = True) -> Iterator[bytes]:
        """Return ``ls -l`` style lines (LIST)."""
        now = time.time()
        entries = self._entries(basedir, listing, ignore_err)
        return (self._list_line(basename, attrs, now) for basename, attrs in entries)

    def _mlsx_line(self, basename: str, attrs: FileAttributes, perms: str, facts: list) -> bytes:
        retfacts = {}
        if attrs.is_directory():
            kind = "dir"
            # e=enter, l=list, c=create files inside
            allowed = [p for p in "el" if p in perms] + (["c"] if "w" in perms else [])
        else:
            kind = "file"
            allowed = [p for p in "rw" if p in perms]

        if "type" in facts:
            retfacts["type"] = kind
        if "perm" in facts:
            retfacts["perm"] = "".join(allowed)
        if "size" in facts:
            retfacts["size"] = attrs.size
        if "modify" in facts:
            retfacts["modify"] = time.strftime(
                "%Y%m%d%H%M%S", self._time_struct(attrs.mtime.timestamp())
            )
        if "unique" in facts:
            retfacts["unique"] = f"{attrs.ino:x}"
        if "unix.mode" in facts:
            retfacts["unix.mode"] = oct(attrs.mode & 0o777)
        if "unix.uid" in facts:
            retfacts["unix.uid"] = attrs.uid
        if "unix.gid" in facts:
            retfacts["unix.gid"] = attrs.gid

        factstring = "".join(f"{key}={retfacts[key]};" for key in sorted(retfacts))
        return self._encode(f"{factstring} {basename}\r\n")

    def format_mlsx(self, basedir: str, listing: list, perms: str, facts: list,
                    ignore_err: bool = True) -> Iterator[bytes]:
        """Return machine-readable facts lines (MLSD/MLST)."""
        entries = self._entries(basedir, listing, ignore_err)
        return (self._mlsx_line(basename, attrs, perms, facts) for basename, attrs in entries)

    # ── Transfers ───────────────────────────────────────────────────

    def open(self, filename: str, mode: str):
        """Open a remote file: ``rb`` downloads, ``wb`` uploads.

        Appending and read/write (REST on STOR) have no STACK equivalent.
        """
        with stack_errors():
            if mode == "rb":
                return self._session.read(filename)
            if mode == "wb":
                stream, _ = self._session.write(filename)
                return stream
            raise Unsupported(f"open({mode})", self._session.resolve(filename))

    def mkstemp(self, suffix: str = "", prefix: str = "", dir: Optional[str] = None,
                mode: str = "wb"):
        with stack_errors():
            self._session.unique_name(dir)

    # ── Unsupported mutations ───────────────────────────────────────

    def mkdir(self, path: str) -> None:
        with stack_errors():
            self._session.make_directory(path)

    def rmdir(self, path: str) -> None:
        with stack_errors():
            self._session.delete_entry(path)

    def remove(self, path: str) -> None:
        with stack_errors():
            self._session.delete_entry(path)

    def rename(self, src: str, dst: str) -> None:
        with stack_errors():
            self._session.rename(src, dst)

    def chmod(self, path: str, mode) -> None:
        with stack_errors():
            self._session.change_mode(path, mode)

    def utime(self, path: str, timeval) -> None:
        raise to_os_error(Unsupported("utime", path))
