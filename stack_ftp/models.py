"""Data models for the STACK filesystem."""

import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# Mimetype the STACK API reports for folders
DIRECTORY_MIMETYPE = "httpd/unix-directory"

BLOCK_SIZE = 4096

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def is_directory_mimetype(mimetype: Optional[str]) -> bool:
    """Check if a STACK mimetype denotes a directory."""
    return mimetype == DIRECTORY_MIMETYPE


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_datetime(value: Any) -> datetime:
    """Convert unix seconds to an aware UTC datetime (epoch when unusable)."""
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return EPOCH


@dataclass(frozen=True)
class FileAttributes:
    """Stat-like view of one STACK node.

    Fields the STACK API has no concept of (device, owner, links) carry
    fixed placeholder values.

    Remote record fields used:
    - fileId: inode number
    - path: fully-qualified remote path, name is the last segment
    - mimetype: DIRECTORY_MIMETYPE for folders
    - fileSize: bytes
    - mtime: unix seconds
    """
    name: str
    size: int = 0
    mtime: datetime = EPOCH
    ino: int = 0
    mimetype: str = ""
    mode: int = field(default=0)

    dev: int = 0
    nlink: int = 1
    uid: int = 0
    gid: int = 0
    rdev: int = 0
    blksize: int = BLOCK_SIZE

    def __post_init__(self):
        if not self.mode:
            mode = stat.S_IFDIR | 0o755 if self.is_directory() else stat.S_IFREG | 0o644
            object.__setattr__(self, "mode", mode)

    @classmethod
    def from_record(cls, record: dict) -> "FileAttributes":
        """Build attributes from a record returned by the STACK ``list`` endpoint.

        Never fails: missing or malformed fields become zero values.
        """
        if not isinstance(record, dict):
            record = {}
        path = record.get("path") or ""
        if not isinstance(path, str):
            path = str(path)
        mimetype = record.get("mimetype") or ""
        return cls(
            name=path[path.rfind("/") + 1:],
            size=_as_int(record.get("fileSize")),
            mtime=_as_datetime(record.get("mtime")),
            ino=_as_int(record.get("fileId")),
            mimetype=mimetype if isinstance(mimetype, str) else str(mimetype),
        )

    @classmethod
    def root(cls) -> "FileAttributes":
        """Synthetic attributes for the share root, which the API never lists."""
        return cls(name="", mimetype=DIRECTORY_MIMETYPE)

    @property
    def blocks(self) -> int:
        # st_blocks counts 512-byte units
        return (self.size + 511) // 512

    @property
    def atime(self) -> datetime:
        return self.mtime

    @property
    def ctime(self) -> datetime:
        return self.mtime

    @property
    def birthtime(self) -> datetime:
        return self.mtime

    def is_directory(self) -> bool:
        return is_directory_mimetype(self.mimetype)

    def is_file(self) -> bool:
        return not self.is_directory()

    # The STACK store has no links, devices, pipes or sockets
    def is_symlink(self) -> bool:
        return False

    def is_block_device(self) -> bool:
        return False

    def is_character_device(self) -> bool:
        return False

    def is_fifo(self) -> bool:
        return False

    def is_socket(self) -> bool:
        return False
