"""Data models and namespace constants for the FUSE filesystem."""

import os
import stat
from dataclasses import dataclass
from typing import Any, Optional


# Control directory: create config/<name> and write an archive path into it
CONFIG_DIR = "config"

ROOT_MODE = stat.S_IFDIR | 0o500  # Should not write in top dir
CONFIG_DIR_MODE = stat.S_IFDIR | 0o700
CONTROL_FILE_MODE = stat.S_IFREG | 0o600
MOUNT_DIR_MODE = stat.S_IFDIR | 0o700

# Open flags that imply the caller wants to modify the file
ANY_WRITE = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT | os.O_TRUNC


@dataclass
class Attributes:
    """Mode, size and modification time of a namespace entry."""
    mode: int
    size: int = 0
    mtime: Optional[float] = None  # None = now

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)


@dataclass
class DirEntry:
    """One entry of a directory listing snapshot."""
    name: str
    attributes: Attributes


@dataclass(frozen=True)
class MountRecord:
    """A committed mount: the attached archive tree and where it came from."""
    archive: Any
    source_path: str


def split_path(path: str) -> tuple[str, str]:
    """Split a namespace path into (dir, base).

    Leading and trailing slashes are ignored, so "/config/photos" and
    "config/photos" both give ("config", "photos"), and "/" gives ("", "").
    """
    path = path.strip("/")
    if "/" not in path:
        return "", path
    head, _, base = path.rpartition("/")
    return head, base
