"""
Archive provider: turns a zip or tar file into a read-only file tree.

The tree is built from the archive index only; member contents are read
on demand by re-opening the archive, so building is cheap and the tree
holds no open file descriptors.
"""

import errno
import logging
import lzma
import os
import stat
import tarfile
import time
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Optional, Protocol

import pyfuse3

from .models import Attributes, DirEntry

log = logging.getLogger(__name__)

FILE_MODE = stat.S_IFREG | 0o444
DIR_MODE = stat.S_IFDIR | 0o555

# What zipfile and tarfile raise on damaged, encrypted or unsupported members
READ_ERRORS = (
    OSError, EOFError, KeyError, RuntimeError, NotImplementedError,
    zipfile.BadZipFile, tarfile.TarError, zlib.error, lzma.LZMAError,
)


class ArchiveError(Exception):
    """The archive could not be turned into a file tree."""


class ArchiveProvider(Protocol):
    """Builds a file tree from an archive path. May block."""

    def build(self, source_path: str) -> "ArchiveTree":
        ...


@dataclass
class ArchiveNode:
    """A file or directory inside an archive."""
    name: str
    is_dir: bool
    size: int = 0
    mtime: Optional[float] = None
    member: Optional[str] = None  # Member name inside the archive (files only)
    children: dict[str, "ArchiveNode"] = field(default_factory=dict)

    @property
    def attributes(self) -> Attributes:
        if self.is_dir:
            return Attributes(mode=DIR_MODE, mtime=self.mtime)
        return Attributes(mode=FILE_MODE, size=self.size, mtime=self.mtime)


class ArchiveTree:
    """Read-only view of an archive's contents."""

    def __init__(self, source_path: str, kind: str):
        self.source_path = source_path
        self.kind = kind  # "zip" or "tar"
        self.root = ArchiveNode(name="", is_dir=True, mtime=time.time())

    def __repr__(self) -> str:
        return f"ArchiveTree({self.source_path!r}, kind={self.kind!r})"

    def _add(self, member: str, is_dir: bool, size: int, mtime: Optional[float]) -> None:
        parts = [p for p in member.split("/") if p and p != "."]
        if not parts or ".." in parts:
            log.debug(f"Skipping archive member {member!r} in {self.source_path}")
            return

        node = self.root
        for part in parts[:-1]:
            child = node.children.get(part)
            if child is None:
                child = ArchiveNode(name=part, is_dir=True, mtime=mtime)
                node.children[part] = child
            node = child

        leaf = parts[-1]
        existing = node.children.get(leaf)
        if is_dir:
            if existing is None:
                node.children[leaf] = ArchiveNode(name=leaf, is_dir=True, mtime=mtime)
            else:
                existing.mtime = mtime
        else:
            # Later duplicates shadow earlier ones, as when extracting
            node.children[leaf] = ArchiveNode(
                name=leaf, is_dir=False, size=size, mtime=mtime, member=member,
            )

    def _find(self, subpath: str) -> ArchiveNode:
        node = self.root
        for part in subpath.strip("/").split("/"):
            if not part:
                continue
            if not node.is_dir or part not in node.children:
                raise pyfuse3.FUSEError(errno.ENOENT)
            node = node.children[part]
        return node

    def getattr(self, subpath: str) -> Attributes:
        return self._find(subpath).attributes

    def listdir(self, subpath: str) -> list[DirEntry]:
        node = self._find(subpath)
        if not node.is_dir:
            raise pyfuse3.FUSEError(errno.ENOTDIR)
        return [DirEntry(name=name, attributes=child.attributes)
                for name, child in sorted(node.children.items())]

    def read(self, subpath: str) -> bytes:
        """Read a whole member. Blocking, so run it in a worker thread."""
        node = self._find(subpath)
        if node.is_dir:
            raise pyfuse3.FUSEError(errno.EISDIR)

        try:
            if self.kind == "zip":
                with zipfile.ZipFile(self.source_path) as zf:
                    return zf.read(node.member)

            with tarfile.open(self.source_path) as tf:
                f = tf.extractfile(node.member)
                if f is None:
                    raise ArchiveError(f"{node.member}: not a regular file")
                with f:
                    return f.read()
        except READ_ERRORS as e:
            raise ArchiveError(f"{self.source_path}: {e}") from e


class DefaultArchiveProvider:
    """Recognises zip and tar archives (plain, gz, bz2, xz) by content."""

    def build(self, source_path: str) -> ArchiveTree:
        if not os.path.isfile(source_path):
            raise ArchiveError(f"{source_path}: not a regular file")

        try:
            if zipfile.is_zipfile(source_path):
                return self._load_zip(source_path)
            if tarfile.is_tarfile(source_path):
                return self._load_tar(source_path)
        except READ_ERRORS as e:
            raise ArchiveError(f"{source_path}: {e}") from e

        raise ArchiveError(f"{source_path}: unknown archive format")

    def _load_zip(self, source_path: str) -> ArchiveTree:
        tree = ArchiveTree(source_path, kind="zip")
        with zipfile.ZipFile(source_path) as zf:
            for info in zf.infolist():
                try:
                    mtime = time.mktime(info.date_time + (0, 0, -1))
                except (OverflowError, ValueError):
                    mtime = None
                tree._add(info.filename, info.is_dir(), info.file_size, mtime)
        log.info(f"Indexed zip archive {source_path}")
        return tree

    def _load_tar(self, source_path: str) -> ArchiveTree:
        tree = ArchiveTree(source_path, kind="tar")
        with tarfile.open(source_path) as tf:
            for member in tf.getmembers():
                if member.isdir():
                    tree._add(member.name, True, 0, member.mtime)
                elif member.isreg():
                    tree._add(member.name, False, member.size, member.mtime)
                else:
                    # Links and device nodes are not exposed
                    log.debug(f"Skipping non-regular tar member {member.name}")
        log.info(f"Indexed tar archive {source_path}")
        return tree
