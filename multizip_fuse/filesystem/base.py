"""
BaseMixin: lifecycle, shared state, and the host-connector capability.

Owns the inode table, open handles, directory snapshots and the archive
attachments, and builds pyfuse3 attribute structs from Attributes.
"""

import errno
import logging
import os
import time

import pyfuse3

from ..archive import ArchiveTree
from ..models import CONFIG_DIR, Attributes, DirEntry
from ..registry import MountRegistry

log = logging.getLogger(__name__)


class BaseMixin(pyfuse3.Operations):
    """Lifecycle, shared state, and core FUSE plumbing."""

    ROOT_INODE = pyfuse3.ROOT_INODE  # 1
    CONFIG_INODE = 2  # Fixed inode for /config/

    def __init__(self, registry: MountRegistry):
        super().__init__()
        self.registry = registry

        # Inode <-> namespace path ("" is the root, no leading slash)
        self._inodes: dict[int, str] = {
            self.ROOT_INODE: "",
            self.CONFIG_INODE: CONFIG_DIR,
        }
        self._paths: dict[str, int] = {path: inode for inode, path in self._inodes.items()}
        self._next_inode = 100  # Dynamic inodes start here

        # Archives attached at /<name>; never detached while mounted
        self._attached: dict[str, ArchiveTree] = {}

        # Open file handles and directory listing snapshots
        self._handles: dict[int, object] = {}
        self._dir_snapshots: dict[int, tuple[str, list[DirEntry]]] = {}
        self._next_fh = 1

        registry.bind(self)

    def _make_attr(self, inode: int, attrs: Attributes, volatile: bool = True) -> pyfuse3.EntryAttributes:
        """Create file attributes.

        volatile entries come from the registry and may change at any time,
        so the kernel is told not to cache them.
        """
        attr = pyfuse3.EntryAttributes()
        attr.st_ino = inode
        attr.st_mode = attrs.mode
        attr.st_nlink = 2 if attrs.is_dir else 1
        attr.st_size = attrs.size
        mtime_ns = int((attrs.mtime if attrs.mtime is not None else time.time()) * 1e9)
        attr.st_atime_ns = mtime_ns
        attr.st_mtime_ns = mtime_ns
        attr.st_ctime_ns = mtime_ns
        attr.st_uid = os.getuid()
        attr.st_gid = os.getgid()
        if volatile:
            attr.entry_timeout = 0
            attr.attr_timeout = 0
        return attr

    def _allocate_fh(self) -> int:
        fh = self._next_fh
        self._next_fh += 1
        return fh

    def _new_handle(self, handle: object) -> int:
        fh = self._allocate_fh()
        self._handles[fh] = handle
        return fh

    def _new_dir_handle(self, path: str, entries: list[DirEntry]) -> int:
        fh = self._allocate_fh()
        self._dir_snapshots[fh] = (path, entries)
        return fh

    # ── Host connector ────────────────────────────────────────────────

    async def attach(self, mount_path: str, archive: ArchiveTree) -> None:
        """Attach an archive tree at a top-level path such as "/photos"."""
        name = mount_path.strip("/")
        if not name or "/" in name or name == CONFIG_DIR:
            log.warning(f"attach rejected: bad mount path {mount_path!r}")
            raise pyfuse3.FUSEError(errno.EINVAL)
        if name in self._attached:
            log.warning(f"attach rejected: {mount_path} is already attached")
            raise pyfuse3.FUSEError(errno.EBUSY)
        self._attached[name] = archive
        log.info(f"Attached {archive!r} at {mount_path}")

    # ── FUSE plumbing ─────────────────────────────────────────────────

    async def statfs(self, ctx: pyfuse3.RequestContext) -> pyfuse3.StatvfsData:
        """Return filesystem stats. Nothing here is writable."""
        s = pyfuse3.StatvfsData()
        s.f_bsize = 4096
        s.f_frsize = 4096
        s.f_blocks = 0
        s.f_bfree = 0
        s.f_bavail = 0
        s.f_files = len(self._inodes)
        s.f_ffree = 0
        s.f_favail = 0
        s.f_namemax = 255
        return s

    async def access(self, inode: int, mode: int, ctx: pyfuse3.RequestContext) -> bool:
        """Permission check: always allow, each handler enforces its own rules."""
        return True

    async def flush(self, fh: int) -> None:
        pass

    async def destroy(self) -> None:
        """Drop open handles on unmount."""
        log.info(f"Destroying filesystem ({len(self._attached)} attached archive(s))")
        self._handles.clear()
        self._dir_snapshots.clear()
