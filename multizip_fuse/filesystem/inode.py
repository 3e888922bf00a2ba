"""
InodeMixin: inode table management and path resolution.

Top-level names and config/* are answered by the registry. Anything
deeper belongs to the archive attached at the top-level name, and is
only reachable while the registry still lists that name.
"""

import errno
import logging
from typing import Optional

import pyfuse3

from ..archive import ArchiveTree
from ..models import CONFIG_DIR, Attributes

log = logging.getLogger(__name__)


class InodeMixin:
    """Inode table management and attribute resolution."""

    def _allocate_inode(self) -> int:
        inode = self._next_inode
        self._next_inode += 1
        return inode

    def _inode_for(self, path: str) -> int:
        """Get or create the inode for a namespace path."""
        inode = self._paths.get(path)
        if inode is None:
            inode = self._allocate_inode()
            self._paths[path] = inode
            self._inodes[inode] = path
        return inode

    def _path_of(self, inode: int) -> str:
        path = self._inodes.get(inode)
        if path is None:
            raise pyfuse3.FUSEError(errno.ENOENT)
        return path

    def _child_path(self, parent_inode: int, name: bytes) -> str:
        parent = self._path_of(parent_inode)
        name_str = name.decode("utf-8", "surrogateescape")
        return f"{parent}/{name_str}" if parent else name_str

    def _is_registry_path(self, path: str) -> bool:
        return "/" not in path or path.split("/", 1)[0] == CONFIG_DIR

    async def _reachable_archive(self, top: str) -> Optional[ArchiveTree]:
        """The tree served at /top, or None while top is pending or forgotten.

        An attachment only counts when the registry has committed that same
        tree; a forgotten mount stays attached but is never served again.
        """
        archive = await self.registry.mounted_archive(top)
        if archive is None or self._attached.get(top) is not archive:
            return None
        return archive

    async def _archive_for(self, path: str) -> tuple[ArchiveTree, str]:
        """Split an archive path into (attached tree, path inside it)."""
        top, _, sub = path.partition("/")
        archive = await self._reachable_archive(top)
        if archive is None:
            raise pyfuse3.FUSEError(errno.ENOENT)
        return archive, sub

    async def _resolve(self, path: str) -> Attributes:
        if self._is_registry_path(path):
            return await self.registry.getattr(path)
        archive, sub = await self._archive_for(path)
        return archive.getattr(sub)

    async def getattr(self, inode: int, ctx: pyfuse3.RequestContext = None) -> pyfuse3.EntryAttributes:
        """Get file/directory attributes."""
        path = self._path_of(inode)
        attrs = await self._resolve(path)
        return self._make_attr(inode, attrs, volatile=self._is_registry_path(path))

    async def lookup(self, parent_inode: int, name: bytes, ctx: pyfuse3.RequestContext) -> pyfuse3.EntryAttributes:
        """Look up a directory entry by name."""
        if name == b".":
            return await self.getattr(parent_inode, ctx)
        if name == b"..":
            parent = self._path_of(parent_inode).rpartition("/")[0]
            return await self.getattr(self._inode_for(parent), ctx)

        path = self._child_path(parent_inode, name)
        log.debug(f"lookup: {path}")
        attrs = await self._resolve(path)
        inode = self._inode_for(path)
        return self._make_attr(inode, attrs, volatile=self._is_registry_path(path))
