"""
WriteMixin: create, write, setattr, unlink, and the refused mutations.

Only the control directory accepts changes: creating config/<name>
yields a MountRequest, writing to it mounts the archive, and unlinking
it forgets the mount. Archive contents are read-only.
"""

import errno
import logging

import pyfuse3

from ..models import CONFIG_DIR, CONTROL_FILE_MODE, Attributes

log = logging.getLogger(__name__)


class WriteMixin:
    """File creation, writing, and mutation operations."""

    async def create(self, parent_inode: int, name: bytes, mode: int, flags: int, ctx: pyfuse3.RequestContext) -> tuple[pyfuse3.FileInfo, pyfuse3.EntryAttributes]:
        """Create a control file in config/ and return its mount request."""
        path = self._child_path(parent_inode, name)
        log.info(f"create: {path}")

        request = await self.registry.create(path, flags, mode)

        inode = self._inode_for(path)
        fi = pyfuse3.FileInfo(fh=self._new_handle(request))
        fi.direct_io = True
        return (fi, self._make_attr(inode, Attributes(mode=CONTROL_FILE_MODE)))

    async def write(self, fh: int, off: int, buf: bytes) -> int:
        """Hand the written bytes to the open handle."""
        handle = self._handles.get(fh)
        if handle is None:
            raise pyfuse3.FUSEError(errno.EBADF)
        return await handle.write(buf)

    async def setattr(self, inode: int, attr: pyfuse3.EntryAttributes, fields: pyfuse3.SetattrFields, fh: int, ctx: pyfuse3.RequestContext) -> pyfuse3.EntryAttributes:
        """Accept and ignore attribute changes on control files (truncate on open)."""
        path = self._path_of(inode)
        if not self._is_registry_path(path):
            raise pyfuse3.FUSEError(errno.EROFS)
        if not path.startswith(CONFIG_DIR + "/"):
            raise pyfuse3.FUSEError(errno.EPERM)

        # A control file with an open request but no table entry yet still exists
        if fh is not None and fh in self._handles:
            return self._make_attr(inode, Attributes(mode=CONTROL_FILE_MODE))
        return await self.getattr(inode, ctx)

    async def unlink(self, parent_inode: int, name: bytes, ctx: pyfuse3.RequestContext) -> None:
        """Forget a mount via config/<name>."""
        path = self._child_path(parent_inode, name)
        log.info(f"unlink: {path}")
        if not self._is_registry_path(path):
            raise pyfuse3.FUSEError(errno.EROFS)
        await self.registry.unlink(path)

    async def mkdir(self, parent_inode: int, name: bytes, mode: int, ctx: pyfuse3.RequestContext) -> pyfuse3.EntryAttributes:
        log.warning(f"mkdir rejected: {self._child_path(parent_inode, name)}")
        raise pyfuse3.FUSEError(errno.EPERM)

    async def rmdir(self, parent_inode: int, name: bytes, ctx: pyfuse3.RequestContext) -> None:
        log.warning(f"rmdir rejected: {self._child_path(parent_inode, name)}")
        raise pyfuse3.FUSEError(errno.EPERM)

    async def rename(self, parent_inode_old: int, name_old: bytes, parent_inode_new: int, name_new: bytes, flags: int, ctx: pyfuse3.RequestContext) -> None:
        raise pyfuse3.FUSEError(errno.EPERM)
