"""
ReadMixin: open, read, release.

Control files are opened through the registry, which refuses write
intent and serves the recorded archive path. Archive members are read
whole in a worker thread and served from memory until release.
"""

import errno
import logging

import pyfuse3
import trio

from ..archive import ArchiveError
from ..control import ReadOnlyFile
from ..models import ANY_WRITE, CONFIG_DIR

log = logging.getLogger(__name__)


class ReadMixin:
    """Open and read operations."""

    async def open(self, inode: int, flags: int, ctx: pyfuse3.RequestContext) -> pyfuse3.FileInfo:
        """Open a file."""
        path = self._path_of(inode)

        if path.partition("/")[0] == CONFIG_DIR and path != CONFIG_DIR:
            handle = await self.registry.open(path, flags)
            fi = pyfuse3.FileInfo(fh=self._new_handle(handle))
            # The recorded path can change under an open inode; skip the page cache
            fi.direct_io = True
            return fi

        if self._is_registry_path(path):
            # Root, /config and the mount directories themselves
            raise pyfuse3.FUSEError(errno.EISDIR)

        archive, sub = await self._archive_for(path)
        if archive.getattr(sub).is_dir:
            raise pyfuse3.FUSEError(errno.EISDIR)
        if flags & ANY_WRITE:
            raise pyfuse3.FUSEError(errno.EROFS)

        try:
            data = await trio.to_thread.run_sync(archive.read, sub)
        except ArchiveError as e:
            log.error(f"Failed to read {sub}: {e}")
            raise pyfuse3.FUSEError(errno.EIO)

        fi = pyfuse3.FileInfo(fh=self._new_handle(ReadOnlyFile(data)))
        fi.keep_cache = True
        return fi

    async def read(self, fh: int, off: int, size: int) -> bytes:
        handle = self._handles.get(fh)
        if handle is None:
            raise pyfuse3.FUSEError(errno.EBADF)
        return await handle.read(off, size)

    async def release(self, fh: int) -> None:
        """Release (close) a file handle.

        An unwritten mount request is simply dropped; its name stays
        pending.
        """
        self._handles.pop(fh, None)
