"""
DirectoryMixin: directory listing.

opendir takes a complete snapshot of the listing (from the registry for
/ and /config, from the attached archive elsewhere); readdir replays it
by offset and releasedir throws it away. The registry lock is never held
while the kernel consumes entries.
"""

import errno
import logging
import os

import pyfuse3

from ..models import CONFIG_DIR

log = logging.getLogger(__name__)


class DirectoryMixin:
    """Directory listing snapshots."""

    async def opendir(self, inode: int, ctx: pyfuse3.RequestContext) -> int:
        """Open a directory and snapshot its entries."""
        path = self._path_of(inode)
        attrs = await self._resolve(path)
        if not attrs.is_dir:
            raise pyfuse3.FUSEError(errno.ENOTDIR)

        if path in ("", CONFIG_DIR):
            entries = await self.registry.list_dir(path)
        elif "/" not in path:
            archive = await self._reachable_archive(path)
            # Pending name: reserved, nothing served yet
            entries = archive.listdir("") if archive is not None else []
        else:
            archive, sub = await self._archive_for(path)
            entries = archive.listdir(sub)

        fh = self._new_dir_handle(path, entries)
        log.debug(f"opendir: /{path} fh={fh}, {len(entries)} entries")
        return fh

    async def readdir(self, fh: int, start_id: int, token: pyfuse3.ReaddirToken) -> None:
        """Emit snapshot entries starting from start_id."""
        snapshot = self._dir_snapshots.get(fh)
        if snapshot is None:
            raise pyfuse3.FUSEError(errno.EBADF)
        dir_path, entries = snapshot

        for idx, entry in enumerate(entries):
            if idx < start_id:
                continue
            child = f"{dir_path}/{entry.name}" if dir_path else entry.name
            inode = self._inode_for(child)
            attr = self._make_attr(inode, entry.attributes, volatile=self._is_registry_path(child))
            if not pyfuse3.readdir_reply(token, os.fsencode(entry.name), attr, idx + 1):
                break

    async def releasedir(self, fh: int) -> None:
        """Release a directory handle and its snapshot."""
        self._dir_snapshots.pop(fh, None)
