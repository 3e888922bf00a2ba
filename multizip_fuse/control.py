"""
File handles behind the control directory.

A MountRequest is handed out by create() on config/<name> and accepts
exactly one write: the path of the archive to mount at /<name>.
ReadOnlyFile serves the recorded source path back on later reads.
"""

import errno
import logging
import os
from typing import TYPE_CHECKING, Optional

import pyfuse3
import trio

from .archive import ArchiveError

if TYPE_CHECKING:
    from .registry import MountRegistry

log = logging.getLogger(__name__)

# Status returned to the writer when the archive cannot be built
CONSTRUCTION_FAILED = errno.ENOSYS


class ReadOnlyFile:
    """Immutable in-memory file."""

    def __init__(self, data: bytes):
        self.data = data

    async def read(self, off: int, size: int) -> bytes:
        return self.data[off:off + size]

    async def write(self, buf: bytes) -> int:
        raise pyfuse3.FUSEError(errno.EPERM)


class MountRequest:
    """Placeholder file that receives the write naming the archive.

    Armed while it holds a registry reference; the first write consumes
    it whatever the outcome, and further writes fail with EPERM.
    """

    def __init__(self, basename: str, registry: "MountRegistry", ticket: int):
        self.basename = basename
        self.ticket = ticket
        self._registry: Optional["MountRegistry"] = registry

    @property
    def consumed(self) -> bool:
        return self._registry is None

    async def read(self, off: int, size: int) -> bytes:
        raise pyfuse3.FUSEError(errno.ENOSYS)

    async def write(self, buf: bytes) -> int:
        registry = self._registry
        if registry is None:
            log.warning(f"Rejected second write to config/{self.basename}")
            raise pyfuse3.FUSEError(errno.EPERM)
        self._registry = None

        source_path = os.fsdecode(buf).strip()
        log.info(f"Mount request: {self.basename} <- {source_path}")

        # Slow part runs unlocked so listings and lookups keep flowing
        try:
            archive = await trio.to_thread.run_sync(registry.provider.build, source_path)
        except ArchiveError as e:
            log.warning(f"Could not build archive filesystem for {self.basename}: {e}")
            await registry._release_pending(self.basename, self.ticket)
            raise pyfuse3.FUSEError(CONSTRUCTION_FAILED) from e

        # Attach failure propagates as-is; the pending marker stays set
        await registry.connector.attach("/" + self.basename, archive)

        await registry._commit(self.basename, self.ticket, archive, source_path)
        return len(buf)
