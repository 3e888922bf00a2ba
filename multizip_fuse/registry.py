"""
MountRegistry: the dynamic table of archive mounts.

Layout of the namespace it serves:
- /                 - Read-only root: one directory per mounted or pending name
- /config/          - Control directory
- /config/{name}    - Create + write an archive path here to mount it at /{name};
                      reads return the recorded path, unlink forgets the mount
- /{name}/          - Archive contents (served by the attached filesystem)

State is three tables (mounted archives, their source paths, pending
names) guarded together by one reader/writer lock. Archive construction
and attachment happen outside the lock in MountRequest.write(); only the
final commit is locked.

Pending markers are per-request tickets. create() always issues a new
ticket for the name, so overlapping requests for one name race and the
last successful commit wins; a request only ever clears its own ticket.
"""

import errno
import itertools
import logging
import os
from typing import Optional, Protocol

import pyfuse3

from .archive import ArchiveProvider
from .control import MountRequest, ReadOnlyFile
from .models import (
    ANY_WRITE, CONFIG_DIR, CONFIG_DIR_MODE, CONTROL_FILE_MODE, MOUNT_DIR_MODE,
    ROOT_MODE, Attributes, DirEntry, MountRecord, split_path,
)
from .rwlock import RWLock

log = logging.getLogger(__name__)


class HostConnector(Protocol):
    """Attaches a constructed filesystem at a namespace path.

    Failure is signalled by raising pyfuse3.FUSEError with the errno the
    writer should see.
    """

    async def attach(self, mount_path: str, archive) -> None:
        ...


class MountRegistry:
    """Mount state for the multi-archive namespace."""

    def __init__(self, provider: ArchiveProvider):
        self.provider = provider
        self._connector: Optional[HostConnector] = None
        self._lock = RWLock()

        self._mounted: dict[str, object] = {}  # name -> archive tree
        self._sources: dict[str, str] = {}  # name -> archive path as written
        self._pending: dict[str, int] = {}  # name -> ticket of newest request
        self._tickets = itertools.count(1)

    # ── Setup ─────────────────────────────────────────────────────────

    def bind(self, connector: HostConnector) -> None:
        """Store the host connector. Called once during setup."""
        self._connector = connector

    @property
    def connector(self) -> HostConnector:
        if self._connector is None:
            raise RuntimeError("MountRegistry is not bound to a host connector")
        return self._connector

    # ── Snapshots ─────────────────────────────────────────────────────

    async def mounts(self) -> dict[str, MountRecord]:
        async with self._lock.read_locked():
            return {
                name: MountRecord(archive=archive, source_path=self._sources.get(name, ""))
                for name, archive in self._mounted.items()
            }

    async def pending_names(self) -> set[str]:
        async with self._lock.read_locked():
            return set(self._pending)

    async def mounted_archive(self, name: str):
        """The committed archive for name, or None when absent or pending."""
        async with self._lock.read_locked():
            return self._mounted.get(name)

    # ── Namespace operations ──────────────────────────────────────────

    async def list_dir(self, path: str) -> list[DirEntry]:
        """Snapshot the listing of / or /config.

        The whole list is built under the read lock and returned, so the
        caller can consume it at leisure without holding the lock.
        """
        path = path.strip("/")
        if path == "":
            attrs = Attributes(mode=MOUNT_DIR_MODE)
        elif path == CONFIG_DIR:
            attrs = Attributes(mode=CONTROL_FILE_MODE)
        else:
            raise pyfuse3.FUSEError(errno.ENOENT)

        async with self._lock.read_locked():
            names = sorted(set(self._mounted) | set(self._pending))
            entries = []
            for name in names:
                size = 0
                if path == CONFIG_DIR:
                    size = len(os.fsencode(self._sources.get(name, "")))
                entries.append(DirEntry(name=name, attributes=Attributes(mode=attrs.mode, size=size)))

        if path == "":
            entries.append(DirEntry(name=CONFIG_DIR, attributes=Attributes(mode=CONFIG_DIR_MODE)))
        log.debug(f"list_dir({path!r}): {len(entries)} entries")
        return entries

    async def getattr(self, path: str) -> Attributes:
        path = path.strip("/")
        if path == "":
            return Attributes(mode=ROOT_MODE)
        if path == CONFIG_DIR:
            return Attributes(mode=CONFIG_DIR_MODE)

        parent, base = split_path(path)
        if parent not in ("", CONFIG_DIR):
            raise pyfuse3.FUSEError(errno.ENOENT)

        async with self._lock.read_locked():
            if base not in self._mounted and base not in self._pending:
                raise pyfuse3.FUSEError(errno.ENOENT)
            if parent == CONFIG_DIR:
                source = self._sources.get(base, "")
                return Attributes(
                    mode=CONTROL_FILE_MODE,
                    size=len(os.fsencode(source)),
                )
            return Attributes(mode=MOUNT_DIR_MODE)

    async def open(self, path: str, flags: int) -> ReadOnlyFile:
        """Open config/<name> for reading its recorded archive path."""
        if flags & ANY_WRITE:
            raise pyfuse3.FUSEError(errno.EPERM)

        parent, base = split_path(path)
        if parent != CONFIG_DIR:
            raise pyfuse3.FUSEError(errno.ENOENT)

        async with self._lock.read_locked():
            source = self._sources.get(base)
        if source is None:
            raise pyfuse3.FUSEError(errno.ENOENT)
        return ReadOnlyFile(os.fsencode(source))

    async def create(self, path: str, flags: int, mode: int) -> MountRequest:
        """Reserve <name> and hand back the file that takes the archive path."""
        parent, base = split_path(path)
        if parent != CONFIG_DIR or base in ("", ".", "..", CONFIG_DIR):
            log.warning(f"create rejected outside {CONFIG_DIR}/: {path}")
            raise pyfuse3.FUSEError(errno.EPERM)

        async with self._lock.write_locked():
            ticket = next(self._tickets)
            previous = self._pending.get(base)
            self._pending[base] = ticket

        if previous is not None:
            log.info(f"create: {base} was already pending (request {previous}), now request {ticket}")
        else:
            log.info(f"create: {base} pending (request {ticket})")
        return MountRequest(base, self, ticket)

    async def unlink(self, path: str) -> None:
        """Forget a mount. The connector keeps the attachment alive."""
        parent, base = split_path(path)
        if parent != CONFIG_DIR:
            raise pyfuse3.FUSEError(errno.EPERM)

        async with self._lock.write_locked():
            if base not in self._mounted:
                raise pyfuse3.FUSEError(errno.ENOENT)
            del self._mounted[base]
            self._sources.pop(base, None)
        log.info(f"unlink: forgot mount {base}")

    # ── Called by MountRequest ────────────────────────────────────────

    async def _release_pending(self, name: str, ticket: int) -> None:
        async with self._lock.write_locked():
            if self._pending.get(name) == ticket:
                del self._pending[name]
            else:
                log.info(f"{name}: request {ticket} failed, newer request still pending")

    async def _commit(self, name: str, ticket: int, archive, source_path: str) -> None:
        async with self._lock.write_locked():
            self._mounted[name] = archive
            self._sources[name] = source_path
            if self._pending.get(name) == ticket:
                del self._pending[name]
                superseded = False
            else:
                superseded = True
        if superseded:
            log.info(f"Mounted {source_path} at /{name} (request {ticket}); a newer request is pending")
        else:
            log.info(f"Mounted {source_path} at /{name}")
