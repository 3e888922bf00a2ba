"""Test doubles for the archive provider and host connector."""

import pyfuse3

from multizip_fuse.archive import ArchiveError
from multizip_fuse.registry import MountRegistry


class FakeArchive:
    def __init__(self, source_path: str):
        self.source_path = source_path

    def __repr__(self) -> str:
        return f"FakeArchive({self.source_path!r})"


class FakeProvider:
    """Builds FakeArchive objects; paths in `fail` raise ArchiveError."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.built: list[str] = []

    def build(self, source_path: str) -> FakeArchive:
        self.built.append(source_path)
        if source_path in self.fail:
            raise ArchiveError(f"{source_path}: cannot open")
        return FakeArchive(source_path)


class FakeConnector:
    """Records attachments; raises FUSEError(error) when error is set."""

    def __init__(self, error: int = None):
        self.error = error
        self.attached: dict[str, object] = {}

    async def attach(self, mount_path: str, archive) -> None:
        if self.error is not None:
            raise pyfuse3.FUSEError(self.error)
        self.attached[mount_path] = archive


def make_registry(fail=(), connector_error=None) -> tuple[MountRegistry, FakeProvider, FakeConnector]:
    provider = FakeProvider(fail=fail)
    connector = FakeConnector(error=connector_error)
    registry = MountRegistry(provider)
    registry.bind(connector)
    return registry, provider, connector


async def mount(registry: MountRegistry, name: str, source_path: str) -> int:
    """Run the full create + write protocol for one name."""
    request = await registry.create(f"/config/{name}", 0, 0o600)
    return await request.write(source_path.encode("utf-8"))
