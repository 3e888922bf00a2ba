"""Tests for the FUSE operations layer over a real registry and archives."""

import errno
import os
import stat
from unittest.mock import MagicMock, patch

import pytest
import pyfuse3

from multizip_fuse.archive import DefaultArchiveProvider
from multizip_fuse.control import CONSTRUCTION_FAILED, MountRequest
from multizip_fuse.filesystem import MultiZipFS
from multizip_fuse.registry import MountRegistry


# --- Helpers to drive MultiZipFS without a kernel ---

def _make_fs():
    registry = MountRegistry(DefaultArchiveProvider())
    return MultiZipFS(registry), registry


def _mock_ctx():
    """Create a mock pyfuse3.RequestContext."""
    ctx = MagicMock(spec=pyfuse3.RequestContext)
    ctx.uid = 1000
    ctx.gid = 1000
    ctx.pid = 12345
    return ctx


async def _readdir(fs, inode, start_id=0):
    """Collect (name, attr, next_id) tuples emitted by readdir."""
    ctx = _mock_ctx()
    emitted = []

    def reply(token, name, attr, next_id):
        emitted.append((name, attr, next_id))
        return True

    fh = await fs.opendir(inode, ctx)
    with patch("pyfuse3.readdir_reply", side_effect=reply):
        await fs.readdir(fh, start_id, MagicMock())
    await fs.releasedir(fh)
    return emitted


async def _mount(fs, name: bytes, source: str) -> int:
    ctx = _mock_ctx()
    fi, _ = await fs.create(fs.CONFIG_INODE, name, 0o600, os.O_WRONLY | os.O_CREAT, ctx)
    try:
        return await fs.write(fi.fh, 0, source.encode("utf-8") + b"\n")
    finally:
        await fs.release(fi.fh)


async def _read_file(fs, inode) -> bytes:
    fi = await fs.open(inode, os.O_RDONLY, _mock_ctx())
    try:
        return await fs.read(fi.fh, 0, 1 << 20)
    finally:
        await fs.release(fi.fh)


class TestRoot:
    """Tests for the fixed parts of the namespace."""

    @pytest.mark.anyio
    async def test_empty_root_lists_config(self):
        fs, _ = _make_fs()
        names = [name for name, _, _ in await _readdir(fs, fs.ROOT_INODE)]
        assert names == [b"config"]

    @pytest.mark.anyio
    async def test_root_attributes(self):
        fs, _ = _make_fs()
        attr = await fs.getattr(fs.ROOT_INODE, _mock_ctx())
        assert stat.S_ISDIR(attr.st_mode)
        assert stat.S_IMODE(attr.st_mode) == 0o500

    @pytest.mark.anyio
    async def test_config_lookup_uses_fixed_inode(self):
        fs, _ = _make_fs()
        attr = await fs.lookup(fs.ROOT_INODE, b"config", _mock_ctx())
        assert attr.st_ino == fs.CONFIG_INODE
        assert stat.S_IMODE(attr.st_mode) == 0o700

    @pytest.mark.anyio
    async def test_lookup_missing_name(self):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.lookup(fs.ROOT_INODE, b"nothing", _mock_ctx())
        assert exc_info.value.errno == errno.ENOENT

    @pytest.mark.anyio
    async def test_filesystem_binds_itself_to_registry(self):
        fs, registry = _make_fs()
        assert registry.connector is fs

    @pytest.mark.anyio
    async def test_directory_and_file_handles_share_one_counter(self):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        fi, _ = await fs.create(fs.CONFIG_INODE, b"incoming", 0o600, os.O_WRONLY | os.O_CREAT, ctx)
        dir_fh = await fs.opendir(fs.ROOT_INODE, ctx)

        assert dir_fh != fi.fh
        assert fi.fh in fs._handles
        assert fs._dir_snapshots[dir_fh][0] == ""
        await fs.releasedir(dir_fh)
        assert dir_fh not in fs._dir_snapshots


class TestMounting:
    """Tests for mounting archives through config/<name>."""

    @pytest.mark.anyio
    async def test_create_returns_mount_request_handle(self):
        fs, registry = _make_fs()
        fi, attr = await fs.create(fs.CONFIG_INODE, b"photos", 0o600, os.O_WRONLY | os.O_CREAT, _mock_ctx())
        assert isinstance(fs._handles[fi.fh], MountRequest)
        assert stat.S_ISREG(attr.st_mode)
        assert await registry.pending_names() == {"photos"}

    @pytest.mark.anyio
    async def test_create_outside_config_is_denied(self):
        fs, registry = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.create(fs.ROOT_INODE, b"photos", 0o600, os.O_WRONLY | os.O_CREAT, _mock_ctx())
        assert exc_info.value.errno == errno.EPERM
        assert await registry.pending_names() == set()

    @pytest.mark.anyio
    async def test_mounted_archive_is_browsable(self, zip_archive):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"photos", str(zip_archive))

        root_names = {name for name, _, _ in await _readdir(fs, fs.ROOT_INODE)}
        assert root_names == {b"photos", b"config"}

        photos = await fs.lookup(fs.ROOT_INODE, b"photos", ctx)
        assert stat.S_ISDIR(photos.st_mode)
        names = [name for name, _, _ in await _readdir(fs, photos.st_ino)]
        assert names == [b"album", b"deep", b"readme.txt"]

        album = await fs.lookup(photos.st_ino, b"album", ctx)
        cat = await fs.lookup(album.st_ino, b"cat.jpg", ctx)
        assert stat.S_ISREG(cat.st_mode)
        assert cat.st_size == len(b"\xff\xd8meow")
        assert await _read_file(fs, cat.st_ino) == b"\xff\xd8meow"

    @pytest.mark.anyio
    async def test_control_file_reads_back_source_path(self, zip_archive):
        fs, _ = _make_fs()
        await _mount(fs, b"photos", str(zip_archive))

        attr = await fs.lookup(fs.CONFIG_INODE, b"photos", _mock_ctx())
        assert stat.S_ISREG(attr.st_mode)
        assert attr.st_size == len(str(zip_archive).encode())
        assert await _read_file(fs, attr.st_ino) == str(zip_archive).encode()

        entries = await _readdir(fs, fs.CONFIG_INODE)
        assert [name for name, _, _ in entries] == [b"photos"]
        assert stat.S_ISREG(entries[0][1].st_mode)

    @pytest.mark.anyio
    async def test_tar_archive(self, tar_archive):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"docs", str(tar_archive))

        docs = await fs.lookup(fs.ROOT_INODE, b"docs", ctx)
        sub = await fs.lookup(docs.st_ino, b"docs", ctx)
        guide = await fs.lookup(sub.st_ino, b"guide.txt", ctx)
        assert await _read_file(fs, guide.st_ino) == b"tar contents\n"

    @pytest.mark.anyio
    async def test_bad_archive_write_fails_and_name_disappears(self, tmp_path):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await _mount(fs, b"bad", str(tmp_path / "missing.zip"))
        assert exc_info.value.errno == CONSTRUCTION_FAILED

        names = [name for name, _, _ in await _readdir(fs, fs.ROOT_INODE)]
        assert names == [b"config"]

    @pytest.mark.anyio
    async def test_pending_name_is_an_empty_directory(self):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await fs.create(fs.CONFIG_INODE, b"incoming", 0o600, os.O_WRONLY | os.O_CREAT, ctx)

        attr = await fs.lookup(fs.ROOT_INODE, b"incoming", ctx)
        assert stat.S_ISDIR(attr.st_mode)
        assert await _readdir(fs, attr.st_ino) == []

    @pytest.mark.anyio
    async def test_readdir_resumes_from_offset(self, zip_archive):
        fs, _ = _make_fs()
        await _mount(fs, b"photos", str(zip_archive))
        photos = await fs.lookup(fs.ROOT_INODE, b"photos", _mock_ctx())

        emitted = await _readdir(fs, photos.st_ino, start_id=2)
        assert [(name, next_id) for name, _, next_id in emitted] == [(b"readme.txt", 3)]

    @pytest.mark.anyio
    async def test_remount_after_unlink_is_busy(self, zip_archive, tar_archive):
        fs, _ = _make_fs()
        await _mount(fs, b"photos", str(zip_archive))
        await fs.unlink(fs.CONFIG_INODE, b"photos", _mock_ctx())

        # The first attachment was never detached
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await _mount(fs, b"photos", str(tar_archive))
        assert exc_info.value.errno == errno.EBUSY

    @pytest.mark.anyio
    async def test_forgotten_archive_is_not_served_while_name_is_pending(self, zip_archive):
        fs, registry = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"photos", str(zip_archive))
        await fs.unlink(fs.CONFIG_INODE, b"photos", ctx)
        await fs.create(fs.CONFIG_INODE, b"photos", 0o600, os.O_WRONLY | os.O_CREAT, ctx)

        assert await registry.pending_names() == {"photos"}
        photos = await fs.lookup(fs.ROOT_INODE, b"photos", ctx)
        assert stat.S_ISDIR(photos.st_mode)
        assert await _readdir(fs, photos.st_ino) == []
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.lookup(photos.st_ino, b"readme.txt", ctx)
        assert exc_info.value.errno == errno.ENOENT

    @pytest.mark.anyio
    async def test_unreadable_member_is_an_io_error(self, encrypted_zip):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"vault", str(encrypted_zip))
        vault = await fs.lookup(fs.ROOT_INODE, b"vault", ctx)
        secret = await fs.lookup(vault.st_ino, b"secret.txt", ctx)

        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.open(secret.st_ino, os.O_RDONLY, ctx)
        assert exc_info.value.errno == errno.EIO


class TestPermissions:
    """Tests for refused operations."""

    @pytest.mark.anyio
    async def test_open_control_file_for_writing_is_denied(self, zip_archive):
        fs, _ = _make_fs()
        await _mount(fs, b"photos", str(zip_archive))
        attr = await fs.lookup(fs.CONFIG_INODE, b"photos", _mock_ctx())
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.open(attr.st_ino, os.O_WRONLY, _mock_ctx())
        assert exc_info.value.errno == errno.EPERM

    @pytest.mark.anyio
    async def test_open_archive_file_for_writing_is_read_only(self, zip_archive):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"photos", str(zip_archive))
        photos = await fs.lookup(fs.ROOT_INODE, b"photos", ctx)
        readme = await fs.lookup(photos.st_ino, b"readme.txt", ctx)
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.open(readme.st_ino, os.O_RDWR, ctx)
        assert exc_info.value.errno == errno.EROFS

    @pytest.mark.anyio
    async def test_open_directory_fails(self):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.open(fs.CONFIG_INODE, os.O_RDONLY, _mock_ctx())
        assert exc_info.value.errno == errno.EISDIR

    @pytest.mark.anyio
    async def test_unlink_inside_archive_is_read_only(self, zip_archive):
        fs, _ = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"photos", str(zip_archive))
        photos = await fs.lookup(fs.ROOT_INODE, b"photos", ctx)
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.unlink(photos.st_ino, b"readme.txt", ctx)
        assert exc_info.value.errno == errno.EROFS

    @pytest.mark.anyio
    async def test_unlink_at_root_is_denied(self, zip_archive):
        fs, _ = _make_fs()
        await _mount(fs, b"photos", str(zip_archive))
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.unlink(fs.ROOT_INODE, b"photos", _mock_ctx())
        assert exc_info.value.errno == errno.EPERM

    @pytest.mark.anyio
    async def test_mkdir_is_denied(self):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.mkdir(fs.ROOT_INODE, b"new", 0o755, _mock_ctx())
        assert exc_info.value.errno == errno.EPERM


class TestUnlink:
    """Tests for forgetting mounts through the filesystem."""

    @pytest.mark.anyio
    async def test_unlink_hides_mount_and_contents(self, zip_archive):
        fs, registry = _make_fs()
        ctx = _mock_ctx()
        await _mount(fs, b"photos", str(zip_archive))
        photos = await fs.lookup(fs.ROOT_INODE, b"photos", ctx)
        readme = await fs.lookup(photos.st_ino, b"readme.txt", ctx)

        await fs.unlink(fs.CONFIG_INODE, b"photos", ctx)

        for inode in (photos.st_ino, readme.st_ino):
            with pytest.raises(pyfuse3.FUSEError) as exc_info:
                await fs.getattr(inode, ctx)
            assert exc_info.value.errno == errno.ENOENT
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.lookup(fs.CONFIG_INODE, b"photos", ctx)
        assert exc_info.value.errno == errno.ENOENT
        assert await registry.mounts() == {}

    @pytest.mark.anyio
    async def test_unlink_missing_control_file(self):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.unlink(fs.CONFIG_INODE, b"missing", _mock_ctx())
        assert exc_info.value.errno == errno.ENOENT


class TestAttach:
    """Tests for the host-connector capability."""

    @pytest.mark.anyio
    @pytest.mark.parametrize("mount_path", ["/", "/a/b", "/config"])
    async def test_rejects_bad_mount_paths(self, mount_path):
        fs, _ = _make_fs()
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.attach(mount_path, MagicMock())
        assert exc_info.value.errno == errno.EINVAL

    @pytest.mark.anyio
    async def test_rejects_second_attach_at_same_path(self):
        fs, _ = _make_fs()
        await fs.attach("/photos", MagicMock())
        with pytest.raises(pyfuse3.FUSEError) as exc_info:
            await fs.attach("/photos", MagicMock())
        assert exc_info.value.errno == errno.EBUSY
