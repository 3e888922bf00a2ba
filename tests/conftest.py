"""Shared fixtures for multizip-fuse tests."""

import io
import tarfile
import zipfile

import pytest


@pytest.fixture
def anyio_backend():
    # pyfuse3 runs on trio, and the registry uses trio locks and worker threads
    return "trio"


@pytest.fixture
def zip_archive(tmp_path):
    """A small zip with a nested file and an implicit parent directory."""
    path = tmp_path / "photos.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("readme.txt", "hello from zip\n")
        zf.writestr("album/", "")
        zf.writestr("album/cat.jpg", b"\xff\xd8meow")
        zf.writestr("deep/nested/note.md", "# note\n")
    return path


@pytest.fixture
def tar_archive(tmp_path):
    """A gzip-compressed tar with one file in a subdirectory."""
    path = tmp_path / "docs.tar.gz"
    with tarfile.open(path, "w:gz") as tf:
        data = b"tar contents\n"
        info = tarfile.TarInfo("docs/guide.txt")
        info.size = len(data)
        info.mtime = 1_700_000_000
        tf.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def encrypted_zip(tmp_path):
    """A zip whose only member is flagged as encrypted."""
    path = tmp_path / "secret.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("secret.txt", "hidden\n")
    data = bytearray(path.read_bytes())
    # General purpose bit 0 in the local header and the central directory
    data[6] |= 0x01
    data[data.index(b"PK\x01\x02") + 8] |= 0x01
    path.write_bytes(bytes(data))
    return path
