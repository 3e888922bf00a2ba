"""
Multi-archive FUSE filesystem: mixin composition.

Hierarchy:
- /                  - Mount root (read-only): mounted and pending names + config/
- /config/           - Control directory
- /config/{name}     - Control file: create + write an archive path to mount it,
                       read to get the path back, rm to forget the mount
- /{name}/           - Archive contents (read-only)

Mounting:
    echo /data/photos.zip > /mnt/zips/config/photos
    ls /mnt/zips/photos
"""

from .base import BaseMixin
from .directory import DirectoryMixin
from .inode import InodeMixin
from .read import ReadMixin
from .write import WriteMixin


class MultiZipFS(
    WriteMixin,        # create, write, setattr, unlink, refused mutations
    ReadMixin,         # open, read, release
    DirectoryMixin,    # opendir, readdir, releasedir
    InodeMixin,        # getattr, lookup, inode table, path resolution
    BaseMixin,         # __init__, attach, statfs, access, destroy (MUST be last)
):
    """Multi-archive FUSE filesystem and host connector for its registry.

    Composed from mixins. BaseMixin must be last in MRO so its __init__
    runs first and sets up all shared state.
    """
    pass


__all__ = ["MultiZipFS"]
