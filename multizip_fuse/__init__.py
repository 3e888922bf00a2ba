"""multizip-fuse: mount archives into one FUSE namespace by writing control files."""

__version__ = "0.1.0"
