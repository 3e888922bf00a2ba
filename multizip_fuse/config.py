"""
Configuration management for multizip-fuse.

One file, ~/.config/multizip/fuse.json, keyed by mountpoint:

    {
      "mounts": {
        "/mnt/zips": {
          "fsname": "multizip",
          "archives": {"photos": "/data/photos.zip"}
        }
      }
    }

Archives listed for a mount are attached at startup through the same
config/<name> protocol a client uses.
"""

import fcntl
import json
import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_FSNAME = "multizip"


# --- Data classes ---

@dataclass
class MountConfig:
    """Configuration for a single FUSE mount point."""
    path: str
    fsname: str = DEFAULT_FSNAME
    archives: dict[str, str] = field(default_factory=dict)  # name -> archive path

@dataclass
class FuseConfig:
    """Full multizip-fuse configuration (from fuse.json)."""
    mounts: dict[str, MountConfig] = field(default_factory=dict)

    def mount(self, mountpoint: str) -> MountConfig:
        """Settings for a mountpoint, defaults when it is not configured."""
        return self.mounts.get(mountpoint) or MountConfig(path=mountpoint)


# --- Path helpers ---

def get_config_dir() -> Path:
    """Get config directory (~/.config/multizip/)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(xdg_config) / "multizip"

def get_fuse_config_path() -> Path:
    return get_config_dir() / "fuse.json"


# --- Read/write fuse.json ---

def read_fuse_config() -> Optional[dict]:
    """Read fuse.json. Returns None if not found or unreadable."""
    path = get_fuse_config_path()
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                return json.load(f)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
    except (json.JSONDecodeError, OSError) as e:
        log.warning(f"Could not read fuse config at {path}: {e}")
        return None

def write_fuse_config(data: dict) -> None:
    """Atomic write to fuse.json with file locking.

    Writes to a temp file and renames it over the original while holding
    an exclusive flock. Enforces 600 permissions.
    """
    path = get_fuse_config_path()
    tmp_path = path.with_suffix(".tmp")

    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2) + "\n"

    with open(tmp_path, "w") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
            os.rename(tmp_path, path)
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 600
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


# --- High-level config loading ---

def load_config() -> FuseConfig:
    """Load the full config. Missing or malformed entries fall back to defaults."""
    config = FuseConfig()
    fuse_data = read_fuse_config()
    if not fuse_data:
        return config

    for mount_path, mount_data in fuse_data.get("mounts", {}).items():
        if not isinstance(mount_data, dict):
            log.warning(f"Ignoring malformed config for mount {mount_path}")
            continue
        archives = mount_data.get("archives", {})
        if not isinstance(archives, dict):
            log.warning(f"Ignoring malformed archive table for mount {mount_path}")
            archives = {}
        config.mounts[mount_path] = MountConfig(
            path=mount_path,
            fsname=mount_data.get("fsname", DEFAULT_FSNAME),
            archives={str(k): str(v) for k, v in archives.items()},
        )
    return config


def add_archive_to_config(mountpoint: str, name: str, archive_path: str) -> None:
    """Remember an archive so it is attached whenever mountpoint is mounted."""
    fuse_data = read_fuse_config() or {}
    mounts = fuse_data.setdefault("mounts", {})
    mount_data = mounts.setdefault(mountpoint, {"fsname": DEFAULT_FSNAME, "archives": {}})
    mount_data.setdefault("archives", {})[name] = archive_path
    write_fuse_config(fuse_data)


def remove_archive_from_config(mountpoint: str, name: str) -> bool:
    """Forget a remembered archive. Returns True if found and removed."""
    fuse_data = read_fuse_config()
    if not fuse_data:
        return False
    archives = fuse_data.get("mounts", {}).get(mountpoint, {}).get("archives", {})
    if name not in archives:
        return False
    del archives[name]
    write_fuse_config(fuse_data)
    return True
