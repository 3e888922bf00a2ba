"""
Safety fences for multizip-fuse.

Refuse to mount over system directories, other FUSE mounts, or
directories whose contents would be shadowed.
"""

import logging
import os
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

# System paths that must never be used as mountpoints
BLOCKED_PATHS = frozenset({
    "/", "/home", "/etc", "/usr", "/var", "/tmp", "/boot",
    "/bin", "/sbin", "/lib", "/lib64", "/dev", "/proc", "/sys",
    "/root", "/opt", "/srv", "/run", "/mnt",
})


def find_all_fuse_mounts() -> list[dict]:
    """Find all FUSE mounts on the system.

    Returns list of {"source": str, "mountpoint": str, "fstype": str}.
    """
    mounts = []
    try:
        for line in Path("/proc/mounts").read_text().splitlines():
            parts = line.split()
            if len(parts) >= 3 and "fuse" in parts[2].lower() and parts[2] != "fusectl":
                mounts.append({
                    "source": parts[0],
                    "mountpoint": parts[1],
                    "fstype": parts[2],
                })
    except OSError:
        pass
    return mounts


def validate_mountpoint(path: str) -> Optional[str]:
    """Validate a mountpoint path. Returns error message or None if OK."""
    resolved = os.path.realpath(path)

    if resolved in BLOCKED_PATHS:
        return (
            f"Refusing to mount at {resolved}: this is a system directory.\n"
            f"Use a dedicated empty directory instead, e.g. ~/zips"
        )

    for m in find_all_fuse_mounts():
        if os.path.realpath(m["mountpoint"]) == resolved:
            return (
                f"{resolved} is already a FUSE mount ({m['source']}, type {m['fstype']}).\n"
                f"Unmount it first or choose a different path."
            )

    if os.path.isdir(resolved):
        try:
            contents = os.listdir(resolved)
        except PermissionError:
            return f"Cannot read {resolved}: permission denied."
        if contents:
            count = len(contents)
            return (
                f"{resolved} is not empty (contains {count} item{'s' if count != 1 else ''}).\n"
                f"Its contents would be hidden until unmount; use an empty directory."
            )

    return None


def ensure_mountpoint(path: str) -> Optional[str]:
    """Create mountpoint directory if needed. Returns error message or None."""
    if os.path.isdir(path):
        return None

    try:
        os.makedirs(path, exist_ok=True)
        return None
    except PermissionError:
        return f"Cannot create {path}: permission denied."
    except OSError as e:
        return f"Cannot create {path}: {e}"
