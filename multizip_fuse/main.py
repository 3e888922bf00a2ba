#!/usr/bin/env python3
"""
Multi-archive FUSE driver

Mounts an empty namespace that archives can be attached to at runtime.

Usage:
    multizip-fuse ~/zips --archive photos=/data/photos.zip
    echo /data/docs.tar.gz > ~/zips/config/docs
"""

import argparse
import logging
import os
import sys

import pyfuse3
import trio

from .archive import DefaultArchiveProvider
from .config import add_archive_to_config, load_config, remove_archive_from_config
from .filesystem import MultiZipFS
from .models import CONFIG_DIR
from .registry import MountRegistry
from .safety import ensure_mountpoint, validate_mountpoint

log = logging.getLogger(__name__)


def parse_archive_arg(value: str) -> tuple[str, str]:
    """Parse NAME=PATH into (name, absolute archive path)."""
    name, sep, path = value.partition("=")
    name = name.strip()
    if not sep or not name or not path:
        raise argparse.ArgumentTypeError(f"expected NAME=PATH, got {value!r}")
    if "/" in name or name in (".", "..", CONFIG_DIR):
        raise argparse.ArgumentTypeError(f"invalid mount name {name!r}")
    return name, os.path.abspath(os.path.expanduser(path))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mount zip and tar archives under one FUSE mountpoint"
    )
    parser.add_argument(
        "mountpoint",
        help="Directory to mount the filesystem",
    )
    parser.add_argument(
        "--archive", "-a",
        action="append",
        type=parse_archive_arg,
        default=[],
        metavar="NAME=PATH",
        help="Attach an archive at /NAME on startup (repeatable)",
    )
    parser.add_argument(
        "--remember",
        action="store_true",
        help="Save --archive entries to the config file for future mounts",
    )
    parser.add_argument(
        "--forget",
        action="append",
        default=[],
        metavar="NAME",
        help="Remove a saved archive from the config file (repeatable)",
    )
    parser.add_argument(
        "--fsname",
        default=None,
        help="Filesystem name shown in /proc/mounts (default: multizip)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


async def preload_archives(registry: MountRegistry, archives: dict[str, str]) -> int:
    """Attach archives through config/<name>, as a client would.

    Returns the number attached; failures are logged and skipped.
    """
    mounted = 0
    for name, archive_path in archives.items():
        request = await registry.create(f"{CONFIG_DIR}/{name}", os.O_WRONLY | os.O_CREAT, 0o600)
        try:
            await request.write(os.fsencode(archive_path))
        except pyfuse3.FUSEError as e:
            log.error(f"Could not mount {archive_path} at /{name}: {os.strerror(e.errno)}")
            continue
        mounted += 1
    return mounted


def main(argv=None) -> None:
    args = parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mountpoint = os.path.realpath(args.mountpoint)
    error = validate_mountpoint(mountpoint) or ensure_mountpoint(mountpoint)
    if error:
        print(f"Error: {error}", file=sys.stderr)
        sys.exit(1)

    # Saved archives first, command-line ones override by name
    mount_config = load_config().mount(mountpoint)
    archives = dict(mount_config.archives)
    for name in args.forget:
        if remove_archive_from_config(mountpoint, name):
            log.info(f"Forgot saved archive {name}")
        archives.pop(name, None)
    for name, archive_path in args.archive:
        archives[name] = archive_path
        if args.remember:
            add_archive_to_config(mountpoint, name, archive_path)

    registry = MountRegistry(DefaultArchiveProvider())
    fs = MultiZipFS(registry)

    # FUSE options
    fuse_options = set(pyfuse3.default_options)
    fuse_options.add(f"fsname={args.fsname or mount_config.fsname}")
    if args.debug:
        fuse_options.add("debug")

    log.info(f"Mounting archive namespace at {mountpoint}")
    log.info(f"Attach archives with: echo /path/to/archive.zip > {mountpoint}/{CONFIG_DIR}/NAME")

    pyfuse3.init(fs, mountpoint, fuse_options)

    async def _run():
        if archives:
            count = await preload_archives(registry, archives)
            log.info(f"Attached {count} of {len(archives)} startup archive(s)")
        await pyfuse3.main()

    try:
        trio.run(_run)
    except KeyboardInterrupt:
        log.info("Interrupted, unmounting...")
    finally:
        pyfuse3.close(unmount=True)
        log.info("Unmounted")


if __name__ == "__main__":
    main()
