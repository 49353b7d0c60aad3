"""
Cache install protocol.

Turns a completed partial download into an immutable blob and points the
snapshot entry at it. The rename of the partial file is the durability
boundary: a blob without the `.incomplete` suffix is always complete.
"""

import errno
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hubcache.common.exceptions import CacheIOError, InstallError

logger = logging.getLogger(__name__)

# Windows: "A required privilege is not held by the client" (no developer mode)
ERROR_PRIVILEGE_NOT_HELD = 1314

_SYMLINK_UNSUPPORTED_ERRNOS = {errno.EPERM, errno.EOPNOTSUPP, getattr(errno, "ENOTSUP", errno.EOPNOTSUPP)}


@dataclass(frozen=True)
class InstallOutcome:
    blob_path: Path
    snapshot_path: Path
    blob_installed: bool
    linked: bool


def is_cache_hit(blob_path: Path) -> bool:
    """A finished blob exists, so no transfer is needed."""
    return Path(blob_path).is_file()


def install(partial_path: Optional[Path], blob_path: Path, snapshot_path: Path) -> InstallOutcome:
    """
    Install a blob and (re-)point the snapshot entry at it.

    Calling again after the blob is installed only re-creates the snapshot
    link, so the operation is idempotent.

    Args:
        partial_path: Completed `.incomplete` file, or None on the cache-hit path
        blob_path: Final content-addressed blob path
        snapshot_path: Snapshot entry to create

    Returns:
        InstallOutcome describing what was done

    Raises:
        InstallError: Neither a partial file nor an installed blob exists
        CacheIOError: Rename, link or copy failed
    """
    blob_path = Path(blob_path)
    snapshot_path = Path(snapshot_path)
    blob_installed = False

    if partial_path is not None and Path(partial_path).exists():
        try:
            os.replace(partial_path, blob_path)
        except OSError as e:
            raise CacheIOError(
                f"Failed to move {partial_path} to {blob_path}: {e}", path=str(blob_path), cause=e
            ) from e
        blob_installed = True
        logger.debug(f"Installed blob {blob_path.name}")
    elif not blob_path.is_file():
        raise InstallError(f"Nothing to install: neither {partial_path} nor {blob_path} exists")

    linked = _link_snapshot(blob_path, snapshot_path)
    return InstallOutcome(blob_path, snapshot_path, blob_installed, linked)


def _link_snapshot(blob_path: Path, snapshot_path: Path) -> bool:
    """Create a relative symlink, or a copy where symlinks are not permitted.

    Returns:
        True if a symlink was created, False if the blob was copied
    """
    try:
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        if snapshot_path.is_symlink() or snapshot_path.exists():
            if snapshot_path.is_dir() and not snapshot_path.is_symlink():
                raise InstallError(f"Snapshot path {snapshot_path} is a directory")
            snapshot_path.unlink()
    except OSError as e:
        raise CacheIOError(
            f"Failed to prepare snapshot path {snapshot_path}: {e}", path=str(snapshot_path), cause=e
        ) from e

    target = os.path.relpath(blob_path, snapshot_path.parent)
    try:
        os.symlink(target, snapshot_path)
        logger.debug(f"Linked {snapshot_path} -> {target}")
        return True
    except OSError as e:
        if not _symlinks_unsupported(e):
            raise CacheIOError(
                f"Failed to link {snapshot_path} -> {target}: {e}", path=str(snapshot_path), cause=e
            ) from e
        logger.warning(f"Symlinks are not supported here ({e}); copying blob to {snapshot_path}")

    try:
        shutil.copy2(blob_path, snapshot_path)
    except OSError as e:
        raise CacheIOError(
            f"Failed to copy {blob_path} to {snapshot_path}: {e}", path=str(snapshot_path), cause=e
        ) from e
    return False


def _symlinks_unsupported(error: OSError) -> bool:
    if getattr(error, "winerror", None) == ERROR_PRIVILEGE_NOT_HELD:
        return True
    return error.errno in _SYMLINK_UNSUPPORTED_ERRNOS
