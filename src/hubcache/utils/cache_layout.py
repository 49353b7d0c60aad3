"""
Cache Layout Module

Maps a repository id onto the on-disk cache shared with other hub tooling:

    <cache_dir>/models--<org>--<name>/
        refs/main
        blobs/<content_id>
        blobs/<content_id>.incomplete
        snapshots/<commit_id>/<filename> -> ../../blobs/<content_id>

No network access happens here.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

from hubcache.common.constants import (
    BLOBS_DIRNAME,
    DEFAULT_REPO_TYPE,
    DEFAULT_REVISION,
    INCOMPLETE_SUFFIX,
    REFS_DIRNAME,
    REPO_FOLDER_SEPARATOR,
    REPO_ID_SEPARATOR,
    SNAPSHOTS_DIRNAME,
)
from hubcache.common.exceptions import CacheIOError

logger = logging.getLogger(__name__)

REPO_TYPE_FOLDER_PREFIXES = {
    "model": "models",
    "dataset": "datasets",
    "space": "spaces",
}


def expand_user_home(path) -> Path:
    """Expand a leading '~' and return an absolute path."""
    return Path(os.path.expanduser(str(path))).absolute()


def _is_plain_segment(segment: str) -> bool:
    return (
        "%" not in segment
        and REPO_FOLDER_SEPARATOR not in segment
        and not segment.startswith("-")
        and not segment.endswith("-")
    )


def escape_repo_segment(segment: str) -> str:
    """
    Escape one '/'-separated part of a repository id for use in a folder name.

    Plain segments are returned unchanged so real hub ids keep their usual
    folder names. A segment containing '%', '--' or a leading/trailing '-'
    could be confused with the '--' separator, so its '%' and '-' characters
    are percent-encoded.

    Examples:
        >>> escape_repo_segment("Qwen2.5-0.5B")
        'Qwen2.5-0.5B'
        >>> escape_repo_segment("a--b")
        'a%2D%2Db'
    """
    if _is_plain_segment(segment):
        return segment
    return segment.replace("%", "%25").replace("-", "%2D")


def repo_folder_name(repo_id: str, repo_type: str = DEFAULT_REPO_TYPE) -> str:
    """
    Derive the cache folder name for a repository.

    Args:
        repo_id: Repository id such as "org/name"
        repo_type: "model", "dataset" or "space"

    Returns:
        Folder name such as "models--org--name"

    Raises:
        ValueError: Empty repository id or unknown repository type
    """
    if not repo_id:
        raise ValueError("Repository id must not be empty")
    prefix = REPO_TYPE_FOLDER_PREFIXES.get(repo_type)
    if prefix is None:
        raise ValueError(f"Unknown repository type: {repo_type!r}")

    segments = [escape_repo_segment(part) for part in repo_id.split(REPO_ID_SEPARATOR)]
    return REPO_FOLDER_SEPARATOR.join([prefix, *segments])


def validate_repo_filename(filename: str) -> PurePosixPath:
    """Reject empty, absolute and parent-escaping repository paths."""
    relative = PurePosixPath(filename)
    if not filename or relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"Invalid repository filename: {filename!r}")
    return relative


@dataclass(frozen=True)
class CacheRoot:
    """Paths of one repository's cache folder."""

    path: Path

    @property
    def blobs_dir(self) -> Path:
        return self.path / BLOBS_DIRNAME

    @property
    def refs_dir(self) -> Path:
        return self.path / REFS_DIRNAME

    @property
    def snapshots_dir(self) -> Path:
        return self.path / SNAPSHOTS_DIRNAME

    def blob_path(self, content_id: str) -> Path:
        return self.blobs_dir / content_id

    def incomplete_path(self, content_id: str) -> Path:
        return self.blobs_dir / f"{content_id}{INCOMPLETE_SUFFIX}"

    def snapshot_path(self, commit_id: str, filename: str) -> Path:
        """
        Get the snapshot path for a file at a commit.

        Raises:
            ValueError: If filename is absolute or escapes the snapshot folder
        """
        relative = validate_repo_filename(filename)
        return self.snapshots_dir / commit_id / Path(*relative.parts)

    def ref_path(self, revision: str = DEFAULT_REVISION) -> Path:
        relative = validate_repo_filename(revision)
        return self.refs_dir / Path(*relative.parts)

    def read_ref(self, revision: str = DEFAULT_REVISION) -> Optional[str]:
        """Return the commit recorded for a revision, or None if never recorded."""
        ref_file = self.ref_path(revision)
        try:
            commit = ref_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheIOError(f"Failed to read ref {ref_file}: {e}", path=str(ref_file), cause=e) from e
        return commit or None

    def write_ref(self, commit_id: str, revision: str = DEFAULT_REVISION) -> Path:
        ref_file = self.ref_path(revision)
        try:
            ref_file.parent.mkdir(parents=True, exist_ok=True)
            ref_file.write_text(commit_id, encoding="utf-8")
        except OSError as e:
            raise CacheIOError(f"Failed to write ref {ref_file}: {e}", path=str(ref_file), cause=e) from e
        logger.debug(f"Recorded {revision} -> {commit_id} in {ref_file}")
        return ref_file


def ensure_cache_root(base_dir, repo_id: str, repo_type: str = DEFAULT_REPO_TYPE) -> CacheRoot:
    """
    Create (if absent) and return the cache folder for a repository.

    Safe to call concurrently from several processes: creation is idempotent.

    Args:
        base_dir: Cache directory, may start with '~'
        repo_id: Repository id such as "org/name"
        repo_type: "model", "dataset" or "space"

    Returns:
        CacheRoot with blobs/, refs/ and snapshots/ present

    Raises:
        ValueError: Invalid repository id or type
        CacheIOError: A directory could not be created
    """
    root = CacheRoot(expand_user_home(base_dir) / repo_folder_name(repo_id, repo_type))

    for directory in (root.blobs_dir, root.refs_dir, root.snapshots_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(
                f"Failed to create cache directory {directory}: {e}", path=str(directory), cause=e
            ) from e

    logger.debug(f"Cache directory: {root.path}")
    return root


def purge_cache_root(root: CacheRoot) -> CacheRoot:
    """
    Remove every blob, ref and snapshot of a repository and recreate the empty layout.

    Raises:
        CacheIOError: Removal or re-creation failed
    """
    logger.warning(f"Purging cache directory: {root.path}")
    try:
        if root.path.exists():
            shutil.rmtree(root.path)
        for directory in (root.blobs_dir, root.refs_dir, root.snapshots_dir):
            directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CacheIOError(f"Failed to purge cache directory {root.path}: {e}", path=str(root.path), cause=e) from e
    return root
