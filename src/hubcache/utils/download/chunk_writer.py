"""
Chunk Writer for append-only partial files with optional hash verification.

Appends to the partial download, keeps a running byte count that includes the
resumed prefix, and can compute SHA-256 over the whole file as it grows.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from hubcache.common.exceptions import CacheIOError

logger = logging.getLogger(__name__)


class ChunkWriter:
    """Append chunks to a partial file; use as a context manager."""

    def __init__(self, file_path: Path, resume_from_byte: int = 0, track_hash: bool = False):
        """
        Initialize chunk writer.

        Args:
            file_path: Partial file to append to
            resume_from_byte: Bytes already present in the partial file
            track_hash: Compute SHA-256 of the complete file content
        """
        self.file_path = Path(file_path)
        self.hasher = hashlib.sha256() if track_hash else None
        self.bytes_written = 0
        self._resume_from_byte = resume_from_byte
        self._handle = None

    def __enter__(self) -> "ChunkWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def open(self):
        """
        Open the partial file for appending.

        Raises:
            CacheIOError: File cannot be opened or the resumed prefix cannot be read
        """
        try:
            if self._resume_from_byte > 0 and self.file_path.exists():
                self._update_hash_from_existing()
            self._handle = open(self.file_path, "ab")
        except OSError as e:
            raise CacheIOError(
                f"Failed to open partial file {self.file_path}: {e}", path=str(self.file_path), cause=e
            ) from e

    def _update_hash_from_existing(self):
        """Account for the already-downloaded prefix (and hash it when tracking)."""
        with open(self.file_path, "rb") as f:
            bytes_read = 0
            while bytes_read < self._resume_from_byte:
                chunk = f.read(min(64 * 1024, self._resume_from_byte - bytes_read))
                if not chunk:
                    break
                if self.hasher is not None:
                    self.hasher.update(chunk)
                bytes_read += len(chunk)
        self.bytes_written = bytes_read

    def write_chunk(self, chunk: bytes):
        """
        Append chunk and update hash.

        Raises:
            CacheIOError: Write failed (e.g. disk full)
        """
        if self._handle is None:
            self.open()
        try:
            self._handle.write(chunk)
        except OSError as e:
            raise CacheIOError(
                f"Failed to write to {self.file_path}: {e}", path=str(self.file_path), cause=e
            ) from e

        if self.hasher is not None:
            self.hasher.update(chunk)
        self.bytes_written += len(chunk)

    def restart(self):
        """
        Drop everything written so far and continue from byte 0.

        Used when the server answers a range request with the full body.
        """
        if self._handle is None:
            self.open()
        try:
            self._handle.seek(0)
            self._handle.truncate(0)
        except OSError as e:
            raise CacheIOError(
                f"Failed to truncate {self.file_path}: {e}", path=str(self.file_path), cause=e
            ) from e
        if self.hasher is not None:
            self.hasher = hashlib.sha256()
        self.bytes_written = 0
        logger.debug(f"Restarted partial file {self.file_path}")

    def close(self):
        """Flush to disk and close. Safe to call twice."""
        if self._handle is None:
            return
        try:
            self._handle.flush()
            os.fsync(self._handle.fileno())  # Partial must survive a crash for resume
        except OSError as e:
            logger.warning(f"Failed to sync {self.file_path}: {e}")
        finally:
            self._handle.close()
            self._handle = None

    def verify(self, expected_sha256: str) -> bool:
        """
        Verify final hash.

        Args:
            expected_sha256: Expected SHA-256 checksum (hex)

        Returns:
            True if hash matches, False otherwise (or if hashing was not enabled)
        """
        if self.hasher is None:
            logger.warning("Hash verification requested but hashing was not enabled")
            return False

        actual_hash = self.hasher.hexdigest()
        matches = actual_hash == expected_sha256.lower()

        if not matches:
            logger.warning(f"Hash mismatch: expected {expected_sha256}, got {actual_hash}")

        return matches

    def get_bytes_written(self) -> int:
        """
        Get total bytes in the partial file.

        Returns:
            Total bytes written (including resumed portion)
        """
        return self.bytes_written
