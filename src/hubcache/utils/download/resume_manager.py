"""
Resume Manager for partial download state.

Owns the `<blob>.incomplete` file of one blob: where to resume from, and when
the partial file has to be thrown away instead.
"""

import logging
from pathlib import Path

from hubcache.common.constants import INCOMPLETE_SUFFIX
from hubcache.common.exceptions import CacheIOError

logger = logging.getLogger(__name__)


class ResumeManager:
    """Manage the partial download of a single blob."""

    def __init__(self, blob_file: Path):
        """
        Initialize resume manager.

        Args:
            blob_file: Final blob path (blobs/<content_id>)
        """
        self.blob_file = Path(blob_file)
        self.part_file = self.blob_file.with_name(self.blob_file.name + INCOMPLETE_SUFFIX)

    def get_resume_position(self) -> int:
        """
        Get byte position to resume from.

        Returns:
            Size of the partial file (0 if no partial download exists)
        """
        try:
            return self.part_file.stat().st_size
        except FileNotFoundError:
            return 0

    def prepare(self, expected_size: int, force_download: bool = False) -> int:
        """
        Decide the start offset for the next transfer.

        A forced re-download replaces the partial file. A partial file larger
        than the expected size can never become valid and is discarded too.

        Args:
            expected_size: Resolved size of the blob (0 = unknown)
            force_download: Start over even if a partial file exists

        Returns:
            Byte offset to request from
        """
        if force_download:
            self.discard()
            return 0

        start_byte = self.get_resume_position()
        if expected_size and start_byte > expected_size:
            logger.warning(
                f"Partial file {self.part_file.name} is larger than expected "
                f"({start_byte} > {expected_size} bytes), starting over"
            )
            self.discard()
            return 0

        if start_byte > 0:
            logger.info(f"Resuming download from {start_byte} bytes...")
        return start_byte

    def discard(self):
        """
        Remove the partial file.

        Raises:
            CacheIOError: The partial file exists but cannot be removed
        """
        try:
            self.part_file.unlink()
            logger.debug(f"Deleted partial file: {self.part_file}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheIOError(
                f"Failed to delete partial file {self.part_file}: {e}", path=str(self.part_file), cause=e
            ) from e
