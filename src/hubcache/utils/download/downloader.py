"""
Resumable transfer engine.

Drives one file transfer from a URL into a partial file: resume from an
offset, throttled progress reporting, cooperative cancellation and the final
length check that decides whether the partial file may be installed.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from hubcache.common.constants import DEFAULT_PROGRESS_INTERVAL_MS
from hubcache.common.exceptions import CacheIOError
from hubcache.model.download_result import ErrorKind

from .chunk_writer import ChunkWriter
from .http_client import HttpClient

logger = logging.getLogger(__name__)

# on_progress(downloaded_bytes, total_bytes, elapsed_seconds)
ProgressCallback = Callable[[int, int, float], None]

HTTP_RANGE_NOT_SATISFIABLE = 416


class TransferStatus(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    """Result of a single transfer attempt."""

    status: TransferStatus
    error_kind: Optional[ErrorKind] = None
    reason: str = ""
    bytes_on_disk: int = 0

    @classmethod
    def completed(cls, bytes_on_disk: int) -> "TransferOutcome":
        return cls(TransferStatus.COMPLETED, bytes_on_disk=bytes_on_disk)

    @classmethod
    def cancelled(cls, bytes_on_disk: int) -> "TransferOutcome":
        return cls(
            TransferStatus.CANCELLED,
            error_kind=ErrorKind.CANCELLED,
            reason="Download cancelled by user",
            bytes_on_disk=bytes_on_disk,
        )

    @classmethod
    def failed(cls, error_kind: ErrorKind, reason: str, bytes_on_disk: int = 0) -> "TransferOutcome":
        return cls(TransferStatus.FAILED, error_kind=error_kind, reason=reason, bytes_on_disk=bytes_on_disk)

    @property
    def is_completed(self) -> bool:
        return self.status is TransferStatus.COMPLETED


class ProgressThrottle:
    """
    Rate-limits progress callbacks.

    Ticks closer together than `min_interval` seconds are dropped unless
    forced. Exceptions raised by the callback are logged and never reach the
    transfer.
    """

    def __init__(
        self,
        callback: ProgressCallback,
        min_interval: float = DEFAULT_PROGRESS_INTERVAL_MS / 1000.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.min_interval = min_interval
        self._clock = clock
        self._started = clock()
        self._last_tick: Optional[float] = None

    def tick(self, downloaded: int, total: int, force: bool = False) -> bool:
        """
        Deliver a progress update if the interval allows it.

        Returns:
            True if the callback was invoked
        """
        now = self._clock()
        if not force and self._last_tick is not None and now - self._last_tick < self.min_interval:
            return False

        self._last_tick = now
        try:
            self.callback(downloaded, total, now - self._started)
        except Exception as e:
            logger.warning(f"Progress callback raised {type(e).__name__}: {e}")
        return True


def asset_bytes_downloaded(cur_total: int, cur_now: int, expected_total: int, fallback: int) -> int:
    """
    Translate transport byte counts into asset bytes.

    The transport reports the size of the current response, which for a
    resumed transfer is only the remaining tail. Subtracting the difference to
    the resolved size yields the position inside the whole asset.

    Args:
        cur_total: Size announced by the current response (0 = unknown)
        cur_now: Bytes received in the current response
        expected_total: Resolved asset size (0 = unknown)
        fallback: Bytes on disk, used when either size is unknown

    Returns:
        Downloaded asset bytes, clamped to [0, expected_total]
    """
    if cur_total > 0 and expected_total > 0:
        downloaded = cur_now - (cur_total - expected_total)
        return max(0, min(downloaded, expected_total))
    return fallback


def transfer(
    url: str,
    sink_path: Path,
    start_offset: int,
    expected_total: int,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token=None,
    *,
    client: Optional[HttpClient] = None,
    expected_sha256: Optional[str] = None,
    min_interval: float = DEFAULT_PROGRESS_INTERVAL_MS / 1000.0,
    clock: Callable[[], float] = time.monotonic,
) -> TransferOutcome:
    """
    Download `url` into the partial file `sink_path`.

    The partial file is only appended to, restarted from byte 0 when the
    server ignores the range request, or removed when it can never become
    valid (oversized, checksum mismatch). A cancelled or interrupted transfer
    leaves it in place for a later resume.

    Args:
        url: Download URL
        sink_path: Partial file (`blobs/<content_id>.incomplete`)
        start_offset: Bytes already present in the partial file (0 = start over)
        expected_total: Resolved asset size (0 = unknown, no length check)
        on_progress: Optional callback(downloaded, total, elapsed_seconds)
        cancel_token: Optional CancelToken polled before every chunk
        client: HTTP client (a default one is created if omitted)
        expected_sha256: Verify the finished file against this hash
        min_interval: Minimum seconds between progress callbacks
        clock: Monotonic clock, injectable for tests

    Returns:
        TransferOutcome: COMPLETED, CANCELLED or FAILED with an ErrorKind
    """
    sink_path = Path(sink_path)
    client = client or HttpClient()
    throttle = ProgressThrottle(on_progress, min_interval, clock) if on_progress else None

    def is_cancelled() -> bool:
        return cancel_token is not None and cancel_token.is_cancelled()

    if is_cancelled():
        return TransferOutcome.cancelled(_file_size(sink_path))

    writer = ChunkWriter(sink_path, resume_from_byte=start_offset, track_hash=bool(expected_sha256))

    def on_bytes(cur_total: int, cur_now: int):
        if throttle is None:
            return
        downloaded = asset_bytes_downloaded(cur_total, cur_now, expected_total, writer.get_bytes_written())
        total = expected_total or (start_offset + cur_total if cur_total else 0)
        throttle.tick(downloaded, total)

    try:
        sink_path.parent.mkdir(parents=True, exist_ok=True)
        with writer:
            offset = writer.get_bytes_written()
            if start_offset == 0 and _file_size(sink_path) > 0:
                writer.restart()
            elif offset != start_offset:
                logger.warning(
                    f"Partial file holds {offset} bytes, not {start_offset}; resuming from {offset}"
                )

            logger.debug(f"GET {url} from byte {offset}")
            result = client.fetch(url, offset, writer, on_bytes=on_bytes, cancel_predicate=is_cancelled)
    except CacheIOError as e:
        logger.error(f"Cannot write {sink_path}: {e}")
        return TransferOutcome.failed(ErrorKind.IO, str(e), _file_size(sink_path))
    except OSError as e:
        logger.error(f"Cannot prepare {sink_path}: {e}")
        return TransferOutcome.failed(ErrorKind.IO, f"Cannot prepare {sink_path}: {e}", _file_size(sink_path))

    on_disk = writer.get_bytes_written()

    if result.cancelled:
        logger.info(f"Transfer cancelled with {on_disk} bytes kept in {sink_path.name}")
        return TransferOutcome.cancelled(on_disk)

    if not result.ok:
        already_complete = (
            result.status_code == HTTP_RANGE_NOT_SATISFIABLE
            and expected_total > 0
            and on_disk == expected_total
        )
        if not already_complete:
            logger.error(f"Transfer failed for {url}: {result.error}")
            return TransferOutcome.failed(ErrorKind.TRANSPORT, result.error or "Transfer failed", on_disk)
        logger.info(f"Partial file {sink_path.name} was already complete")

    if expected_total > 0 and on_disk != expected_total:
        if on_disk > expected_total:
            _discard(sink_path)
            reason = f"Received {on_disk} bytes, more than the expected {expected_total}; partial file discarded"
            logger.error(reason)
            return TransferOutcome.failed(ErrorKind.SIZE_MISMATCH, reason, 0)
        reason = f"Received {on_disk} of {expected_total} bytes; partial file kept for resume"
        logger.error(reason)
        return TransferOutcome.failed(ErrorKind.SIZE_MISMATCH, reason, on_disk)

    if expected_sha256 and not writer.verify(expected_sha256):
        _discard(sink_path)
        return TransferOutcome.failed(
            ErrorKind.CHECKSUM_MISMATCH, f"SHA-256 of {sink_path.name} does not match {expected_sha256}", 0
        )

    if throttle is not None:
        throttle.tick(on_disk, expected_total or on_disk, force=True)

    logger.info(f"Transfer complete: {on_disk} bytes in {sink_path.name}")
    return TransferOutcome.completed(on_disk)


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _discard(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Failed to remove invalid partial file {path}: {e}")
