"""
General logging utilities for real-time log visibility and context tracking.

Provides:
- flush_logs() for immediate log output before the progress line redraws
- Download context (repo/file) carried through nested calls via ContextVar
- TimingSpan for measuring pipeline durations
"""

import logging
import logging.handlers
import sys
import time
from contextvars import ContextVar
from typing import Optional

# Context variable holding the asset currently being downloaded ("org/name:file")
_download_context: ContextVar[Optional[str]] = ContextVar('download_id', default=None)

logger = logging.getLogger(__name__)


def flush_logs():
    """
    Force immediate flush of all log handlers.

    Async logging (QueueHandler) delays output; the CLI calls this before
    printing the final result so log lines and the progress line do not
    interleave.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.flush()
        if isinstance(handler, logging.handlers.QueueHandler):
            # Give the listener thread a moment to drain the queue
            time.sleep(0.001)

    sys.stdout.flush()
    sys.stderr.flush()


# ============================================================================
# Download context
# ============================================================================

def set_download_context(download_id: str):
    """Set the current download id in context."""
    _download_context.set(download_id)


def get_download_context() -> Optional[str]:
    """Get the current download id from context."""
    return _download_context.get()


def clear_download_context():
    """Clear the current download id from context."""
    _download_context.set(None)


def log_with_context(level: int, message: str, **kwargs):
    """
    Log a message prefixed with the download context and key=value pairs.

    Args:
        level: Logging level (e.g., logging.INFO)
        message: Log message
        **kwargs: Additional context to include in log
    """
    context_parts = []
    download_id = get_download_context()
    if download_id:
        context_parts.append(f"download={download_id}")
    context_parts.extend(f"{key}={value}" for key, value in kwargs.items())

    if context_parts:
        logger.log(level, f"[{' '.join(context_parts)}] {message}")
    else:
        logger.log(level, message)


def log_info(message: str, **kwargs):
    """Log INFO message with context."""
    log_with_context(logging.INFO, message, **kwargs)


def log_error(message: str, **kwargs):
    """Log ERROR message with context."""
    log_with_context(logging.ERROR, message, **kwargs)


class TimingSpan:
    """
    Context manager for timing operations and logging duration.

    Usage:
        with TimingSpan("download", repo_id="org/name", filename="model.bin"):
            # ... transfer and install ...
            pass
    """

    def __init__(self, operation: str, **extra_context):
        """
        Initialize timing span.

        Args:
            operation: Name of the operation being timed
            **extra_context: Additional context to include in logs
        """
        self.operation = operation
        self.extra_context = extra_context
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        """Start timing."""
        self.start_time = time.time()
        log_info(f"{self.operation} - started", **self.extra_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End timing and log duration."""
        self.end_time = time.time()
        duration_ms = (self.end_time - self.start_time) * 1000

        if exc_type is not None:
            log_error(
                f"{self.operation} - failed after {duration_ms:.0f}ms",
                error=str(exc_val),
                **self.extra_context
            )
        else:
            log_info(
                f"{self.operation} - completed",
                duration_ms=f"{duration_ms:.0f}",
                **self.extra_context
            )

        return False  # Don't suppress exceptions

    def get_duration_ms(self) -> Optional[float]:
        """Get duration in milliseconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time) * 1000
        return None
