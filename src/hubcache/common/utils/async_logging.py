"""
Queue-based logging for the command line.

Log records are put on a queue by the calling thread and written by a
listener thread, so slow handlers (a file on a network share, a blocked
terminal) never stall a transfer. Whatever the root logger had before setup
is put back on shutdown.
"""

import atexit
import logging
import logging.handlers
import os
import queue
import sys
from typing import List, Optional

_queue_listener: Optional[logging.handlers.QueueListener] = None
_queue_handler: Optional[logging.handlers.QueueHandler] = None
_saved_root_handlers: List[logging.Handler] = []
_saved_root_level = logging.WARNING
_shutdown_registered = False

CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SafeRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler that keeps writing when the log file is locked (Windows)."""

    def doRollover(self):
        try:
            super().doRollover()
        except PermissionError as e:
            print(f"Warning: Could not rotate log file (file in use): {e}", file=sys.stderr)


def _build_handlers(
    log_file_path: Optional[str], max_bytes: int, backup_count: int, console: bool
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console_handler)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = SafeRotatingFileHandler(
            log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        handlers.append(file_handler)

    return handlers


def setup_async_logging(
    log_level=logging.INFO,
    log_file_path: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> None:
    """
    Route all logging through a queue to stderr and, optionally, a rotating file.

    Calling it again replaces the previous setup.

    Args:
        log_level: Root logger level (e.g., logging.INFO)
        log_file_path: Log file; its directory is created if needed. None disables file logging
        max_bytes: Maximum size of each log file before rotation
        backup_count: Number of rotated files to keep
        console: Also log to stderr
    """
    global _queue_listener, _queue_handler, _saved_root_handlers, _saved_root_level, _shutdown_registered

    shutdown_async_logging()

    root_logger = logging.getLogger()
    _saved_root_handlers = list(root_logger.handlers)
    _saved_root_level = root_logger.level
    for handler in _saved_root_handlers:
        root_logger.removeHandler(handler)

    log_queue = queue.Queue(-1)
    _queue_handler = logging.handlers.QueueHandler(log_queue)
    root_logger.setLevel(log_level)
    root_logger.addHandler(_queue_handler)

    handlers = _build_handlers(log_file_path, max_bytes, backup_count, console)
    _queue_listener = logging.handlers.QueueListener(log_queue, *handlers, respect_handler_level=True)
    _queue_listener.start()

    if not _shutdown_registered:
        atexit.register(shutdown_async_logging)
        _shutdown_registered = True

    logging.getLogger(__name__).debug(
        f"Async logging started (level={logging.getLevelName(log_level)}, file={log_file_path or '-'})"
    )


def shutdown_async_logging(close_handlers: bool = True):
    """
    Drain the queue, stop the listener and restore the root logger (idempotent).

    Args:
        close_handlers: Close the console and file handlers after flushing
    """
    global _queue_listener, _queue_handler, _saved_root_handlers

    if _queue_listener is None:
        return

    # stop() enqueues a sentinel and joins the listener thread
    _queue_listener.stop()
    for handler in _queue_listener.handlers:
        handler.flush()
        if close_handlers:
            handler.close()
    _queue_listener = None

    root_logger = logging.getLogger()
    if _queue_handler is not None:
        root_logger.removeHandler(_queue_handler)
        _queue_handler = None
    for handler in _saved_root_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(_saved_root_level)
    _saved_root_handlers = []
