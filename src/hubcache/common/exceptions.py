"""
Cache-specific exceptions.

Raised inside the cache components and converted into typed results at the
download service boundary, so callers of the public entry points never see them.
"""

from typing import Optional


class HubCacheError(Exception):
    """Base exception for all hubcache errors."""


class CacheIOError(HubCacheError):
    """
    Raised when a local filesystem operation on the cache fails.

    Common causes:
    - Permission denied on the cache directory
    - A regular file where a cache directory is expected
    - Disk full while writing a partial download
    - Rename across filesystems
    """

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[Exception] = None):
        """
        Initialize cache I/O error.

        Args:
            message: Human-readable error message
            path: Filesystem path the operation was working on
            cause: Original exception that caused the failure
        """
        super().__init__(message)
        self.path: str | None = path
        self.cause: Exception | None = cause


class InstallError(HubCacheError):
    """Raised when a completed transfer cannot be installed into the cache."""
