from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DownloadStatus(Enum):
    DOWNLOADED = "DOWNLOADED"
    CACHED = "CACHED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ErrorKind(Enum):
    RESOLUTION = "RESOLUTION"
    TRANSPORT = "TRANSPORT"
    CANCELLED = "CANCELLED"
    IO = "IO"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"


@dataclass(frozen=True)
class DownloadResult:
    """
    Outcome of a public download call.

    `success` and `path` are the whole contract; `status`, `error_kind` and
    `message` let callers branch on the reason without parsing text. `path`
    is the snapshot path whenever it could be computed, even on failure.
    """

    success: bool
    path: str
    status: DownloadStatus
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def downloaded(cls, path) -> "DownloadResult":
        return cls(success=True, path=str(path), status=DownloadStatus.DOWNLOADED)

    @classmethod
    def cached(cls, path) -> "DownloadResult":
        return cls(success=True, path=str(path), status=DownloadStatus.CACHED)

    @classmethod
    def cancelled(cls, path="", message: str = "Download cancelled by user") -> "DownloadResult":
        return cls(
            success=False,
            path=str(path),
            status=DownloadStatus.CANCELLED,
            error_kind=ErrorKind.CANCELLED,
            message=message,
        )

    @classmethod
    def failed(cls, error_kind: ErrorKind, message: str, path="") -> "DownloadResult":
        return cls(
            success=False,
            path=str(path),
            status=DownloadStatus.FAILED,
            error_kind=error_kind,
            message=message,
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == DownloadStatus.CANCELLED
