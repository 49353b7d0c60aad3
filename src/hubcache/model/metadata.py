from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional

from hubcache.common.constants import UNKNOWN_COMMIT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetMetadata:
    """Resolved identity of one remote file: blob key, snapshot key and size."""

    content_id: str
    commit_id: str
    size_bytes: int

    # Raw fields as reported by the hub, kept for verification and debug logging
    sha256: Optional[str] = None
    object_id: Optional[str] = None
    entry_type: Optional[str] = None

    @property
    def has_commit(self) -> bool:
        return self.commit_id != UNKNOWN_COMMIT

    @classmethod
    def from_hub_fields(
        cls,
        size: int,
        sha256: Optional[str] = None,
        object_id: Optional[str] = None,
        commit_id: Optional[str] = None,
        entry_type: Optional[str] = None,
    ) -> "AssetMetadata":
        """
        Build metadata from the fields a hub response may or may not carry.

        The LFS SHA-256 is preferred as content id, the git object id is the
        fallback. A missing commit degrades to the "unknown" marker.

        Raises:
            ValueError: If neither a SHA-256 nor an object id is available
        """
        content_id = sha256 or object_id
        if not content_id:
            raise ValueError("Metadata has neither a SHA-256 nor an object id")

        if not commit_id:
            logger.warning(f"No commit id reported for blob {content_id}, using '{UNKNOWN_COMMIT}'")
            commit_id = UNKNOWN_COMMIT

        return cls(
            content_id=content_id,
            commit_id=commit_id,
            size_bytes=int(size),
            sha256=sha256 or None,
            object_id=object_id or None,
            entry_type=entry_type,
        )


class ResolutionErrorKind(Enum):
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ResolutionError:
    kind: ResolutionErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class ResolveResult:
    """Either resolved metadata or the reason resolution failed, never both."""

    metadata: Optional[AssetMetadata] = None
    error: Optional[ResolutionError] = None

    @classmethod
    def ok(cls, metadata: AssetMetadata) -> "ResolveResult":
        return cls(metadata=metadata)

    @classmethod
    def failure(cls, kind: ResolutionErrorKind, message: str) -> "ResolveResult":
        return cls(error=ResolutionError(kind, message))

    @property
    def is_ok(self) -> bool:
        return self.error is None and self.metadata is not None
