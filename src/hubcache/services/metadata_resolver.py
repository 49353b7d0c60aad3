"""
Metadata resolvers for hub files.

A resolver turns (repository id, filename) into the blob key, the commit and
the size of the file. Two wire formats are supported:

- the `paths-info` JSON API (one POST per file, plus the revision endpoint
  for the commit)
- the raw Git-LFS pointer file plus the `X-Repo-Commit` response header

Resolvers own their retry policy; the download pipeline never retries a
failed resolution.
"""

import hashlib
import http.client
import json
import logging
import re
import urllib.error
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from hubcache.common.constants import DEFAULT_ENDPOINT, DEFAULT_REPO_TYPE, DEFAULT_RESOLVER_RETRIES, DEFAULT_REVISION
from hubcache.model.metadata import AssetMetadata, ResolutionErrorKind, ResolveResult
from hubcache.utils.download.http_client import HttpClient, is_transient_error
from hubcache.utils.download.retry_policy import RetryPolicy
from hubcache.utils.hub_urls import paths_info_url, raw_url, revision_info_url

logger = logging.getLogger(__name__)

# The hub answers 401 instead of 404 for repositories it will not reveal
NOT_FOUND_STATUS_CODES = {401, 404}

LFS_POINTER_VERSION = "version https://git-lfs.github.com/spec/v1"
COMMIT_HEADER = "X-Repo-Commit"

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")


class IMetadataResolver(ABC):
    """
    Abstract base interface for metadata resolvers.

    Implementations never raise for remote problems: every failure is
    reported as a ResolveResult carrying a ResolutionError.
    """

    def __init__(
        self,
        client: HttpClient,
        endpoint: str = DEFAULT_ENDPOINT,
        revision: str = DEFAULT_REVISION,
        repo_type: str = DEFAULT_REPO_TYPE,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize resolver.

        Args:
            client: HTTP client used for metadata requests
            endpoint: Hub base URL
            revision: Branch, tag or commit to resolve against
            repo_type: "model", "dataset" or "space"
            retry_policy: Retry policy for transient failures (default: 3 attempts)
        """
        self.client = client
        self.endpoint = endpoint.rstrip("/")
        self.revision = revision
        self.repo_type = repo_type
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=DEFAULT_RESOLVER_RETRIES, retry_on=is_transient_error
        )

    @abstractmethod
    def resolve(self, repo_id: str, filename: str) -> ResolveResult:
        """
        Resolve metadata for one file.

        Args:
            repo_id: Repository id such as "org/name"
            filename: Path of the file inside the repository

        Returns:
            ResolveResult with AssetMetadata, or a NOT_FOUND / TRANSPORT /
            MALFORMED error
        """

    @abstractmethod
    def get_method_name(self) -> str:
        """Short resolver name for logging and configuration."""

    def _run(self, description: str, operation: Callable[[], ResolveResult]) -> ResolveResult:
        """Execute a lookup with retry and map exceptions onto resolution errors."""
        try:
            return self.retry_policy.execute(operation)
        except urllib.error.HTTPError as e:
            kind = (
                ResolutionErrorKind.NOT_FOUND if e.code in NOT_FOUND_STATUS_CODES else ResolutionErrorKind.TRANSPORT
            )
            logger.error(f"{description} failed: HTTP {e.code} - {e.reason}")
            return ResolveResult.failure(kind, f"HTTP {e.code} - {e.reason}")
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            logger.error(f"{description} failed: {e}")
            return ResolveResult.failure(ResolutionErrorKind.TRANSPORT, str(e))
        except ValueError as e:
            logger.error(f"{description} returned malformed metadata: {e}")
            return ResolveResult.failure(ResolutionErrorKind.MALFORMED, str(e))


def parse_paths_info(body: bytes, filename: str) -> Optional[AssetMetadata]:
    """
    Parse a paths-info response.

    Example response entry:
        {"type": "file", "oid": "<40 hex>", "size": 1234, "path": "model.bin",
         "lfs": {"oid": "<64 hex>", "size": 1234},
         "lastCommit": {"id": "<40 hex>"}}

    Args:
        body: Raw JSON response
        filename: Requested path, used to pick the matching entry

    Returns:
        AssetMetadata, or None when the repository has no such file

    Raises:
        ValueError: Body is not JSON or an entry lacks a size or content id
    """
    entries = json.loads(body.decode("utf-8"))
    if not isinstance(entries, list):
        raise ValueError(f"Expected a JSON list, got {type(entries).__name__}")
    if not entries:
        return None

    entry = next((e for e in entries if isinstance(e, dict) and e.get("path") == filename), entries[0])
    if not isinstance(entry, dict):
        raise ValueError("paths-info entry is not an object")

    entry_type = entry.get("type")
    if entry_type == "directory":
        logger.warning(f"{filename} is a directory, not a file")
        return None

    lfs = entry.get("lfs") or {}
    size = entry.get("size", lfs.get("size"))
    if not isinstance(size, int) or size < 0:
        raise ValueError(f"paths-info entry for {filename} has no valid size")

    last_commit = entry.get("lastCommit") or {}
    return AssetMetadata.from_hub_fields(
        size=size,
        sha256=lfs.get("oid"),
        object_id=entry.get("oid"),
        commit_id=last_commit.get("id"),
        entry_type=entry_type,
    )


def parse_lfs_pointer(text: str) -> Optional[Tuple[str, int]]:
    """
    Parse a Git-LFS pointer file.

    Example:
        version https://git-lfs.github.com/spec/v1
        oid sha256:4d7a2146...
        size 1334

    Returns:
        (sha256, size), or None if the text is not an LFS pointer

    Raises:
        ValueError: Text claims to be a pointer but lacks a valid oid or size
    """
    lines = [line.strip() for line in text.strip().splitlines()]
    if not lines or lines[0] != LFS_POINTER_VERSION:
        return None

    sha256 = None
    size = None
    for line in lines[1:]:
        key, _, value = line.partition(" ")
        if key == "oid" and value.startswith("sha256:"):
            sha256 = value[len("sha256:"):].lower()
        elif key == "size" and value.isdigit():
            size = int(value)

    if sha256 is None or not _SHA256_RE.match(sha256):
        raise ValueError("LFS pointer has no valid sha256 oid")
    if size is None:
        raise ValueError("LFS pointer has no size")
    return sha256, size


def git_blob_id(body: bytes) -> str:
    """Git object id of a file's content (what the hub reports as `oid`)."""
    return hashlib.sha1(b"blob %d\0" % len(body) + body).hexdigest()


def parse_revision_info(body: bytes) -> str:
    """
    Extract the commit sha from a revision endpoint response.

    Raises:
        ValueError: Body is not JSON or carries no 40-hex `sha`
    """
    info = json.loads(body.decode("utf-8"))
    sha = info.get("sha") if isinstance(info, dict) else None
    if not isinstance(sha, str) or not _COMMIT_RE.match(sha):
        raise ValueError("Revision info has no valid commit sha")
    return sha


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class HubApiResolver(IMetadataResolver):
    """
    Resolves metadata through the hub's paths-info JSON API.

    paths-info only knows the last commit that touched each file, so the
    snapshot commit comes from the revision endpoint instead. Every file of
    one revision then lands in the same snapshot and agrees with refs/.
    """

    def get_method_name(self) -> str:
        return "api"

    def resolve(self, repo_id: str, filename: str) -> ResolveResult:
        url = paths_info_url(repo_id, self.revision, self.repo_type, self.endpoint)
        payload = {"paths": [filename], "expand": True}

        def lookup() -> ResolveResult:
            logger.debug(f"POST {url} {payload}")
            body, _headers = self.client.post_json(url, payload)
            metadata = parse_paths_info(body, filename)
            if metadata is None:
                return ResolveResult.failure(
                    ResolutionErrorKind.NOT_FOUND, f"{filename} not found in {repo_id}@{self.revision}"
                )
            return ResolveResult.ok(replace(metadata, commit_id=self._revision_commit(repo_id)))

        result = self._run(f"Metadata lookup for {repo_id}/{filename}", lookup)
        if result.is_ok:
            meta = result.metadata
            logger.debug(f"Resolved {filename}: blob={meta.content_id} commit={meta.commit_id} size={meta.size_bytes}")
        return result

    def _revision_commit(self, repo_id: str) -> str:
        # A full commit sha needs no lookup
        if _COMMIT_RE.match(self.revision):
            return self.revision

        url = revision_info_url(repo_id, self.revision, self.repo_type, self.endpoint)
        logger.debug(f"GET {url}")
        body, _headers = self.client.get_bytes(url)
        return parse_revision_info(body)


class LfsPointerResolver(IMetadataResolver):
    """
    Resolves metadata from the raw file endpoint.

    LFS-tracked files are served as small pointer files naming the SHA-256 and
    size. Other files come back in full; their git blob id is computed locally.
    """

    def get_method_name(self) -> str:
        return "lfs"

    def resolve(self, repo_id: str, filename: str) -> ResolveResult:
        url = raw_url(repo_id, filename, self.revision, self.repo_type, self.endpoint)

        def lookup() -> ResolveResult:
            logger.debug(f"GET {url}")
            body, headers = self.client.get_bytes(url)
            commit_id = _header(headers, COMMIT_HEADER)

            pointer = None
            try:
                pointer = parse_lfs_pointer(body.decode("utf-8"))
            except UnicodeDecodeError:
                pass  # Binary content is never a pointer

            if pointer is not None:
                sha256, size = pointer
                metadata = AssetMetadata.from_hub_fields(size=size, sha256=sha256, commit_id=commit_id, entry_type="file")
            else:
                metadata = AssetMetadata.from_hub_fields(
                    size=len(body), object_id=git_blob_id(body), commit_id=commit_id, entry_type="file"
                )
            return ResolveResult.ok(metadata)

        return self._run(f"LFS pointer lookup for {repo_id}/{filename}", lookup)


RESOLVERS = {
    "api": HubApiResolver,
    "lfs": LfsPointerResolver,
}


def create_resolver(
    kind: str,
    client: HttpClient,
    endpoint: str = DEFAULT_ENDPOINT,
    revision: str = DEFAULT_REVISION,
    repo_type: str = DEFAULT_REPO_TYPE,
    retries: int = DEFAULT_RESOLVER_RETRIES,
) -> IMetadataResolver:
    """
    Factory function for metadata resolvers.

    Args:
        kind: "api" (paths-info JSON) or "lfs" (raw pointer file)
        client: HTTP client shared with the transfer
        endpoint: Hub base URL
        revision: Branch, tag or commit to resolve against
        repo_type: "model", "dataset" or "space"
        retries: Attempts for transient failures

    Returns:
        Configured resolver implementing IMetadataResolver

    Raises:
        ValueError: Unknown resolver kind
    """
    try:
        resolver_cls = RESOLVERS[kind.lower()]
    except KeyError:
        raise ValueError(f"Unknown resolver '{kind}', expected one of: {', '.join(RESOLVERS)}") from None

    retry_policy = RetryPolicy(max_retries=retries, retry_on=is_transient_error)
    return resolver_cls(client, endpoint=endpoint, revision=revision, repo_type=repo_type, retry_policy=retry_policy)
