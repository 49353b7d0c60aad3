"""
Hub download service.

Runs the per-file pipeline (resolve, lay out, transfer, install) and the
shard loop on top of it. All failures are returned as DownloadResult values;
nothing in here raises to the caller.
"""

import logging
from enum import Enum
from typing import Optional

from hubcache.common.config import Config
from hubcache.common.constants import DEFAULT_CACHE_DIR, DEFAULT_ENDPOINT, DEFAULT_REPO_TYPE, DEFAULT_REVISION
from hubcache.common.exceptions import CacheIOError, HubCacheError
from hubcache.model.download_result import DownloadResult, ErrorKind
from hubcache.model.metadata import AssetMetadata
from hubcache.services.cache_install import install, is_cache_hit
from hubcache.services.metadata_resolver import HubApiResolver, IMetadataResolver, create_resolver
from hubcache.services.shards import parse_shard_set
from hubcache.utils.cache_layout import (
    CacheRoot,
    ensure_cache_root,
    purge_cache_root,
    repo_folder_name,
    validate_repo_filename,
)
from hubcache.utils.download.cancel_token import CancelToken
from hubcache.utils.download.downloader import ProgressCallback, ProgressThrottle, TransferStatus, transfer
from hubcache.utils.download.http_client import HttpClient
from hubcache.utils.download.resume_manager import ResumeManager
from hubcache.utils.hub_urls import resolve_url
from hubcache.utils.logging_utils import TimingSpan, clear_download_context, set_download_context

logger = logging.getLogger(__name__)


class StaleCommitPolicy(Enum):
    """What to do when refs/<revision> names a different commit than the hub."""

    KEEP = "keep"
    PURGE = "purge"

    @classmethod
    def from_string(cls, value: str) -> "StaleCommitPolicy":
        try:
            return cls(value.strip().lower())
        except ValueError:
            logger.warning(f"Unknown stale commit policy '{value}', using 'keep'")
            return cls.KEEP


class HubDownloadService:
    """Download files from a hub repository into the local cache."""

    def __init__(
        self,
        resolver: Optional[IMetadataResolver] = None,
        client: Optional[HttpClient] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        revision: str = DEFAULT_REVISION,
        repo_type: str = DEFAULT_REPO_TYPE,
        stale_commit_policy: StaleCommitPolicy = StaleCommitPolicy.KEEP,
        verify_sha256: bool = False,
        progress_interval: float = 0.08,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        """
        Initialize download service.

        Args:
            resolver: Metadata resolver (default: paths-info API resolver)
            client: HTTP client shared by resolver and transfer
            endpoint: Hub base URL
            revision: Branch, tag or commit to download
            repo_type: "model", "dataset" or "space"
            stale_commit_policy: KEEP leaves older snapshots alone, PURGE wipes
                the repository cache when the ref moved
            verify_sha256: Check LFS files against their SHA-256 before install
            progress_interval: Minimum seconds between progress callbacks
            on_progress: Optional callback(downloaded, total, elapsed_seconds)
            cancel_token: Optional token; cancelling stops the running transfer
        """
        self.client = client or HttpClient()
        self.endpoint = endpoint.rstrip("/")
        self.revision = revision
        self.repo_type = repo_type
        self.resolver = resolver or HubApiResolver(
            self.client, endpoint=self.endpoint, revision=revision, repo_type=repo_type
        )
        self.stale_commit_policy = stale_commit_policy
        self.verify_sha256 = verify_sha256
        self.progress_interval = progress_interval
        self.on_progress = on_progress
        self.cancel_token = cancel_token

    @classmethod
    def from_config(
        cls,
        config: Config,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> "HubDownloadService":
        """Build a service from the [Hub] and [Download] config sections."""
        client = HttpClient(
            timeout=config.timeout,
            user_agent=config.user_agent,
            token=config.token or None,
            chunk_size=config.chunk_size,
        )
        resolver = create_resolver(
            config.resolver,
            client,
            endpoint=config.endpoint,
            revision=config.revision,
            repo_type=config.repo_type,
            retries=config.resolver_retries,
        )
        return cls(
            resolver=resolver,
            client=client,
            endpoint=config.endpoint,
            revision=config.revision,
            repo_type=config.repo_type,
            stale_commit_policy=StaleCommitPolicy.from_string(config.on_stale_commit),
            verify_sha256=config.verify_sha256,
            progress_interval=config.progress_interval,
            on_progress=on_progress,
            cancel_token=cancel_token,
        )

    def download(
        self, repo_id: str, filename: str, cache_dir=DEFAULT_CACHE_DIR, force_download: bool = False
    ) -> DownloadResult:
        """
        Download one file into the cache.

        Args:
            repo_id: Repository id such as "org/name"
            filename: Path of the file inside the repository
            cache_dir: Cache directory (may start with '~')
            force_download: Ignore the cached blob and any partial download

        Returns:
            DownloadResult whose `path` is the snapshot path
        """
        return self._download_guarded(repo_id, filename, cache_dir, force_download, allow_purge=True)

    def download_with_shards(
        self, repo_id: str, filename: str, cache_dir=DEFAULT_CACHE_DIR, force_download: bool = False
    ) -> DownloadResult:
        """
        Download a file, or every shard of it when the name is `<base>-<i>-of-<N>.<ext>`.

        Shards are fetched in order and the first failure stops the loop;
        shards installed before it stay in the cache. On success the result
        for shard 1 is returned.

        Args:
            repo_id: Repository id such as "org/name"
            filename: File name, possibly naming any shard of the set
            cache_dir: Cache directory (may start with '~')
            force_download: Re-download every shard

        Returns:
            DownloadResult for shard 1, or for the shard that failed
        """
        shard_set = parse_shard_set(filename)
        if shard_set is None:
            return self.download(repo_id, filename, cache_dir, force_download)

        logger.info(f"{filename} is part of a {shard_set.count}-shard set")
        for index, shard_name in enumerate(shard_set.filenames, start=1):
            logger.info(f"Shard {index}/{shard_set.count}: {shard_name}")
            # Only shard 1 may purge, so a moved ref never wipes shards installed by this call
            result = self._download_guarded(repo_id, shard_name, cache_dir, force_download, allow_purge=index == 1)
            if not result.success:
                logger.error(f"Shard {shard_name} failed, stopping: {result.message}")
                return result

        # Shard 1 is cached by now, so this only re-resolves and re-links it
        return self._download_guarded(repo_id, shard_set.representative, cache_dir, False, allow_purge=False)

    def _download_guarded(
        self, repo_id: str, filename: str, cache_dir, force_download: bool, allow_purge: bool
    ) -> DownloadResult:
        try:
            return self._download_file(repo_id, filename, cache_dir, force_download, allow_purge)
        except Exception as e:
            logger.exception(f"Unexpected error downloading {repo_id}/{filename}")
            return DownloadResult.failed(ErrorKind.IO, f"Unexpected error: {e}")

    def _download_file(
        self, repo_id: str, filename: str, cache_dir, force_download: bool, allow_purge: bool
    ) -> DownloadResult:
        try:
            repo_folder_name(repo_id, self.repo_type)
            validate_repo_filename(filename)
        except ValueError as e:
            logger.error(str(e))
            return DownloadResult.failed(ErrorKind.INVALID_ARGUMENT, str(e))

        set_download_context(f"{repo_id}:{filename}")
        try:
            with TimingSpan("download", repo_id=repo_id, filename=filename):
                return self._run_pipeline(repo_id, filename, cache_dir, force_download, allow_purge)
        finally:
            clear_download_context()

    def _run_pipeline(
        self, repo_id: str, filename: str, cache_dir, force_download: bool, allow_purge: bool
    ) -> DownloadResult:
        result = self.resolver.resolve(repo_id, filename)
        if not result.is_ok:
            return DownloadResult.failed(
                ErrorKind.RESOLUTION, f"Cannot resolve {repo_id}/{filename}: {result.error}"
            )
        metadata = result.metadata

        try:
            root = ensure_cache_root(cache_dir, repo_id, self.repo_type)
            self._reconcile_ref(root, metadata, allow_purge)
        except CacheIOError as e:
            logger.error(f"Cache directory error: {e}")
            return DownloadResult.failed(ErrorKind.IO, str(e))

        blob_path = root.blob_path(metadata.content_id)
        snapshot_path = root.snapshot_path(metadata.commit_id, filename)

        if not force_download and is_cache_hit(blob_path):
            logger.info(f"Cache hit for {filename} (blob {metadata.content_id})")
            try:
                install(None, blob_path, snapshot_path)
            except HubCacheError as e:
                logger.error(f"Failed to link cached blob: {e}")
                return DownloadResult.failed(ErrorKind.IO, str(e), snapshot_path)
            if self.on_progress:
                ProgressThrottle(self.on_progress).tick(metadata.size_bytes, metadata.size_bytes, force=True)
            return DownloadResult.cached(snapshot_path)

        resume = ResumeManager(blob_path)
        try:
            start_offset = resume.prepare(metadata.size_bytes, force_download)
        except CacheIOError as e:
            logger.error(str(e))
            return DownloadResult.failed(ErrorKind.IO, str(e), snapshot_path)

        url = resolve_url(repo_id, filename, self.revision, self.repo_type, self.endpoint)
        logger.info(f"Downloading {filename} ({metadata.size_bytes} bytes) from {url}")

        outcome = transfer(
            url,
            resume.part_file,
            start_offset,
            metadata.size_bytes,
            self.on_progress,
            self.cancel_token,
            client=self.client,
            expected_sha256=self._expected_sha256(metadata),
            min_interval=self.progress_interval,
        )

        if outcome.status is TransferStatus.CANCELLED:
            return DownloadResult.cancelled(snapshot_path, outcome.reason)
        if outcome.status is TransferStatus.FAILED:
            return DownloadResult.failed(outcome.error_kind, outcome.reason, snapshot_path)

        try:
            install(resume.part_file, blob_path, snapshot_path)
        except HubCacheError as e:
            logger.error(f"Install failed: {e}")
            return DownloadResult.failed(ErrorKind.IO, str(e), snapshot_path)

        logger.info(f"Saved {filename} to {snapshot_path}")
        return DownloadResult.downloaded(snapshot_path)

    def _reconcile_ref(self, root: CacheRoot, metadata: AssetMetadata, allow_purge: bool = True):
        """
        Record the resolved commit, or react to a moved ref per the stale commit policy.

        Raises:
            CacheIOError: Reading, writing or purging failed
        """
        if not metadata.has_commit:
            logger.debug(f"No commit known, leaving refs/{self.revision} untouched")
            return

        recorded = root.read_ref(self.revision)
        if recorded is None:
            root.write_ref(metadata.commit_id, self.revision)
            return
        if recorded == metadata.commit_id:
            return

        if self.stale_commit_policy is StaleCommitPolicy.PURGE and allow_purge:
            logger.warning(
                f"refs/{self.revision} moved from {recorded} to {metadata.commit_id}, purging {root.path.name}"
            )
            purge_cache_root(root)
            root.write_ref(metadata.commit_id, self.revision)
        else:
            logger.info(
                f"refs/{self.revision} still records {recorded}; hub reports {metadata.commit_id}"
            )

    def _expected_sha256(self, metadata: AssetMetadata) -> Optional[str]:
        if self.verify_sha256 and metadata.sha256:
            return metadata.sha256
        return None


def download(
    repo_id: str,
    filename: str,
    cache_dir=DEFAULT_CACHE_DIR,
    force_download: bool = False,
    **service_options,
) -> DownloadResult:
    """Download one file with a default-configured HubDownloadService."""
    return HubDownloadService(**service_options).download(repo_id, filename, cache_dir, force_download)


def download_with_shards(
    repo_id: str,
    filename: str,
    cache_dir=DEFAULT_CACHE_DIR,
    force_download: bool = False,
    **service_options,
) -> DownloadResult:
    """Shard-aware variant of download()."""
    return HubDownloadService(**service_options).download_with_shards(repo_id, filename, cache_dir, force_download)
