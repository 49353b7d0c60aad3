"""
hubcache: content-addressed cache for model hub downloads.

Usage:
    from hubcache import download_with_shards

    result = download_with_shards("org/name", "model-00001-of-00002.safetensors", "~/.cache/huggingface/hub")
    if result.success:
        print(result.path)
"""

from hubcache.common.constants import APP_VERSION as __version__
from hubcache.common.exceptions import CacheIOError, HubCacheError, InstallError
from hubcache.model.download_result import DownloadResult, DownloadStatus, ErrorKind
from hubcache.model.metadata import AssetMetadata, ResolutionErrorKind, ResolveResult
from hubcache.services.hub_download_service import (
    HubDownloadService,
    StaleCommitPolicy,
    download,
    download_with_shards,
)
from hubcache.utils.cache_layout import CacheRoot, ensure_cache_root
from hubcache.utils.download.cancel_token import CancelToken

__all__ = [
    "AssetMetadata",
    "CacheIOError",
    "CacheRoot",
    "CancelToken",
    "DownloadResult",
    "DownloadStatus",
    "ErrorKind",
    "HubCacheError",
    "HubDownloadService",
    "InstallError",
    "ResolutionErrorKind",
    "ResolveResult",
    "StaleCommitPolicy",
    "__version__",
    "download",
    "download_with_shards",
    "ensure_cache_root",
]
