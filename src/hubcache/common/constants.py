"""
Application-wide constants for hubcache.

Centralizes app name, hub defaults, and cache layout names to ensure consistency.
"""

# Application display name (user-facing)
APP_NAME = "hubcache"

# Application full description
APP_DESCRIPTION = "Content-addressed cache for model hub downloads"

APP_VERSION = "0.3.0"

# Technical identifiers (for paths, files - DO NOT change without migration)
APP_FOLDER_NAME = "hubcache"
APP_CONFIG_FILENAME = "config.ini"
APP_LOG_FILENAME = "hubcache.log"

# Hub defaults
DEFAULT_ENDPOINT = "https://huggingface.co"
DEFAULT_REVISION = "main"
DEFAULT_REPO_TYPE = "model"
DEFAULT_CACHE_DIR = "~/.cache/huggingface/hub"
DEFAULT_USER_AGENT = f"{APP_NAME}/{APP_VERSION}"

# Cache layout (shared with external tooling - must stay bit-exact)
BLOBS_DIRNAME = "blobs"
REFS_DIRNAME = "refs"
SNAPSHOTS_DIRNAME = "snapshots"
INCOMPLETE_SUFFIX = ".incomplete"
REPO_ID_SEPARATOR = "/"
REPO_FOLDER_SEPARATOR = "--"
UNKNOWN_COMMIT = "unknown"

# Transfer defaults
DEFAULT_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_PROGRESS_INTERVAL_MS = 80
DEFAULT_RESOLVER_RETRIES = 3
