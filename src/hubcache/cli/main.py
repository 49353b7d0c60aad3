"""
Command line entry point.

    python -m hubcache org/name model-00001-of-00002.safetensors --cache-dir ~/models

Prints a progress line to stderr and the snapshot path to stdout.
"""

import argparse
import logging
import shutil
import signal
import sys

from hubcache.common.config import Config
from hubcache.common.constants import APP_DESCRIPTION, APP_NAME, APP_VERSION
from hubcache.common.utils.async_logging import setup_async_logging, shutdown_async_logging
from hubcache.model.download_result import DownloadStatus
from hubcache.services.hub_download_service import HubDownloadService, StaleCommitPolicy
from hubcache.services.metadata_resolver import RESOLVERS
from hubcache.utils.cache_layout import REPO_TYPE_FOLDER_PREFIXES
from hubcache.utils.download.cancel_token import CancelToken
from hubcache.utils.logging_utils import flush_logs

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

MB = 1024 * 1024


class ProgressPrinter:
    """Renders `[####    ]  42.0%  12.3 / 29.1 MB  4.20 MB/s  ETA 4s` on one line."""

    def __init__(self, stream=None, bar_width: int = 0):
        self.stream = stream or sys.stderr
        self.bar_width = bar_width
        self._active = False

    def _bar_width(self) -> int:
        if self.bar_width:
            return self.bar_width
        columns = shutil.get_terminal_size((80, 20)).columns
        return max(10, min(50, columns - 50))

    def format_line(self, downloaded: int, total: int, elapsed: float) -> str:
        fraction = downloaded / total if total else 0.0
        fraction = max(0.0, min(1.0, fraction))
        width = self._bar_width()
        filled = int(width * fraction)

        speed = downloaded / elapsed if elapsed > 0 else 0.0
        if speed > 0 and total:
            eta = f"{max(0, total - downloaded) / speed:.0f}s"
        else:
            eta = "--"

        return (
            f"[{'#' * filled}{' ' * (width - filled)}] {fraction * 100:5.1f}%  "
            f"{downloaded / MB:.1f} / {total / MB:.1f} MB  {speed / MB:.2f} MB/s  ETA {eta}"
        )

    def __call__(self, downloaded: int, total: int, elapsed: float):
        self.stream.write("\r" + self.format_line(downloaded, total, elapsed))
        self.stream.flush()
        self._active = True

    def finish(self):
        """End the progress line so later output starts on a fresh line."""
        if self._active:
            self.stream.write("\n")
            self.stream.flush()
            self._active = False


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(prog=APP_NAME, description=f"{APP_NAME} - {APP_DESCRIPTION}")
    parser.add_argument("repo_id", help="Repository id, e.g. org/name")
    parser.add_argument("filename", help="File inside the repository; shard names fetch the whole set")
    parser.add_argument("--cache-dir", metavar="DIR", help="Cache directory (default: from config)")
    parser.add_argument("--force", action="store_true", help="Re-download even if the file is cached")
    parser.add_argument("--revision", help="Branch, tag or commit (default: from config)")
    parser.add_argument("--repo-type", choices=sorted(REPO_TYPE_FOLDER_PREFIXES), help="Repository type")
    parser.add_argument("--no-shards", action="store_true", help="Download only the named file, never the shard set")
    parser.add_argument("--resolver", choices=sorted(RESOLVERS), help="Metadata source (default: from config)")
    parser.add_argument(
        "--on-stale-commit",
        choices=[policy.value for policy in StaleCommitPolicy],
        help="What to do when the hub reports a newer commit than refs/ records",
    )
    parser.add_argument("--verify", action="store_true", help="Verify SHA-256 of LFS files before install")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", metavar="PATH", help="Path to config.ini")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser.parse_args(argv)


def apply_arguments(config: Config, args) -> Config:
    """Command line options override the config file for this run only."""
    if args.cache_dir:
        config.cache_dir = args.cache_dir
    if args.revision:
        config.revision = args.revision
    if args.repo_type:
        config.repo_type = args.repo_type
    if args.resolver:
        config.resolver = args.resolver
    if args.on_stale_commit:
        config.on_stale_commit = args.on_stale_commit
    if args.verify:
        config.verify_sha256 = True
    if args.verbose:
        config.log_level_str = "DEBUG"
        config.log_level = logging.DEBUG
    return config


def install_sigint_handler(cancel_token: CancelToken):
    """Route Ctrl+C to the cancel token; a second Ctrl+C aborts immediately."""

    def handle_sigint(signum, frame):
        if cancel_token.is_cancelled():
            raise KeyboardInterrupt
        cancel_token.cancel()

    return signal.signal(signal.SIGINT, handle_sigint)


def main(argv=None) -> int:
    args = parse_arguments(argv)
    config = apply_arguments(Config(args.config), args)

    setup_async_logging(log_level=config.log_level, log_file_path=config.log_file or None)

    cancel_token = CancelToken()
    previous_handler = install_sigint_handler(cancel_token)
    printer = ProgressPrinter()

    try:
        service = HubDownloadService.from_config(config, on_progress=printer, cancel_token=cancel_token)
        cache_dir = config.effective_cache_dir
        if args.no_shards:
            result = service.download(args.repo_id, args.filename, cache_dir, args.force)
        else:
            result = service.download_with_shards(args.repo_id, args.filename, cache_dir, args.force)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        printer.finish()
        flush_logs()
        shutdown_async_logging()

    if result.status == DownloadStatus.CANCELLED:
        print("Download cancelled; run the same command again to resume.", file=sys.stderr)
        return EXIT_CANCELLED
    if not result.success:
        print(f"Download failed ({result.error_kind.value}): {result.message}", file=sys.stderr)
        return EXIT_FAILURE

    print(result.path)
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
