import os
import sys
import logging
import pytest

# Ensure src directory is importable
PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_DIR = os.path.join(PROJECT_ROOT, 'src')
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

# Add tests directory to path for test utilities
TESTS_DIR = os.path.join(PROJECT_ROOT, 'tests')
if TESTS_DIR not in sys.path:
    sys.path.append(TESTS_DIR)

from hubcache.services.hub_download_service import HubDownloadService
from test_utils.fake_hub import FakeHub


# ============================================================================
# Platform-specific test markers
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """
    Skip symlink-dependent tests where the platform cannot create symlinks
    (Windows without developer mode).
    """
    if sys.platform != 'win32':
        return

    skip_symlink = pytest.mark.skipif(
        not _can_symlink(),
        reason="Symlinks not permitted on this Windows account"
    )
    for item in items:
        if 'symlink' in item.nodeid.lower():
            item.add_marker(skip_symlink)


def _can_symlink() -> bool:
    import tempfile

    with tempfile.TemporaryDirectory() as tmpdir:
        target = os.path.join(tmpdir, "target")
        open(target, "w").close()
        try:
            os.symlink(target, os.path.join(tmpdir, "link"))
        except OSError:
            return False
    return True


@pytest.fixture(autouse=True)
def _capture_hubcache_logs(caplog):
    """Make hubcache log records available to every test at DEBUG level."""
    caplog.set_level(logging.DEBUG, logger="hubcache")
    yield


@pytest.fixture
def fake_hub():
    """In-memory hub with a resolver and transport serving its files."""
    return FakeHub()


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "hub"
    path.mkdir()
    return path


@pytest.fixture
def service_factory(fake_hub):
    """
    Factory fixture for HubDownloadService wired to the fake hub.

    Usage:
        service = service_factory(cancel_token=token, on_progress=cb)
    """
    def _create_service(**kwargs) -> HubDownloadService:
        kwargs.setdefault("progress_interval", 0)
        return HubDownloadService(resolver=fake_hub.resolver, client=fake_hub.transport, **kwargs)

    return _create_service
