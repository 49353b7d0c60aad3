"""
Tests for the cache install protocol (blob rename + snapshot link).
"""

import errno
import os
from unittest.mock import patch

import pytest

from hubcache.common.exceptions import CacheIOError, InstallError
from hubcache.services.cache_install import install, is_cache_hit
from hubcache.utils.cache_layout import ensure_cache_root

CONTENT_ID = "f" * 64
COMMIT = "c" * 40


@pytest.fixture
def root(tmp_path):
    return ensure_cache_root(tmp_path, "org/name")


class TestInstall:
    """Install moves the partial file and links the snapshot."""

    def test_install_renames_partial_and_symlinks_snapshot(self, root):
        partial = root.incomplete_path(CONTENT_ID)
        partial.write_bytes(b"payload")
        blob = root.blob_path(CONTENT_ID)
        snapshot = root.snapshot_path(COMMIT, "model.bin")

        outcome = install(partial, blob, snapshot)

        assert outcome.blob_installed
        assert outcome.linked
        assert not partial.exists()
        assert blob.read_bytes() == b"payload"
        assert snapshot.is_symlink()
        assert os.readlink(snapshot) == os.path.join("..", "..", "blobs", CONTENT_ID)
        assert snapshot.read_bytes() == b"payload"

    def test_nested_filename_gets_extra_parent_hops(self, root):
        blob = root.blob_path(CONTENT_ID)
        blob.write_bytes(b"{}")
        snapshot = root.snapshot_path(COMMIT, "sub/dir/config.json")

        install(None, blob, snapshot)

        assert os.readlink(snapshot) == os.path.join("..", "..", "..", "..", "blobs", CONTENT_ID)
        assert snapshot.read_bytes() == b"{}"

    def test_second_install_only_relinks(self, root):
        partial = root.incomplete_path(CONTENT_ID)
        partial.write_bytes(b"payload")
        blob = root.blob_path(CONTENT_ID)
        snapshot = root.snapshot_path(COMMIT, "model.bin")
        install(partial, blob, snapshot)

        outcome = install(partial, blob, snapshot)

        assert not outcome.blob_installed
        assert snapshot.is_symlink()
        assert blob.read_bytes() == b"payload"

    def test_replaces_dangling_symlink(self, root):
        blob = root.blob_path(CONTENT_ID)
        blob.write_bytes(b"new")
        snapshot = root.snapshot_path(COMMIT, "model.bin")
        snapshot.parent.mkdir(parents=True)
        os.symlink("../../blobs/missing", snapshot)

        install(None, blob, snapshot)

        assert snapshot.read_bytes() == b"new"

    def test_latest_install_wins(self, root):
        old_blob = root.blob_path("0" * 64)
        old_blob.write_bytes(b"old")
        new_blob = root.blob_path(CONTENT_ID)
        new_blob.write_bytes(b"new")
        snapshot = root.snapshot_path(COMMIT, "model.bin")

        install(None, old_blob, snapshot)
        install(None, new_blob, snapshot)

        assert snapshot.read_bytes() == b"new"
        assert old_blob.exists()

    def test_nothing_to_install_raises(self, root):
        with pytest.raises(InstallError):
            install(root.incomplete_path(CONTENT_ID), root.blob_path(CONTENT_ID), root.snapshot_path(COMMIT, "f"))

    def test_falls_back_to_copy_without_symlink_permission(self, root, caplog):
        blob = root.blob_path(CONTENT_ID)
        blob.write_bytes(b"payload")
        snapshot = root.snapshot_path(COMMIT, "model.bin")

        with patch("os.symlink", side_effect=OSError(errno.EPERM, "Operation not permitted")):
            outcome = install(None, blob, snapshot)

        assert not outcome.linked
        assert not snapshot.is_symlink()
        assert snapshot.read_bytes() == b"payload"
        assert "copying blob" in caplog.text

    def test_other_link_errors_raise_cache_io_error(self, root):
        blob = root.blob_path(CONTENT_ID)
        blob.write_bytes(b"payload")

        with patch("os.symlink", side_effect=OSError(errno.ENOSPC, "No space left on device")):
            with pytest.raises(CacheIOError):
                install(None, blob, root.snapshot_path(COMMIT, "model.bin"))

    def test_rename_failure_keeps_partial(self, root):
        partial = root.incomplete_path(CONTENT_ID)
        partial.write_bytes(b"payload")

        with patch("os.replace", side_effect=OSError(errno.EXDEV, "Invalid cross-device link")):
            with pytest.raises(CacheIOError):
                install(partial, root.blob_path(CONTENT_ID), root.snapshot_path(COMMIT, "model.bin"))

        assert partial.read_bytes() == b"payload"
        assert not root.blob_path(CONTENT_ID).exists()


class TestIsCacheHit:

    def test_hit_requires_complete_blob(self, root):
        assert not is_cache_hit(root.blob_path(CONTENT_ID))

        root.incomplete_path(CONTENT_ID).write_bytes(b"part")
        assert not is_cache_hit(root.blob_path(CONTENT_ID))

        root.blob_path(CONTENT_ID).write_bytes(b"full")
        assert is_cache_hit(root.blob_path(CONTENT_ID))
