"""
Tests for metadata resolvers and their wire-format parsers.
"""

import hashlib
import json
import urllib.error
from unittest.mock import Mock, patch

import pytest

from hubcache.common.constants import UNKNOWN_COMMIT
from hubcache.model.metadata import ResolutionErrorKind
from hubcache.services.metadata_resolver import (
    HubApiResolver,
    LfsPointerResolver,
    create_resolver,
    git_blob_id,
    parse_lfs_pointer,
    parse_paths_info,
    parse_revision_info,
)
from hubcache.utils.download.retry_policy import RetryPolicy
from hubcache.utils.download.http_client import is_transient_error

SHA256 = "4d7a214614ab2935c943f9e0ff69d22eadbb8f32b1258daaa5e2ca24d17e2393"
OID = "0123456789abcdef0123456789abcdef01234567"
COMMIT = "fedcba9876543210fedcba9876543210fedcba98"

LFS_POINTER = (
    "version https://git-lfs.github.com/spec/v1\n"
    f"oid sha256:{SHA256}\n"
    "size 1334\n"
)


def _paths_info(*entries) -> bytes:
    return json.dumps(list(entries)).encode("utf-8")


def _revision(sha: str = COMMIT):
    return json.dumps({"id": "org/name", "sha": sha}).encode("utf-8"), {}


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://huggingface.co", code, "error", {}, None)


def _no_wait_policy(retries: int = 3) -> RetryPolicy:
    return RetryPolicy(max_retries=retries, initial_delay=0, retry_on=is_transient_error)


# ============================================================================
# Parsers
# ============================================================================


class TestParsePathsInfo:

    def test_lfs_entry_uses_sha256(self):
        body = _paths_info({
            "type": "file", "oid": OID, "size": 1334, "path": "model.bin",
            "lfs": {"oid": SHA256, "size": 1334, "pointerSize": 134},
            "lastCommit": {"id": COMMIT, "title": "upload"},
        })

        meta = parse_paths_info(body, "model.bin")

        assert meta.content_id == SHA256
        assert meta.commit_id == COMMIT
        assert meta.size_bytes == 1334
        assert meta.sha256 == SHA256
        assert meta.object_id == OID

    def test_plain_entry_falls_back_to_object_id(self):
        body = _paths_info({"type": "file", "oid": OID, "size": 42, "path": "config.json"})

        meta = parse_paths_info(body, "config.json")

        assert meta.content_id == OID
        assert meta.sha256 is None
        assert meta.commit_id == UNKNOWN_COMMIT

    def test_picks_entry_matching_path(self):
        body = _paths_info(
            {"type": "file", "oid": "1" * 40, "size": 1, "path": "other.json"},
            {"type": "file", "oid": OID, "size": 2, "path": "config.json"},
        )

        assert parse_paths_info(body, "config.json").content_id == OID

    def test_empty_list_means_not_found(self):
        assert parse_paths_info(b"[]", "missing.bin") is None

    def test_directory_means_not_found(self):
        body = _paths_info({"type": "directory", "oid": OID, "size": 0, "path": "sub"})

        assert parse_paths_info(body, "sub") is None

    @pytest.mark.parametrize("body", [
        b"not json",
        b'{"error": "x"}',
        _paths_info({"type": "file", "oid": OID, "path": "a"}),
        _paths_info({"type": "file", "size": 3, "path": "a"}),
    ])
    def test_malformed_bodies_raise(self, body):
        with pytest.raises(ValueError):
            parse_paths_info(body, "a")


class TestParseLfsPointer:

    def test_parses_pointer(self):
        assert parse_lfs_pointer(LFS_POINTER) == (SHA256, 1334)

    def test_regular_file_is_not_a_pointer(self):
        assert parse_lfs_pointer('{"model_type": "gpt2"}') is None

    def test_pointer_without_size_is_malformed(self):
        with pytest.raises(ValueError):
            parse_lfs_pointer(f"version https://git-lfs.github.com/spec/v1\noid sha256:{SHA256}\n")

    def test_git_blob_id_matches_git(self):
        # `printf 'hello\n' | git hash-object --stdin`
        assert git_blob_id(b"hello\n") == "ce013625030ba8dba906f756967f9e9ca394464a"


# ============================================================================
# HubApiResolver
# ============================================================================


class TestHubApiResolver:

    def _resolver(self, client, **kwargs):
        return HubApiResolver(client, retry_policy=_no_wait_policy(), **kwargs)

    def test_posts_paths_info_request(self):
        client = Mock()
        client.post_json.return_value = (
            _paths_info({"type": "file", "oid": OID, "size": 5, "path": "a.bin",
                         "lfs": {"oid": SHA256, "size": 5}, "lastCommit": {"id": COMMIT}}),
            {},
        )
        client.get_bytes.return_value = _revision()

        result = self._resolver(client).resolve("org/name", "a.bin")

        assert result.is_ok
        assert result.metadata.content_id == SHA256
        url, payload = client.post_json.call_args[0]
        assert url == "https://huggingface.co/api/models/org/name/paths-info/main"
        assert payload == {"paths": ["a.bin"], "expand": True}
        assert result.metadata.commit_id == COMMIT
        assert client.get_bytes.call_args[0][0] == "https://huggingface.co/api/models/org/name/revision/main"

    def test_dataset_and_revision_in_url(self):
        client = Mock()
        client.post_json.return_value = (b"[]", {})

        self._resolver(client, revision="v2", repo_type="dataset").resolve("org/data", "a.csv")

        url = client.post_json.call_args[0][0]
        assert url == "https://huggingface.co/api/datasets/org/data/paths-info/v2"

    def test_empty_answer_is_not_found(self):
        client = Mock()
        client.post_json.return_value = (b"[]", {})

        result = self._resolver(client).resolve("org/name", "missing.bin")

        assert not result.is_ok
        assert result.error.kind is ResolutionErrorKind.NOT_FOUND

    @pytest.mark.parametrize("code", [401, 404])
    def test_missing_repo_is_not_found_without_retry(self, code):
        client = Mock()
        client.post_json.side_effect = _http_error(code)

        result = self._resolver(client).resolve("org/missing", "a.bin")

        assert result.error.kind is ResolutionErrorKind.NOT_FOUND
        assert client.post_json.call_count == 1

    def test_transient_errors_are_retried(self):
        client = Mock()
        client.post_json.side_effect = [
            urllib.error.URLError("connection reset"),
            _http_error(503),
            (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "a"}), {}),
        ]
        client.get_bytes.return_value = _revision()

        with patch("time.sleep"):
            result = self._resolver(client).resolve("org/name", "a")

        assert result.is_ok
        assert client.post_json.call_count == 3

    def test_exhausted_retries_are_transport_error(self):
        client = Mock()
        client.post_json.side_effect = urllib.error.URLError("offline")

        with patch("time.sleep"):
            result = self._resolver(client).resolve("org/name", "a")

        assert result.error.kind is ResolutionErrorKind.TRANSPORT
        assert client.post_json.call_count == 3

    def test_bad_json_is_malformed_without_retry(self):
        client = Mock()
        client.post_json.return_value = (b"<html>", {})

        result = self._resolver(client).resolve("org/name", "a")

        assert result.error.kind is ResolutionErrorKind.MALFORMED
        assert client.post_json.call_count == 1

    def test_files_of_one_revision_share_its_commit(self):
        """Each file's lastCommit differs, the snapshot commit must not."""
        client = Mock()
        client.post_json.side_effect = [
            (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "a",
                          "lastCommit": {"id": "1" * 40}}), {}),
            (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "b",
                          "lastCommit": {"id": "2" * 40}}), {}),
        ]
        client.get_bytes.return_value = _revision(COMMIT)
        resolver = self._resolver(client)

        first = resolver.resolve("org/name", "a")
        second = resolver.resolve("org/name", "b")

        assert first.metadata.commit_id == COMMIT
        assert second.metadata.commit_id == COMMIT

    def test_full_commit_revision_skips_lookup(self):
        client = Mock()
        client.post_json.return_value = (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "a"}), {})

        result = self._resolver(client, revision=COMMIT).resolve("org/name", "a")

        assert result.metadata.commit_id == COMMIT
        client.get_bytes.assert_not_called()

    def test_missing_revision_is_not_found(self):
        client = Mock()
        client.post_json.return_value = (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "a"}), {})
        client.get_bytes.side_effect = _http_error(404)

        result = self._resolver(client, revision="gone").resolve("org/name", "a")

        assert result.error.kind is ResolutionErrorKind.NOT_FOUND

    def test_revision_without_sha_is_malformed(self):
        client = Mock()
        client.post_json.return_value = (_paths_info({"type": "file", "oid": OID, "size": 1, "path": "a"}), {})
        client.get_bytes.return_value = (b'{"id": "org/name"}', {})

        result = self._resolver(client).resolve("org/name", "a")

        assert result.error.kind is ResolutionErrorKind.MALFORMED


class TestParseRevisionInfo:

    def test_returns_sha(self):
        assert parse_revision_info(_revision(COMMIT)[0]) == COMMIT

    @pytest.mark.parametrize("body", [b"[]", b'{"sha": "main"}', b"not json"])
    def test_invalid_bodies_raise(self, body):
        with pytest.raises(ValueError):
            parse_revision_info(body)


# ============================================================================
# LfsPointerResolver
# ============================================================================


class TestLfsPointerResolver:

    def test_lfs_pointer_with_commit_header(self):
        client = Mock()
        client.get_bytes.return_value = (LFS_POINTER.encode(), {"X-Repo-Commit": COMMIT})
        resolver = LfsPointerResolver(client, retry_policy=_no_wait_policy())

        result = resolver.resolve("org/name", "model.bin")

        assert result.is_ok
        assert result.metadata.content_id == SHA256
        assert result.metadata.size_bytes == 1334
        assert result.metadata.commit_id == COMMIT
        assert client.get_bytes.call_args[0][0] == "https://huggingface.co/org/name/raw/main/model.bin"

    def test_regular_file_uses_git_blob_id(self):
        body = b'{"model_type": "gpt2"}\n'
        client = Mock()
        client.get_bytes.return_value = (body, {"x-repo-commit": COMMIT})
        resolver = LfsPointerResolver(client, retry_policy=_no_wait_policy())

        result = resolver.resolve("org/name", "config.json")

        expected_oid = hashlib.sha1(b"blob %d\0" % len(body) + body).hexdigest()
        assert result.metadata.content_id == expected_oid
        assert result.metadata.size_bytes == len(body)
        assert result.metadata.commit_id == COMMIT

    def test_missing_commit_header_degrades_to_unknown(self, caplog):
        client = Mock()
        client.get_bytes.return_value = (LFS_POINTER.encode(), {})
        resolver = LfsPointerResolver(client, retry_policy=_no_wait_policy())

        result = resolver.resolve("org/name", "model.bin")

        assert result.metadata.commit_id == UNKNOWN_COMMIT
        assert "unknown" in caplog.text

    def test_binary_body_is_hashed(self):
        body = bytes(range(256))
        client = Mock()
        client.get_bytes.return_value = (body, {"X-Repo-Commit": COMMIT})
        resolver = LfsPointerResolver(client, retry_policy=_no_wait_policy())

        result = resolver.resolve("org/name", "tokenizer.model")

        assert result.metadata.content_id == git_blob_id(body)


# ============================================================================
# Factory
# ============================================================================


class TestCreateResolver:

    def test_creates_by_name(self):
        assert isinstance(create_resolver("api", Mock()), HubApiResolver)
        assert isinstance(create_resolver("LFS", Mock()), LfsPointerResolver)

    def test_passes_settings(self):
        resolver = create_resolver("api", Mock(), endpoint="https://hub.local/", revision="dev", retries=5)

        assert resolver.endpoint == "https://hub.local"
        assert resolver.revision == "dev"
        assert resolver.retry_policy.max_retries == 5

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError, match="Unknown resolver"):
            create_resolver("git", Mock())
