"""
Tests for hub URL builders.
"""

import pytest

from hubcache.utils.hub_urls import paths_info_url, raw_url, resolve_url, revision_info_url


class TestHubUrls:

    def test_model_resolve_url(self):
        assert resolve_url("org/name", "config.json") == "https://huggingface.co/org/name/resolve/main/config.json"

    def test_dataset_prefix_and_custom_endpoint(self):
        url = resolve_url("org/data", "train/part.csv", repo_type="dataset", endpoint="https://hub.local/")

        assert url == "https://hub.local/datasets/org/data/resolve/main/train/part.csv"

    def test_revision_stays_one_segment(self):
        url = raw_url("org/name", "model.bin", revision="refs/pr/1")

        assert url == "https://huggingface.co/org/name/raw/refs%2Fpr%2F1/model.bin"

    def test_filename_is_quoted(self):
        assert resolve_url("org/name", "my file.bin").endswith("/resolve/main/my%20file.bin")

    def test_paths_info_uses_plural_type(self):
        assert paths_info_url("org/name") == "https://huggingface.co/api/models/org/name/paths-info/main"
        assert paths_info_url("org/app", "v1", "space") == "https://huggingface.co/api/spaces/org/app/paths-info/v1"

    def test_revision_info_url(self):
        assert revision_info_url("org/data", "refs/pr/2", "dataset") == (
            "https://huggingface.co/api/datasets/org/data/revision/refs%2Fpr%2F2"
        )

    @pytest.mark.parametrize("builder", [
        lambda: resolve_url("org/name", "a", repo_type="bucket"),
        lambda: paths_info_url("org/name", repo_type="bucket"),
        lambda: revision_info_url("org/name", repo_type="bucket"),
    ])
    def test_unknown_repo_type_raises(self, builder):
        with pytest.raises(ValueError):
            builder()
