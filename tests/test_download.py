"""
Cached dataset download (network mocked).
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from rnaseq_de.dataset.download import fetch_dataset, filename_from_url


def _response(chunks, content_length=None, error=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.headers = {"content-length": str(content_length)} if content_length else {}
    response.iter_content.return_value = iter(chunks)
    if error is not None:
        response.raise_for_status.side_effect = error
    return response


class TestFilenameFromUrl:

    def test_plain(self):
        assert filename_from_url("https://example.org/data/parathyroid.h5ad") == "parathyroid.h5ad"

    def test_query_string_ignored(self):
        assert filename_from_url("https://example.org/d/counts.csv.gz?raw=1") == "counts.csv.gz"

    def test_no_name(self):
        with pytest.raises(ValueError):
            filename_from_url("https://example.org/")


class TestFetchDataset:

    def test_downloads_once(self, tmp_path):
        url = "https://example.org/data/dataset.h5ad"
        with patch("rnaseq_de.dataset.download.requests.get") as get:
            get.return_value = _response([b"abc", b"", b"def"], content_length=6)

            path = fetch_dataset(url, tmp_path / "cache")
            again = fetch_dataset(url, tmp_path / "cache")

        assert path == again == tmp_path / "cache" / "dataset.h5ad"
        assert path.read_bytes() == b"abcdef"
        get.assert_called_once()
        assert not (tmp_path / "cache" / "dataset.h5ad.part").exists()

    def test_force_redownload(self, tmp_path):
        target = tmp_path / "custom.bin"
        target.write_bytes(b"old")
        with patch("rnaseq_de.dataset.download.requests.get") as get:
            get.return_value = _response([b"new"])
            path = fetch_dataset("https://example.org/x", tmp_path, filename="custom.bin", force=True)

        assert path.read_bytes() == b"new"

    def test_http_error_leaves_no_file(self, tmp_path):
        url = "https://example.org/data/dataset.h5ad"
        with patch("rnaseq_de.dataset.download.requests.get") as get:
            get.return_value = _response([], error=requests.HTTPError("404"))
            with pytest.raises(requests.HTTPError):
                fetch_dataset(url, tmp_path)

        assert list(tmp_path.iterdir()) == []

    def test_interrupted_download_cleaned_up(self, tmp_path):
        def broken_stream(chunk_size):
            yield b"partial"
            raise requests.ConnectionError("reset")

        response = _response([])
        response.iter_content.side_effect = broken_stream
        with patch("rnaseq_de.dataset.download.requests.get", return_value=response):
            with pytest.raises(requests.ConnectionError):
                fetch_dataset("https://example.org/data/dataset.h5ad", tmp_path)

        assert list(tmp_path.iterdir()) == []
