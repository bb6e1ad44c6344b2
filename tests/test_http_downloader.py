"""
Tests for HTTP/HTTPS downloader.

Tests verify:
- URL scheme validation
- File size validation (Content-Length and streamed bytes)
- Timeout handling
- Error handling and partial-file cleanup
- Progress tracking
"""

import pytest
from unittest.mock import MagicMock, patch
import requests


def make_response(chunks, content_length=None, status_error=None):
    """Streaming response usable as a context manager."""
    response = MagicMock()
    response.__enter__.return_value = response
    response.headers = {}
    if content_length is not None:
        response.headers["Content-Length"] = str(content_length)
    response.iter_content.return_value = iter(chunks)
    if status_error:
        response.raise_for_status.side_effect = status_error
    return response


class TestHTTPDownloaderImports:
    """Test that downloader module imports correctly."""

    def test_imports(self):
        """Test module imports."""
        from src.downloader import HTTPDownloader
        from src.downloader import DownloadError, DownloadTimeoutError, DownloadSizeError
        from src.exceptions import StorageError

        assert HTTPDownloader is not None
        assert issubclass(DownloadError, StorageError)
        assert issubclass(DownloadTimeoutError, DownloadError)
        assert issubclass(DownloadSizeError, DownloadError)


class TestHTTPDownloaderInitialization:
    """Test downloader initialization."""

    def test_default_initialization(self):
        """Test downloader with default settings."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader()

        assert downloader.max_size_bytes == 500 * 1024 * 1024
        assert downloader.timeout_seconds == 120
        assert downloader.chunk_size == 1024 * 1024
        assert downloader.max_retries == 3

    def test_custom_initialization(self):
        """Test downloader with custom settings."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader(
            max_size_mb=50,
            timeout_seconds=30,
            chunk_size=4096,
            max_retries=5,
            user_agent="CustomAgent/1.0"
        )

        assert downloader.max_size_bytes == 50 * 1024 * 1024
        assert downloader.timeout_seconds == 30
        assert downloader.chunk_size == 4096
        assert downloader.max_retries == 5
        assert downloader.session.headers["User-Agent"] == "CustomAgent/1.0"

    def test_session_creation(self):
        """Test that session is created with retry adapter."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader(max_retries=4)

        assert isinstance(downloader.session, requests.Session)
        adapter = downloader.session.get_adapter("https://example.com")
        assert adapter.max_retries.total == 4
        assert 503 in adapter.max_retries.status_forcelist


class TestURLSchemeValidation:
    """Test URL scheme validation."""

    @pytest.mark.parametrize("url", [
        "http://example.com/audio.wav",
        "https://example.com/audio.wav",
    ])
    def test_http_schemes_allowed(self, url):
        """Test that HTTP and HTTPS are allowed."""
        from src.downloader import HTTPDownloader

        assert HTTPDownloader().validate_url_scheme(url) == url

    @pytest.mark.parametrize("url", [
        "file:///etc/passwd",
        "ftp://example.com/file.wav",
        "gs://bucket/file.wav",
        "master.wav",
    ])
    def test_other_schemes_blocked(self, url):
        """Test that other schemes are blocked."""
        from src.downloader import HTTPDownloader

        with pytest.raises(ValueError, match="Unsupported URL scheme"):
            HTTPDownloader().validate_url_scheme(url)

    def test_invalid_url_no_hostname(self):
        """Test that URLs without hostname are rejected."""
        from src.downloader import HTTPDownloader

        with pytest.raises(ValueError, match="no host"):
            HTTPDownloader().validate_url_scheme("http://")


class TestDownload:
    """Test streaming downloads."""

    def test_download_success(self, tmp_path):
        """Test chunks are written to the destination."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader()
        response = make_response([b"RIFF", b"", b"WAVE"], content_length=8)
        dest = tmp_path / "nested" / "master.wav"

        with patch.object(downloader.session, "get", return_value=response) as mock_get:
            result = downloader.download("https://example.com/master.wav", dest)

        assert result == dest
        assert dest.read_bytes() == b"RIFFWAVE"
        assert mock_get.call_args[1]["stream"] is True
        assert mock_get.call_args[1]["timeout"] == 120

    def test_progress_callback(self, tmp_path):
        """Test progress is reported per chunk."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader()
        response = make_response([b"aa", b"bbb"], content_length=5)
        progress = []

        with patch.object(downloader.session, "get", return_value=response):
            downloader.download(
                "https://example.com/a.wav",
                tmp_path / "a.wav",
                progress_callback=lambda done, total: progress.append((done, total)),
            )

        assert progress == [(2, 5), (5, 5)]


class TestFileSizeValidation:
    """Test file size validation."""

    def test_content_length_too_large(self, tmp_path):
        """Test an oversize Content-Length is rejected before streaming."""
        from src.downloader import HTTPDownloader, DownloadSizeError

        downloader = HTTPDownloader(max_size_mb=1)
        response = make_response([b"x"], content_length=2 * 1024 * 1024)
        dest = tmp_path / "big.wav"

        with patch.object(downloader.session, "get", return_value=response):
            with pytest.raises(DownloadSizeError, match="exceeds"):
                downloader.download("https://example.com/big.wav", dest)

        response.iter_content.assert_not_called()
        assert not dest.exists()

    def test_streamed_bytes_too_large(self, tmp_path):
        """Test the cap is enforced when Content-Length is missing."""
        from src.downloader import HTTPDownloader, DownloadSizeError

        downloader = HTTPDownloader(max_size_mb=1)
        chunk = b"x" * (600 * 1024)
        response = make_response([chunk, chunk])
        dest = tmp_path / "big.wav"

        with patch.object(downloader.session, "get", return_value=response):
            with pytest.raises(DownloadSizeError):
                downloader.download("https://example.com/big.wav", dest)

        assert not dest.exists()


class TestErrorHandling:
    """Test download errors."""

    def test_timeout(self, tmp_path):
        """Test timeouts raise DownloadTimeoutError."""
        from src.downloader import HTTPDownloader, DownloadTimeoutError

        downloader = HTTPDownloader()

        with patch.object(downloader.session, "get", side_effect=requests.Timeout("read timed out")):
            with pytest.raises(DownloadTimeoutError):
                downloader.download("https://example.com/slow.wav", tmp_path / "slow.wav")

    def test_http_error(self, tmp_path):
        """Test HTTP errors raise DownloadError and remove partial files."""
        from src.downloader import HTTPDownloader, DownloadError

        downloader = HTTPDownloader()
        response = make_response([], status_error=requests.HTTPError("404 Not Found"))
        dest = tmp_path / "missing.wav"
        dest.write_bytes(b"stale")

        with patch.object(downloader.session, "get", return_value=response):
            with pytest.raises(DownloadError, match="404"):
                downloader.download("https://example.com/missing.wav", dest)

        assert not dest.exists()

    def test_connection_error(self, tmp_path):
        """Test connection failures raise DownloadError."""
        from src.downloader import HTTPDownloader, DownloadError

        downloader = HTTPDownloader()

        with patch.object(downloader.session, "get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(DownloadError):
                downloader.download("https://example.com/a.wav", tmp_path / "a.wav")

    def test_context_manager_closes_session(self):
        """Test the session is closed on exit."""
        from src.downloader import HTTPDownloader

        downloader = HTTPDownloader()
        with patch.object(downloader.session, "close") as mock_close:
            with downloader:
                pass

        mock_close.assert_called_once()
