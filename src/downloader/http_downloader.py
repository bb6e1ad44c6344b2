"""
HTTP/HTTPS downloader for source audio.

Streams a URL to a local path with:
- Scheme validation (http/https only)
- A size cap enforced from Content-Length and while streaming
- Connection retries with backoff for 429/5xx responses
- Partial-file cleanup on any failure
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.exceptions import StorageError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


class DownloadError(StorageError):
    """Base exception for download errors."""
    pass


class DownloadTimeoutError(DownloadError):
    """Raised when a download times out."""
    pass


class DownloadSizeError(DownloadError):
    """Raised when a file exceeds the size limit."""
    pass


class HTTPDownloader:
    """HTTP/HTTPS file downloader with size limits and retries."""

    def __init__(
        self,
        max_size_mb: int = 500,
        timeout_seconds: int = 120,
        chunk_size: int = 1024 * 1024,
        max_retries: int = 3,
        user_agent: Optional[str] = None,
    ):
        """
        Args:
            max_size_mb: Maximum file size in megabytes
            timeout_seconds: Connect/read timeout in seconds
            chunk_size: Streaming chunk size in bytes
            max_retries: Retries for connection errors and 429/5xx
            user_agent: Custom User-Agent header
        """
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.user_agent = user_agent or "Release-Ready-Worker/0.1.0"
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,  # 1s, 2s, 4s
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "User-Agent": self.user_agent,
            "Accept": "audio/*,*/*",
        })
        return session

    def validate_url_scheme(self, url: str) -> str:
        """
        Raises:
            ValueError: If the URL is not http(s) or has no host
        """
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            raise ValueError(f"Unsupported URL scheme: {parsed.scheme or '(none)'}")
        if not parsed.netloc:
            raise ValueError(f"URL has no host: {url}")
        return url

    def _check_size(self, size: int) -> None:
        if size > self.max_size_bytes:
            raise DownloadSizeError(
                f"File size ({size / 1024 / 1024:.2f}MB) exceeds "
                f"maximum allowed size ({self.max_size_bytes / 1024 / 1024:.0f}MB)"
            )

    def download(
        self,
        url: str,
        destination: Path | str,
        headers: Optional[Dict[str, str]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> Path:
        """
        Download a URL to ``destination``.

        Args:
            url: http(s) URL
            destination: Local file path (parent directories are created)
            headers: Optional extra request headers
            progress_callback: Optional callback(bytes_downloaded, total_bytes)

        Returns:
            Path to the downloaded file

        Raises:
            ValueError: If the URL scheme is not allowed
            DownloadSizeError: If the file exceeds the size limit
            DownloadTimeoutError: If the download times out
            DownloadError: For any other HTTP failure
        """
        url = self.validate_url_scheme(url)
        dest_path = Path(destination)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Downloading from {url} to {dest_path}")

        try:
            with self.session.get(url, headers=headers, stream=True, timeout=self.timeout_seconds) as response:
                response.raise_for_status()

                total_size = int(response.headers.get("Content-Length") or 0)
                self._check_size(total_size)

                bytes_downloaded = 0
                with open(dest_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        self._check_size(bytes_downloaded)
                        if progress_callback:
                            progress_callback(bytes_downloaded, total_size)

        except requests.Timeout as e:
            dest_path.unlink(missing_ok=True)
            raise DownloadTimeoutError(f"Download timed out after {self.timeout_seconds}s: {e}") from e
        except requests.RequestException as e:
            dest_path.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {e}") from e
        except DownloadError:
            dest_path.unlink(missing_ok=True)
            raise

        logger.info(f"Download complete: {bytes_downloaded / 1024 / 1024:.2f}MB saved to {dest_path}")
        return dest_path

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
