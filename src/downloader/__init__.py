"""
HTTP/HTTPS source downloader for the export worker.
"""

from .http_downloader import (
    HTTPDownloader,
    DownloadError,
    DownloadTimeoutError,
    DownloadSizeError,
)

__all__ = [
    "HTTPDownloader",
    "DownloadError",
    "DownloadTimeoutError",
    "DownloadSizeError",
]
