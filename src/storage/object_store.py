"""
Object store facade used by the worker.

``download`` accepts gs:// URLs (Google Cloud Storage) and http(s):// URLs
(plain HTTP download). ``upload`` always writes to GCS and returns the
object's gs:// URL.

Export object keys are derived only from track id, export job id and
format, so a redelivered job overwrites its earlier uploads instead of
creating new objects.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from google.cloud.exceptions import GoogleCloudError, NotFound

from src.exceptions import StorageError
from src.downloader import HTTPDownloader
from .gcs_client import GCSClient, parse_gcs_url
from .retry import GCS_RETRY_CONFIG, RetryConfig, retry_operation

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "json": "application/json",
}


# ============================================================================
# Deterministic keys
# ============================================================================

def export_prefix(track_id: str, export_job_id: str) -> str:
    return f"exports/{track_id}/{export_job_id}"


def export_wav_key(track_id: str, export_job_id: str, bits: int) -> str:
    return f"{export_prefix(track_id, export_job_id)}/release-ready-{bits}bit.wav"


def export_mp3_key(track_id: str, export_job_id: str) -> str:
    return f"{export_prefix(track_id, export_job_id)}/release-ready.mp3"


def export_aac_key(track_id: str, export_job_id: str) -> str:
    return f"{export_prefix(track_id, export_job_id)}/release-ready.m4a"


def qc_report_key(track_id: str, export_job_id: str) -> str:
    return f"{export_prefix(track_id, export_job_id)}/qc-report.json"


def codec_preview_key(track_id: str, job_id: str, codec: str, extension: str) -> str:
    return f"previews/{track_id}/{job_id}/{codec}.{extension}"


# ============================================================================
# Object store
# ============================================================================

class ObjectStore(ABC):
    """Blocking download/upload interface to external object storage."""

    @abstractmethod
    def download(self, url: str, dest_path: Path) -> Path:
        """Fetch ``url`` into ``dest_path``. Raises StorageError on failure."""
        pass

    @abstractmethod
    def upload(self, path: Path, bucket: str, key: str, content_type: str) -> str:
        """Store ``path`` at bucket/key and return its URL. Raises StorageError."""
        pass


class CloudObjectStore(ObjectStore):
    """
    GCS + HTTP implementation of ObjectStore.

    Args:
        downloader: HTTPDownloader for http(s) sources
        client_factory: Builds a GCSClient for a bucket name
        retry_config: In-process retry for GCS calls
    """

    def __init__(
        self,
        downloader: Optional[HTTPDownloader] = None,
        client_factory: Optional[Callable[[str], GCSClient]] = None,
        retry_config: RetryConfig = GCS_RETRY_CONFIG,
    ):
        if downloader is None:
            from src.config import config
            downloader = HTTPDownloader(
                max_size_mb=config.download_max_size_mb,
                timeout_seconds=config.download_timeout_seconds,
            )
        self.downloader = downloader
        self.client_factory = client_factory or (lambda bucket: GCSClient(bucket_name=bucket))
        self.retry_config = retry_config
        self._clients: Dict[str, GCSClient] = {}

    def _client(self, bucket: str) -> GCSClient:
        if bucket not in self._clients:
            self._clients[bucket] = self.client_factory(bucket)
        return self._clients[bucket]

    def download(self, url: str, dest_path: Path) -> Path:
        scheme = urlparse(url).scheme.lower()

        if scheme == "gs":
            try:
                bucket, blob_name = parse_gcs_url(url)
            except ValueError as e:
                raise StorageError(str(e), details={"url": url}) from e
            client = self._client(bucket)
            try:
                return retry_operation(
                    lambda: client.download_file(blob_name, dest_path),
                    self.retry_config,
                    f"download {url}",
                )
            except NotFound as e:
                raise StorageError(f"Source object not found: {url}", details={"url": url}) from e
            except GoogleCloudError as e:
                raise StorageError(f"Failed to download {url}: {e}", details={"url": url}) from e

        if scheme in ("http", "https"):
            # DownloadError is already a StorageError
            try:
                return self.downloader.download(url, dest_path)
            except ValueError as e:
                raise StorageError(str(e), details={"url": url}) from e

        raise StorageError(f"Unsupported URL scheme: {scheme or '(none)'}", details={"url": url})

    def upload(self, path: Path, bucket: str, key: str, content_type: str) -> str:
        client = self._client(bucket)
        try:
            return retry_operation(
                lambda: client.upload_file(path, key, content_type=content_type),
                self.retry_config,
                f"upload gs://{bucket}/{key}",
            )
        except (GoogleCloudError, FileNotFoundError) as e:
            raise StorageError(
                f"Failed to upload {path} to gs://{bucket}/{key}: {e}",
                details={"bucket": bucket, "key": key},
            ) from e
