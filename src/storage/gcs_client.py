"""
Google Cloud Storage client for source masters and export deliverables.

Provides:
- File upload with content type and custom metadata
- File download to a local path
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from google.cloud import storage
from google.cloud.exceptions import GoogleCloudError, NotFound

from src.config import config as app_config

logger = logging.getLogger(__name__)


def parse_gcs_url(url: str) -> Tuple[str, str]:
    """
    Split a gs:// URL into (bucket, blob name).

    Raises:
        ValueError: If the URL is not a gs:// URL with a bucket and object
    """
    if not url.startswith("gs://"):
        raise ValueError(f"Not a gs:// URL: {url}")
    bucket, _, blob_name = url[len("gs://"):].partition("/")
    if not bucket or not blob_name:
        raise ValueError(f"gs:// URL must include bucket and object: {url}")
    return bucket, blob_name


class GCSClient:
    """Client for one Google Cloud Storage bucket."""

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        project_id: Optional[str] = None,
        credentials_path: Optional[str] = None,
        client: Optional[storage.Client] = None,
    ):
        """
        Args:
            bucket_name: Bucket name (defaults to config.gcs_bucket_name)
            project_id: GCP project id (defaults to config.gcs_project_id)
            credentials_path: Service account key (defaults to config/ADC)
            client: Pre-built storage.Client, shared across buckets
        """
        self.bucket_name = bucket_name or app_config.gcs_bucket_name
        self.project_id = project_id or app_config.gcs_project_id
        self.credentials_path = credentials_path or app_config.gcs_credentials_path

        if not self.bucket_name:
            raise ValueError("Bucket name must be provided via parameter or GCS_BUCKET_NAME")

        if self.credentials_path and os.path.exists(self.credentials_path):
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = self.credentials_path
            logger.info(f"Using credentials from: {self.credentials_path}")
        elif self.credentials_path:
            logger.warning(f"Credentials path provided but file not found: {self.credentials_path}")

        self._client: Optional[storage.Client] = client
        self._bucket: Optional[storage.Bucket] = None

        logger.info(f"Initialized GCS client for bucket: {self.bucket_name}")

    @property
    def client(self) -> storage.Client:
        """Get or create storage client."""
        if self._client is None:
            self._client = storage.Client(project=self.project_id)
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        """Get or create bucket reference."""
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def upload_file(
        self,
        source_path: Path | str,
        destination_blob_name: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Upload a file, overwriting any existing object with the same name.

        Args:
            source_path: Local file path to upload
            destination_blob_name: Destination path in the bucket
            content_type: MIME type of the file
            metadata: Custom metadata key-value pairs

        Returns:
            gs:// URL of the uploaded object

        Raises:
            FileNotFoundError: If source file doesn't exist
            GoogleCloudError: If upload fails
        """
        source_path = Path(source_path)
        if not source_path.exists():
            raise FileNotFoundError(f"Source file not found: {source_path}")

        blob = self.bucket.blob(destination_blob_name)
        if metadata:
            blob.metadata = metadata

        try:
            blob.upload_from_filename(str(source_path), content_type=content_type)
        except GoogleCloudError as e:
            logger.error(f"Failed to upload file {source_path}: {e}")
            raise

        url = f"gs://{self.bucket_name}/{destination_blob_name}"
        logger.info(f"Uploaded file: {source_path} -> {url}")
        return url

    def download_file(self, blob_name: str, destination_path: Path | str) -> Path:
        """
        Download an object to a local file.

        Raises:
            NotFound: If the object doesn't exist
            GoogleCloudError: If download fails
        """
        destination_path = Path(destination_path)
        destination_path.parent.mkdir(parents=True, exist_ok=True)

        blob = self.bucket.blob(blob_name)
        try:
            blob.download_to_filename(str(destination_path))
        except NotFound:
            logger.error(f"Object not found: gs://{self.bucket_name}/{blob_name}")
            raise
        except GoogleCloudError as e:
            logger.error(f"Failed to download gs://{self.bucket_name}/{blob_name}: {e}")
            raise

        logger.info(f"Downloaded gs://{self.bucket_name}/{blob_name} -> {destination_path}")
        return destination_path
