"""
Object storage for source masters and export deliverables.
"""

from .gcs_client import (
    GCSClient,
    parse_gcs_url,
)
from .object_store import (
    CONTENT_TYPES,
    CloudObjectStore,
    ObjectStore,
    codec_preview_key,
    export_aac_key,
    export_mp3_key,
    export_wav_key,
    qc_report_key,
)

__all__ = [
    "GCSClient",
    "parse_gcs_url",
    "CONTENT_TYPES",
    "CloudObjectStore",
    "ObjectStore",
    "codec_preview_key",
    "export_aac_key",
    "export_mp3_key",
    "export_wav_key",
    "qc_report_key",
]
