"""
Codec preview job processing.

Encodes a master into each requested lossy format, decodes the preview
back to PCM and reports its true peak, an artifact score and a clipping
flag. Previews are uploaded under deterministic keys and the result list
is stored on the job-tracking record.
"""

import logging
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from src.audio.analyzer import measure_true_peak
from src.audio.quality import artifact_score, has_clipping_risk, read_audio
from src.audio.render import decode_to_wav, parse_codec, preview_extension, render_codec_preview
from src.exceptions import AudioProcessingError, ConfigurationError
from src.repositories import JobRepositoryInterface
from src.storage.object_store import CONTENT_TYPES, ObjectStore, codec_preview_key
from .export_worker import source_filename
from .messages import CodecPreviewMessage

logger = logging.getLogger(__name__)


class CodecPreviewProcessor:
    """
    Processes ``codec-preview`` messages.

    Args:
        object_store: Master download and preview upload
        job_repository: Job-tracking records
        output_bucket: Bucket receiving previews
        encoder: (input, output, codec_token) lossy encoder
        decoder: (input, output) decoder to PCM WAV
        measure_peak: True-peak measurement of a decoded file
        load_audio: Reads a WAV into a (frames, channels) array
        work_root: Parent directory for job workspaces (system temp if None)
    """

    message_type = "codec-preview"

    def __init__(
        self,
        object_store: ObjectStore,
        job_repository: JobRepositoryInterface,
        output_bucket: str,
        encoder: Callable[[Path, Path, str], None] = render_codec_preview,
        decoder: Callable[[Path, Path], None] = decode_to_wav,
        measure_peak: Callable[[Path], float] = measure_true_peak,
        load_audio: Callable[[Path], np.ndarray] = read_audio,
        work_root: Optional[Path] = None,
    ):
        self.object_store = object_store
        self.job_repository = job_repository
        self.output_bucket = output_bucket
        self.encoder = encoder
        self.decoder = decoder
        self.measure_peak = measure_peak
        self.load_audio = load_audio
        self.work_root = work_root

    def process(self, message: CodecPreviewMessage) -> List[Dict[str, Any]]:
        """
        Render, score and upload every requested preview.

        Returns:
            One result dict per codec token, in request order

        Raises:
            ConfigurationError: Unsupported codec token, raised before any I/O
            StorageError: Download or upload failure
            AudioProcessingError: Encode, decode or measurement failure
        """
        job_id = message.jobId
        for token in message.codecs:
            try:
                parse_codec(token)
            except AudioProcessingError as e:
                raise ConfigurationError(str(e), details={"codec": token}) from e

        logger.info(f"[{job_id}] Codec preview for track {message.trackId}: {', '.join(message.codecs)}")
        stage = "downloading"
        try:
            self.job_repository.mark_processing(job_id, "Codec preview started")

            with tempfile.TemporaryDirectory(prefix=f"codec-preview-{job_id}-", dir=self.work_root) as tmp:
                work = Path(tmp)
                master_path = work / source_filename(message.masterUrl)
                self.object_store.download(message.masterUrl, master_path)

                reference_path = work / "reference.wav"
                self.decoder(master_path, reference_path)
                reference = self.load_audio(reference_path)

                results = []
                total = len(message.codecs)
                for index, token in enumerate(message.codecs, start=1):
                    stage = f"codec {token}"
                    results.append(self._preview(message, token, master_path, work, reference))
                    self.job_repository.update_progress(
                        job_id,
                        10 + int(85 * index / total),
                        f"Rendered {index}/{total} previews",
                    )

                stage = "persisting"
                self.job_repository.mark_completed(job_id, None, {
                    "trackId": message.trackId,
                    "results": results,
                })
        except Exception:
            logger.error(f"[{job_id}] Codec preview failed during {stage}", exc_info=True)
            raise

        logger.info(f"[{job_id}] Codec preview completed ({len(results)} codecs)")
        return results

    def _preview(
        self,
        message: CodecPreviewMessage,
        token: str,
        master_path: Path,
        work: Path,
        reference: np.ndarray,
    ) -> Dict[str, Any]:
        extension = preview_extension(token)
        preview_path = work / f"{token}.{extension}"
        decoded_path = work / f"{token}-decoded.wav"

        self.encoder(master_path, preview_path, token)
        self.decoder(preview_path, decoded_path)
        true_peak = self.measure_peak(decoded_path)
        score = artifact_score(reference, self.load_audio(decoded_path))

        url = self.object_store.upload(
            preview_path,
            self.output_bucket,
            codec_preview_key(message.trackId, message.jobId, token, extension),
            CONTENT_TYPES[extension],
        )
        logger.info(
            f"[{message.jobId}] {token}: true peak {true_peak:.2f} dBTP, artifact score {score:.1f}"
        )
        return {
            "codec": token,
            "url": url,
            "truePeakDbfs": round(true_peak, 2),
            "artifactScore": round(score, 1),
            "clippingRisk": has_clipping_risk(true_peak),
        }

    def record_failure(self, message: CodecPreviewMessage, error: str) -> None:
        """Mark the job-tracking record failed"""
        self.job_repository.mark_failed(message.jobId, error)

    def record_rejection(self, fields: Dict[str, Any], error: str) -> None:
        if fields.get("jobId"):
            self.job_repository.mark_failed(str(fields["jobId"]), error)
