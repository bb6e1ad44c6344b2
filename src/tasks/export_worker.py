"""
Track export job processing.

Runs one ``track-export`` message through the pipeline:

    received -> downloading -> gating -> rendering -> uploading -> persisting

Everything happens inside a job-scoped temporary directory that is removed
on every exit path. A stage failure is logged with the job id and
propagates unchanged; the caller records the failure and hands the message
to the dead letter queue. Nothing here retries.

Object keys depend only on track id, export job id and format, so a
redelivered message overwrites the uploads of an earlier attempt.
"""

import hashlib
import json
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from src.audio.analyzer import measure_ebur128
from src.audio.release_ready import (
    DEFAULT_MAX_ATTEMPTS,
    MeasureFn,
    ReleaseReadyResult,
    RenderFn,
    make_release_ready,
    validate_ceiling,
)
from src.audio.render import (
    AAC_BITRATE_KBPS,
    MP3_BITRATE_KBPS,
    bits_per_sample,
    parse_bit_depth,
    render_aac,
    render_mp3,
    render_wav,
    validate_sample_rate,
)
from src.repositories import ExportJobRepositoryInterface, JobRepositoryInterface
from src.storage.object_store import (
    CONTENT_TYPES,
    ObjectStore,
    export_aac_key,
    export_mp3_key,
    export_wav_key,
    qc_report_key,
)
from .dlq import utc_now
from .messages import TrackExportMessage

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024
REPORT_DECIMALS = 2

# Job-tracking progress written on entry to each stage
STAGE_PROGRESS = {
    "downloading": 10,
    "gating": 30,
    "rendering": 60,
    "uploading": 80,
    "persisting": 95,
}


@dataclass
class ExportResult:
    """Outcome of a processed export job"""
    job_id: str
    export_job_id: str
    release_ready_passes: bool
    output_wav_url: str
    qc_report_url: str
    output_mp3_url: Optional[str] = None
    output_aac_url: Optional[str] = None
    qc_report: Dict[str, Any] = field(default_factory=dict)


def sha256_file(file_path: Path) -> str:
    """SHA-256 hex digest of a file, read in chunks"""
    hash_sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            hash_sha256.update(chunk)
    return hash_sha256.hexdigest()


def source_filename(url: str) -> str:
    suffix = Path(urlparse(url).path).suffix
    return f"source{suffix}" if suffix else "source"


def build_qc_report(
    input_sha256: str,
    gate: ReleaseReadyResult,
    true_peak_ceiling_db: float,
    outputs: Dict[str, Dict[str, Any]],
    processed_at: datetime,
) -> Dict[str, Any]:
    """
    Assemble the QC report document with unrounded values.

    ``outputs`` holds the ``wav`` entry and, when rendered, ``mp3`` / ``aac``.
    """
    return {
        "inputSha256": input_sha256,
        "releaseReadyPasses": gate.passes,
        "finalGainDb": gate.final_gain_db,
        "truePeakCeilingDb": true_peak_ceiling_db,
        "metrics": gate.final_metrics.to_dict(),
        "attempts": [attempt.to_dict() for attempt in gate.attempts],
        "outputs": outputs,
        "processedAt": processed_at.isoformat(),
    }


def _round_floats(value: Any, decimals: int) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return round(value, decimals)
    if isinstance(value, dict):
        return {k: _round_floats(v, decimals) for k, v in value.items()}
    if isinstance(value, list):
        return [_round_floats(v, decimals) for v in value]
    return value


def serialize_qc_report(report: Dict[str, Any], decimals: int = REPORT_DECIMALS) -> str:
    """JSON text of a QC report; floats are rounded here and nowhere earlier"""
    return json.dumps(_round_floats(report, decimals), indent=2)


class ExportProcessor:
    """
    Processes ``track-export`` messages.

    Args:
        object_store: Source download and deliverable upload
        export_repository: ExportJob records
        job_repository: Job-tracking records
        output_bucket: Bucket receiving deliverables and QC reports
        measure: Loudness measurement used by the gate
        render: WAV renderer used by the gate
        mp3_renderer: MP3 encoder (input, output, sample_rate)
        aac_renderer: AAC encoder (input, output, sample_rate)
        work_root: Parent directory for job workspaces (system temp if None)
        clock: Returns the current aware datetime
        max_gate_attempts: Gate iteration bound
    """

    message_type = "track-export"

    def __init__(
        self,
        object_store: ObjectStore,
        export_repository: ExportJobRepositoryInterface,
        job_repository: JobRepositoryInterface,
        output_bucket: str,
        measure: MeasureFn = measure_ebur128,
        render: RenderFn = render_wav,
        mp3_renderer: Callable[..., None] = render_mp3,
        aac_renderer: Callable[..., None] = render_aac,
        work_root: Optional[Path] = None,
        clock: Callable[[], datetime] = utc_now,
        max_gate_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.object_store = object_store
        self.export_repository = export_repository
        self.job_repository = job_repository
        self.output_bucket = output_bucket
        self.measure = measure
        self.render = render
        self.mp3_renderer = mp3_renderer
        self.aac_renderer = aac_renderer
        self.work_root = work_root
        self.clock = clock
        self.max_gate_attempts = max_gate_attempts

    def _enter_stage(self, job_id: str, stage: str, message: str) -> None:
        logger.info(f"[{job_id}] {stage}: {message}")
        self.job_repository.update_progress(job_id, STAGE_PROGRESS[stage], message)

    def _upload(self, path: Path, key: str, extension: str) -> str:
        return self.object_store.upload(path, self.output_bucket, key, CONTENT_TYPES[extension])

    def process(self, message: TrackExportMessage) -> ExportResult:
        """
        Run the full export pipeline for one message.

        Returns:
            ExportResult with the uploaded URLs and the QC report

        Raises:
            ConfigurationError: Invalid bit depth, sample rate or ceiling,
                raised before any I/O
            StorageError: Download or upload failure
            AudioProcessingError: Tool failure, timeout or unparseable metrics
            DatabaseOperationError: Persistence failure
        """
        job_id = message.jobId
        export_job_id = message.exportJobId

        depth = parse_bit_depth(message.bitDepth)
        sample_rate = validate_sample_rate(message.sampleRate)
        ceiling = validate_ceiling(message.truePeakCeilingDb)
        bits = bits_per_sample(depth)

        stage = "received"
        logger.info(
            f"[{job_id}] Export {export_job_id} received for track {message.trackId} "
            f"({depth.value}-bit, {sample_rate} Hz, ceiling {ceiling} dBTP)"
        )

        try:
            self.export_repository.mark_processing(export_job_id)
            self.job_repository.mark_processing(job_id, "Export started")

            with tempfile.TemporaryDirectory(prefix=f"export-{job_id}-", dir=self.work_root) as tmp:
                work = Path(tmp)

                stage = "downloading"
                self._enter_stage(job_id, stage, "Downloading source audio")
                source_path = work / source_filename(message.sourceUrl)
                self.object_store.download(message.sourceUrl, source_path)
                input_sha256 = sha256_file(source_path)
                logger.info(f"[{job_id}] Source downloaded (sha256={input_sha256})")

                stage = "gating"
                self._enter_stage(job_id, stage, "Running Release-Ready gate")
                gate = make_release_ready(
                    source_path,
                    work / "release-ready.wav",
                    depth,
                    sample_rate,
                    true_peak_ceiling_db=ceiling,
                    max_attempts=self.max_gate_attempts,
                    work_dir=work,
                    measure=self.measure,
                    render=self.render,
                    job_id=job_id,
                )

                stage = "rendering"
                self._enter_stage(job_id, stage, "Rendering optional formats")
                mp3_path = aac_path = None
                if message.includeMp3:
                    mp3_path = work / "release-ready.mp3"
                    self.mp3_renderer(gate.output_path, mp3_path, sample_rate)
                if message.includeAac:
                    aac_path = work / "release-ready.m4a"
                    self.aac_renderer(gate.output_path, aac_path, sample_rate)

                stage = "uploading"
                self._enter_stage(job_id, stage, "Uploading deliverables")
                track_id = message.trackId
                wav_url = self._upload(gate.output_path, export_wav_key(track_id, export_job_id, bits), "wav")
                outputs: Dict[str, Dict[str, Any]] = {
                    "wav": {"url": wav_url, "bitDepth": depth.value, "sampleRate": sample_rate},
                }
                mp3_url = aac_url = None
                if mp3_path is not None:
                    mp3_url = self._upload(mp3_path, export_mp3_key(track_id, export_job_id), "mp3")
                    outputs["mp3"] = {"url": mp3_url, "bitrate": MP3_BITRATE_KBPS}
                if aac_path is not None:
                    aac_url = self._upload(aac_path, export_aac_key(track_id, export_job_id), "m4a")
                    outputs["aac"] = {"url": aac_url, "bitrate": AAC_BITRATE_KBPS}

                report = build_qc_report(input_sha256, gate, ceiling, outputs, self.clock())
                report_path = work / "qc-report.json"
                report_path.write_text(serialize_qc_report(report), encoding="utf-8")
                qc_url = self._upload(report_path, qc_report_key(track_id, export_job_id), "json")

                stage = "persisting"
                self._enter_stage(job_id, stage, "Recording results")
                metrics = gate.final_metrics
                self.export_repository.mark_succeeded(export_job_id, {
                    "input_sha256": input_sha256,
                    "output_wav_url": wav_url,
                    "output_mp3_url": mp3_url,
                    "output_aac_url": aac_url,
                    "qc_report_url": qc_url,
                    "final_gain_db": gate.final_gain_db,
                    "final_true_peak_dbfs": metrics.true_peak_dbfs,
                    "final_integrated_lufs": metrics.integrated_lufs,
                    "final_lra": metrics.lra,
                    "release_ready_passes": gate.passes,
                    "attempts": gate.attempts_used,
                })
                self.job_repository.mark_completed(job_id, qc_url, {
                    "exportJobId": export_job_id,
                    "releaseReadyPasses": gate.passes,
                    "outputs": {name: entry["url"] for name, entry in outputs.items()},
                })
        except Exception:
            logger.error(f"[{job_id}] Export {export_job_id} failed during {stage}", exc_info=True)
            raise

        logger.info(
            f"[{job_id}] Export {export_job_id} succeeded "
            f"(passes={gate.passes}, attempts={gate.attempts_used})"
        )
        return ExportResult(
            job_id=job_id,
            export_job_id=export_job_id,
            release_ready_passes=gate.passes,
            output_wav_url=wav_url,
            qc_report_url=qc_url,
            output_mp3_url=mp3_url,
            output_aac_url=aac_url,
            qc_report=report,
        )

    def record_failure(self, message: TrackExportMessage, error: str) -> None:
        """Mark the export and its job-tracking record failed"""
        self.export_repository.mark_failed(message.exportJobId, error)
        self.job_repository.mark_failed(message.jobId, error)

    def record_rejection(self, fields: Dict[str, Any], error: str) -> None:
        """
        Mark the records named by a message that failed validation.

        Only the ids are read from ``fields``; either may be missing.
        """
        if fields.get("exportJobId"):
            self.export_repository.mark_failed(str(fields["exportJobId"]), error)
        if fields.get("jobId"):
            self.job_repository.mark_failed(str(fields["jobId"]), error)
