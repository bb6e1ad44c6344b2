"""
In-memory fakes shared by the test suite.

Repositories implement the repository interfaces over dicts, the object
store keeps uploads in memory and ScriptedAudio stands in for ffmpeg.
"""

import json
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytz

from src.audio.analyzer import LoudnessMetrics
from src.audio.render import parse_bit_depth
from src.exceptions import ResourceNotFoundError, StorageError
from src.models import ExportStatus, FailedJobStatus, JobStatus
from src.repositories import (
    ExportJobRepositoryInterface,
    FailedJobRepositoryInterface,
    JobRepositoryInterface,
)
from src.storage.object_store import ObjectStore

SOURCE_URL = "gs://test-masters/tracks/track-1/master.wav"
SOURCE_BYTES = b"RIFF....WAVEfmt fake master audio"

# ============================================================================
# Clock
# ============================================================================

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 5, 1, 12, 0, 0, tzinfo=pytz.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ============================================================================
# Repositories
# ============================================================================

EXPORT_OUTPUT_FIELDS = (
    'input_sha256',
    'output_wav_url',
    'output_mp3_url',
    'output_aac_url',
    'qc_report_url',
    'final_gain_db',
    'final_true_peak_dbfs',
    'final_integrated_lufs',
    'final_lra',
    'release_ready_passes',
    'attempts',
)


class InMemoryExportJobRepository(ExportJobRepositoryInterface):
    """In-memory export_jobs table."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    def create(self, export_job_id: str, **fields) -> Dict[str, Any]:
        record = {'id': export_job_id, 'status': ExportStatus.QUEUED.value, 'error_message': None}
        record.update({f: None for f in EXPORT_OUTPUT_FIELDS})
        record.update(fields)
        self.records[export_job_id] = record
        return record

    def _require(self, export_job_id: str) -> Dict[str, Any]:
        if export_job_id not in self.records:
            raise ResourceNotFoundError(f"Export job not found: {export_job_id}")
        return self.records[export_job_id]

    def get(self, export_job_id: str) -> Optional[Dict[str, Any]]:
        return self.records.get(export_job_id)

    def mark_processing(self, export_job_id: str) -> Dict[str, Any]:
        record = self._require(export_job_id)
        record.update({f: None for f in EXPORT_OUTPUT_FIELDS})
        record.update(status=ExportStatus.PROCESSING.value, error_message=None)
        return record

    def mark_succeeded(self, export_job_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
        record = self._require(export_job_id)
        record.update({f: result[f] for f in EXPORT_OUTPUT_FIELDS})
        record.update(status=ExportStatus.SUCCEEDED.value, error_message=None)
        return record

    def mark_failed(self, export_job_id: str, error_message: str) -> Dict[str, Any]:
        record = self._require(export_job_id)
        record.update({f: None for f in EXPORT_OUTPUT_FIELDS})
        record.update(status=ExportStatus.FAILED.value, error_message=error_message)
        return record


class InMemoryJobRepository(JobRepositoryInterface):
    """In-memory jobs table; records are created on first touch."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.progress_history: Dict[str, List[int]] = {}

    def _record(self, job_id: str) -> Dict[str, Any]:
        return self.records.setdefault(job_id, {
            'id': job_id,
            'status': JobStatus.QUEUED.value,
            'progress': 0,
            'message': None,
            'result_url': None,
            'result': None,
            'error': None,
        })

    def mark_processing(self, job_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        record = self._record(job_id)
        record.update(status=JobStatus.PROCESSING.value, message=message, error=None)
        return record

    def update_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> Dict[str, Any]:
        record = self._record(job_id)
        record.update(progress=progress, message=message)
        self.progress_history.setdefault(job_id, []).append(progress)
        return record

    def mark_completed(
        self,
        job_id: str,
        result_url: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record = self._record(job_id)
        record.update(
            status=JobStatus.COMPLETED.value,
            progress=100,
            result_url=result_url,
            result=result,
            error=None,
        )
        return record

    def mark_failed(self, job_id: str, error: str) -> Dict[str, Any]:
        record = self._record(job_id)
        record.update(status=JobStatus.FAILED.value, error=error)
        return record


class InMemoryFailedJobRepository(FailedJobRepositoryInterface):
    """In-memory failed_jobs table."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self._sequence = 0

    def insert(
        self,
        original_job_id: str,
        queue: str,
        payload: Any,
        error: str,
        attempts: int,
        max_attempts: int,
        status: str,
        next_retry_at: Optional[datetime],
        now: datetime,
    ) -> Dict[str, Any]:
        self._sequence += 1
        record = {
            'id': str(uuid.uuid4()),
            'original_job_id': original_job_id,
            'queue': queue,
            'payload': payload,
            'error': error,
            'attempts': attempts,
            'max_attempts': max_attempts,
            'status': status,
            'next_retry_at': next_retry_at,
            'created_at': now,
            'updated_at': now,
            '_seq': self._sequence,
        }
        self.records[record['id']] = record
        return dict(record)

    def get(self, failed_job_id: str) -> Optional[Dict[str, Any]]:
        record = self.records.get(failed_job_id)
        return dict(record) if record else None

    def find_latest(self, original_job_id: str, queue: str) -> Optional[Dict[str, Any]]:
        matches = [
            r for r in self.records.values()
            if r['original_job_id'] == original_job_id and r['queue'] == queue
        ]
        if not matches:
            return None
        return dict(max(matches, key=lambda r: (r['created_at'], r['_seq'])))

    def update(self, failed_job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if failed_job_id not in self.records:
            raise ResourceNotFoundError(f"Failed job not found: {failed_job_id}")
        self.records[failed_job_id].update(fields)
        return dict(self.records[failed_job_id])

    def list_due(self, now: datetime, limit: int) -> List[Dict[str, Any]]:
        due = [
            r for r in self.records.values()
            if r['status'] == FailedJobStatus.PENDING.value
            and r['next_retry_at'] is not None
            and r['next_retry_at'] <= now
        ]
        due.sort(key=lambda r: (r['next_retry_at'], r['_seq']))
        return [dict(r) for r in due[:limit]]

    def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.records.values():
            counts[r['status']] = counts.get(r['status'], 0) + 1
        return counts

    def count_active_by_queue(self) -> Dict[str, int]:
        active = (FailedJobStatus.PENDING.value, FailedJobStatus.RETRYING.value)
        counts: Dict[str, int] = {}
        for r in self.records.values():
            if r['status'] in active:
                counts[r['queue']] = counts.get(r['queue'], 0) + 1
        return counts

    def list(
        self,
        status: Optional[str] = None,
        queue: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        matches = [
            r for r in self.records.values()
            if (status is None or r['status'] == status)
            and (queue is None or r['queue'] == queue)
        ]
        matches.sort(key=lambda r: (r['created_at'], r['_seq']), reverse=True)
        return {
            'jobs': [dict(r) for r in matches[offset:offset + limit]],
            'total': len(matches),
        }

    def delete_before(self, cutoff: datetime, statuses: Iterable[str]) -> int:
        statuses = set(statuses)
        doomed = [
            r['id'] for r in self.records.values()
            if r['status'] in statuses and r['updated_at'] < cutoff
        ]
        for failed_job_id in doomed:
            del self.records[failed_job_id]
        return len(doomed)

# ============================================================================
# Object store
# ============================================================================

class FakeObjectStore(ObjectStore):
    """Object store backed by dicts of URL -> bytes."""

    def __init__(self, sources: Optional[Dict[str, bytes]] = None):
        self.sources = dict(sources or {})
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.upload_count = 0
        self.download_paths: List[Path] = []

    def download(self, url: str, dest_path: Path) -> Path:
        if url not in self.sources:
            raise StorageError(f"Source object not found: {url}", details={"url": url})
        dest_path = Path(dest_path)
        dest_path.write_bytes(self.sources[url])
        self.download_paths.append(dest_path)
        return dest_path

    def upload(self, path: Path, bucket: str, key: str, content_type: str) -> str:
        url = f"gs://{bucket}/{key}"
        self.objects[url] = Path(path).read_bytes()
        self.content_types[url] = content_type
        self.upload_count += 1
        return url



# ============================================================================
# Scripted audio tools
# ============================================================================

def make_metrics(
    true_peak_dbfs: float,
    integrated_lufs: float = -9.5,
    lra: float = 6.2,
) -> LoudnessMetrics:
    return LoudnessMetrics(
        integrated_lufs=integrated_lufs,
        lra=lra,
        true_peak_dbfs=true_peak_dbfs,
        short_term_max=integrated_lufs + 2.0,
        momentary_max=integrated_lufs + 4.0,
    )


class ScriptedAudio:
    """
    Render/measure pair standing in for ffmpeg.

    ``render`` writes a small JSON file recording the applied gain, bit depth
    and sample rate; ``measure`` reads it back and reports a true peak of
    ``peak_for_gain(gain)`` (source peak plus gain by default).
    """

    def __init__(
        self,
        source_peak_dbfs: float = -0.3,
        integrated_lufs: float = -9.5,
        peak_for_gain: Optional[Callable[[float], float]] = None,
    ):
        self.source_peak_dbfs = source_peak_dbfs
        self.integrated_lufs = integrated_lufs
        self.peak_for_gain = peak_for_gain or (lambda gain: self.source_peak_dbfs + gain)
        self.renders: List[Dict[str, Any]] = []
        self.measured: List[Path] = []
        self.encoded: List[Dict[str, Any]] = []

    @staticmethod
    def _gain(filter_graph: Optional[str]) -> float:
        if not filter_graph:
            return 0.0
        return float(filter_graph[len("volume="):-len("dB")])

    def render(self, input_path, output_path, bit_depth, sample_rate, filter_graph=None):
        entry = {
            'input': Path(input_path),
            'output': Path(output_path),
            'bitDepth': parse_bit_depth(bit_depth).value,
            'sampleRate': sample_rate,
            'gain': self._gain(filter_graph),
        }
        self.renders.append(entry)
        Path(output_path).write_text(json.dumps({
            'gain': entry['gain'],
            'bitDepth': entry['bitDepth'],
            'sampleRate': sample_rate,
        }))

    def measure(self, path) -> LoudnessMetrics:
        self.measured.append(Path(path))
        rendered = json.loads(Path(path).read_text())
        gain = rendered['gain']
        return make_metrics(
            self.peak_for_gain(gain),
            integrated_lufs=self.integrated_lufs + gain,
        )

    def encoder(self, fmt: str) -> Callable[..., None]:
        def encode(input_path, output_path, sample_rate):
            self.encoded.append({
                'format': fmt,
                'input': Path(input_path),
                'output': Path(output_path),
                'sampleRate': sample_rate,
            })
            Path(output_path).write_bytes(f"{fmt} from {Path(input_path).name}".encode())
        return encode

