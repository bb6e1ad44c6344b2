"""
Job queues, the dead letter queue and the worker that processes export jobs.

Features:
- Redis-backed FIFO job queues with an in-memory equivalent for local runs
- Tagged queue messages for track exports and codec previews
- Track export pipeline built around the Release-Ready gate
- Dead letter queue with a fixed backoff schedule
"""

from .codec_preview import CodecPreviewProcessor
from .dlq import BACKOFF_SCHEDULE_SECONDS, DeadLetterQueue, backoff_seconds
from .export_worker import ExportProcessor, ExportResult, build_qc_report, serialize_qc_report
from .messages import CodecPreviewMessage, TrackExportMessage, decode_message, encode_message
from .queue import (
    CODEC_QUEUE,
    DSP_QUEUE,
    JobQueue,
    LocalJobQueue,
    RedisJobQueue,
    create_job_queue,
)
from .runner import (
    WorkerContext,
    build_worker_context,
    run_dlq_processor,
    run_forever,
    run_once,
)

__all__ = [
    "CodecPreviewProcessor",
    "BACKOFF_SCHEDULE_SECONDS",
    "DeadLetterQueue",
    "backoff_seconds",
    "ExportProcessor",
    "ExportResult",
    "build_qc_report",
    "serialize_qc_report",
    "CodecPreviewMessage",
    "TrackExportMessage",
    "decode_message",
    "encode_message",
    "CODEC_QUEUE",
    "DSP_QUEUE",
    "JobQueue",
    "LocalJobQueue",
    "RedisJobQueue",
    "create_job_queue",
    "WorkerContext",
    "build_worker_context",
    "run_dlq_processor",
    "run_forever",
    "run_once",
]
