"""
Worker polling loop and dead letter queue processor.

Each worker process builds one WorkerContext at start-up and passes it to
the loop. The loop polls every configured queue in turn, runs at most one
job at a time to completion and idles briefly when all queues are empty.

A job that fails is handled as a unit: its records are marked failed and
the raw message is captured by the dead letter queue.
"""

import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.audio.ffmpeg import check_ffmpeg
from src.exceptions import (
    ConfigurationError,
    QueueUnavailableError,
    ValidationError,
    get_error_code,
)
from src.repositories import (
    ExportJobRepositoryInterface,
    FailedJobRepositoryInterface,
    JobRepositoryInterface,
    PostgresExportJobRepository,
    PostgresFailedJobRepository,
    PostgresJobRepository,
)
from src.storage.object_store import CloudObjectStore, ObjectStore
from .codec_preview import CodecPreviewProcessor
from .dlq import DeadLetterQueue
from .export_worker import ExportProcessor
from .messages import decode_message, message_job_id, parse_payload
from .queue import CODEC_QUEUE, DSP_QUEUE, JobQueue, create_job_queue

logger = logging.getLogger(__name__)

# Failures that retrying cannot fix
NON_RETRYABLE_ERRORS = (ConfigurationError, ValidationError)


@dataclass
class WorkerContext:
    """Everything the polling loop needs, built once per process"""
    queue: JobQueue
    dlq: DeadLetterQueue
    processors: Dict[str, Any]
    queue_names: List[str] = field(default_factory=lambda: [DSP_QUEUE, CODEC_QUEUE])
    dequeue_timeout: int = 5
    idle_poll_interval: float = 1.0
    error_backoff: float = 5.0
    dlq_interval: float = 60.0
    object_store: Optional[ObjectStore] = None
    export_repository: Optional[ExportJobRepositoryInterface] = None
    job_repository: Optional[JobRepositoryInterface] = None
    failed_job_repository: Optional[FailedJobRepositoryInterface] = None
    settings: Any = None


def build_worker_context(settings=None) -> WorkerContext:
    """
    Wire the production collaborators from configuration.

    Raises:
        ConfigurationError: If no output bucket is configured
    """
    if settings is None:
        from src.config import config as settings

    output_bucket = settings.resolved_output_bucket
    if not output_bucket:
        raise ConfigurationError("No output bucket configured (OUTPUT_BUCKET_NAME or GCS_BUCKET_NAME)")

    queue = create_job_queue(settings)
    export_repository = PostgresExportJobRepository()
    job_repository = PostgresJobRepository()
    failed_job_repository = PostgresFailedJobRepository()
    object_store = CloudObjectStore()

    dlq = DeadLetterQueue(
        failed_job_repository,
        queue,
        max_attempts=settings.dlq_max_attempts,
        batch_size=settings.dlq_batch_size,
    )
    processors = {
        ExportProcessor.message_type: ExportProcessor(
            object_store,
            export_repository,
            job_repository,
            output_bucket,
            max_gate_attempts=settings.gate_max_attempts,
        ),
        CodecPreviewProcessor.message_type: CodecPreviewProcessor(
            object_store,
            job_repository,
            output_bucket,
        ),
    }

    return WorkerContext(
        queue=queue,
        dlq=dlq,
        processors=processors,
        queue_names=settings.export_queues_list,
        dequeue_timeout=settings.dequeue_timeout_seconds,
        idle_poll_interval=settings.idle_poll_interval_seconds,
        error_backoff=settings.error_backoff_seconds,
        dlq_interval=settings.dlq_interval_seconds,
        object_store=object_store,
        export_repository=export_repository,
        job_repository=job_repository,
        failed_job_repository=failed_job_repository,
        settings=settings,
    )


def require_audio_tools() -> None:
    """Refuse to run jobs without ffmpeg"""
    if not check_ffmpeg():
        raise ConfigurationError("ffmpeg is not available; install it or set FFMPEG_BINARY")


def _capture(
    context: WorkerContext,
    queue_name: str,
    job_id: str,
    raw: str,
    error_text: str,
    retryable: bool,
) -> None:
    """
    Hand a failed message to the dead letter queue.

    If the capture itself fails the raw message goes back on its queue, so
    it is never dropped after being dequeued.
    """
    try:
        context.dlq.move_to_dead_letter_queue(
            job_id,
            queue_name,
            raw,
            error_text,
            retryable=retryable,
        )
    except Exception:
        logger.error(
            f"[{job_id}] DLQ capture failed, returning message to {queue_name}: {raw}",
            exc_info=True,
        )
        context.queue.enqueue(queue_name, raw)
        raise


def _handle_failure(
    context: WorkerContext,
    queue_name: str,
    processor: Any,
    message: Any,
    raw: str,
    error: Exception,
) -> None:
    """Mark the job failed and capture it in the dead letter queue"""
    error_text = f"{get_error_code(error)}: {error}"
    retryable = not isinstance(error, NON_RETRYABLE_ERRORS)

    try:
        processor.record_failure(message, error_text)
    except Exception:
        # The DLQ capture below must still happen
        logger.error(f"[{message.jobId}] Failed to record job failure", exc_info=True)

    _capture(context, queue_name, message.jobId, raw, error_text, retryable)


def _invalid_fields(error: ValidationError) -> List[str]:
    fields = []
    for entry in error.details.get("errors", []):
        loc = entry.get("loc") or []
        if loc:
            fields.append(str(loc[-1]))
    return fields


def _handle_rejected(context: WorkerContext, queue_name: str, raw: str, error: ValidationError) -> None:
    """
    Fail a message that did not decode.

    A message of a known type with invalid settings is a configuration
    error: the records it names are marked failed before the capture.
    Anything else is captured as a validation error.
    """
    job_id = message_job_id(raw)
    fields = parse_payload(raw) or {}
    message_type = fields.get("type")
    processor = context.processors.get(message_type) if isinstance(message_type, str) else None

    if processor is None:
        logger.error(f"[{job_id}] Undecodable message on {queue_name}: {error}")
        _capture(context, queue_name, job_id, raw, f"{get_error_code(error)}: {error}", retryable=False)
        return

    rejection = ConfigurationError(
        f"Rejected {message_type} message, invalid fields: {', '.join(_invalid_fields(error)) or 'unknown'}",
        details=error.details,
    )
    error_text = f"{get_error_code(rejection)}: {rejection}"
    logger.error(f"[{job_id}] {rejection}")

    try:
        processor.record_rejection(fields, error_text)
    except Exception:
        logger.error(f"[{job_id}] Failed to record job failure", exc_info=True)

    _capture(context, queue_name, job_id, raw, error_text, retryable=False)


def run_once(context: WorkerContext, queue_name: str) -> bool:
    """
    Dequeue and handle at most one message.

    Returns:
        True if a message was taken off the queue, False on timeout

    Raises:
        QueueUnavailableError: If the queue backend cannot be reached
    """
    raw = context.queue.dequeue(queue_name, context.dequeue_timeout)
    if raw is None:
        return False

    try:
        message = decode_message(raw)
    except ValidationError as e:
        _handle_rejected(context, queue_name, raw, e)
        return True

    processor = context.processors.get(message.type)
    if processor is None:
        logger.error(f"[{message.jobId}] No processor registered for {message.type}")
        _capture(
            context,
            queue_name,
            message.jobId,
            raw,
            f"CONFIGURATION_ERROR: no processor for message type {message.type}",
            retryable=False,
        )
        return True

    try:
        processor.process(message)
    except Exception as e:
        _handle_failure(context, queue_name, processor, message, raw, e)
    return True


def run_forever(context: WorkerContext, stop_event: threading.Event) -> None:
    """Poll until ``stop_event`` is set"""
    logger.info(f"Worker started, polling queues: {', '.join(context.queue_names)}")

    while not stop_event.is_set():
        handled = False
        try:
            for queue_name in context.queue_names:
                if stop_event.is_set():
                    break
                if run_once(context, queue_name):
                    handled = True
        except QueueUnavailableError as e:
            logger.error(f"Job queue unavailable, retrying in {context.error_backoff}s: {e}")
            stop_event.wait(context.error_backoff)
            continue
        except Exception as e:
            logger.error(f"Worker loop error, retrying in {context.error_backoff}s: {e}", exc_info=True)
            stop_event.wait(context.error_backoff)
            continue

        if not handled:
            stop_event.wait(context.idle_poll_interval)

    logger.info("Worker stopped")


def run_dlq_processor(context: WorkerContext, stop_event: threading.Event) -> None:
    """Run process_dlq every ``dlq_interval`` seconds until stopped"""
    logger.info(f"DLQ processor started (interval={context.dlq_interval}s)")

    while not stop_event.is_set():
        try:
            context.dlq.process_dlq()
        except Exception as e:
            logger.error(f"DLQ processing pass failed: {e}", exc_info=True)
        stop_event.wait(context.dlq_interval)

    logger.info("DLQ processor stopped")


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM so the current job can finish"""
    def _handle(signum, frame):
        logger.info(f"Received signal {signum}, shutting down after the current job")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
