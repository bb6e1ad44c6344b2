"""
Dead letter queue for failed jobs.

A job that fails processing is captured as a FailedJob record holding a
verbatim copy of its queue message. A periodic processor re-enqueues due
records onto their original queue on a fixed backoff schedule:

    attempt   1     2      3       4      5       6+
    delay     1m    5m     30m     2h     12h     24h

No jitter is applied: the processor itself runs on a timer, so retries
are already spread out.

Record transitions:

    PENDING -> RETRYING -> RESOLVED                      (re-enqueued)
                        -> PENDING, attempts + 1        (enqueue failed)
                        -> EXHAUSTED                    (attempts reached max)

EXHAUSTED is terminal and needs an operator; ``retry_job`` is the manual
override.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import pytz

from src.models import FailedJobStatus, TERMINAL_FAILED_JOB_STATUSES
from src.repositories import FailedJobRepositoryInterface
from .queue import JobQueue, serialize_payload

logger = logging.getLogger(__name__)

BACKOFF_SCHEDULE_SECONDS = (60, 300, 1800, 7200, 43200, 86400)
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BATCH_SIZE = 100
DEFAULT_RETENTION_DAYS = 30


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def backoff_seconds(attempt: int) -> int:
    """
    Delay before the next retry after ``attempt`` attempts.

    Clamped to the last table entry (24h) beyond the sixth attempt.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return BACKOFF_SCHEDULE_SECONDS[min(attempt - 1, len(BACKOFF_SCHEDULE_SECONDS) - 1)]


def _stored_payload(payload: Any) -> Any:
    """Decode JSON text so it is stored as a document; keep anything else as-is."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return payload
    return payload


class DeadLetterQueue:
    """
    Captures failed jobs and schedules their redelivery.

    Args:
        repository: Storage for FailedJob records
        queue: Job queue that payloads are re-enqueued onto
        max_attempts: Default attempts before a record is exhausted
        batch_size: Records handled per process_dlq call
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        repository: FailedJobRepositoryInterface,
        queue: JobQueue,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.queue = queue
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.clock = clock

    def calculate_next_retry(self, attempt: int, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) + timedelta(seconds=backoff_seconds(attempt))

    def move_to_dead_letter_queue(
        self,
        original_job_id: str,
        queue_name: str,
        payload: Any,
        error: str,
        max_attempts: Optional[int] = None,
        retryable: bool = True,
    ) -> str:
        """
        Capture a failed job.

        A first failure creates a record with attempts=1, PENDING and due in
        60s. If the job's latest record on the same queue is RESOLVED (it was
        redelivered and failed again), that record is reopened with
        attempts + 1 instead, so repeated failures eventually exhaust.
        Non-retryable failures are recorded EXHAUSTED straight away.

        Returns:
            Id of the created or reopened FailedJob record
        """
        now = self.clock()

        if retryable and original_job_id != "unknown":
            latest = self.repository.find_latest(original_job_id, queue_name)
            if latest and latest["status"] == FailedJobStatus.RESOLVED.value:
                return self._reopen(latest, error, now)

        limit = max_attempts or self.max_attempts
        if retryable:
            status = FailedJobStatus.PENDING.value
            next_retry_at = self.calculate_next_retry(1, now)
        else:
            status = FailedJobStatus.EXHAUSTED.value
            next_retry_at = None

        record = self.repository.insert(
            original_job_id=original_job_id,
            queue=queue_name,
            payload=_stored_payload(payload),
            error=error,
            attempts=1,
            max_attempts=limit,
            status=status,
            next_retry_at=next_retry_at,
            now=now,
        )
        if retryable:
            logger.warning(
                f"[DLQ] Job {original_job_id} moved to dead letter queue "
                f"(failed_job_id={record['id']}, queue={queue_name})"
            )
        else:
            logger.error(
                f"[DLQ] Job {original_job_id} captured as exhausted, not retryable "
                f"(failed_job_id={record['id']}, queue={queue_name}): {error}"
            )
        return record["id"]

    def _reopen(self, record: Dict[str, Any], error: str, now: datetime) -> str:
        new_attempts = record["attempts"] + 1
        if new_attempts >= record["max_attempts"]:
            fields = {
                "status": FailedJobStatus.EXHAUSTED.value,
                "attempts": new_attempts,
                "next_retry_at": None,
                "error": error,
                "updated_at": now,
            }
            logger.error(
                f"[DLQ] Job {record['original_job_id']} exhausted after {new_attempts} attempts: {error}"
            )
        else:
            fields = {
                "status": FailedJobStatus.PENDING.value,
                "attempts": new_attempts,
                "next_retry_at": self.calculate_next_retry(new_attempts, now),
                "error": error,
                "updated_at": now,
            }
            logger.warning(
                f"[DLQ] Job {record['original_job_id']} failed again after redelivery "
                f"(attempt {new_attempts}/{record['max_attempts']}, failed_job_id={record['id']})"
            )
        self.repository.update(record["id"], fields)
        return record["id"]

    def _redeliver(self, record: Dict[str, Any]) -> bool:
        """
        Re-enqueue one record and apply the resulting transition.

        The record is RESOLVED before the payload goes back on the queue,
        so a worker that fails the redelivered job always finds it and
        reopens it. A failed enqueue rolls the record back to PENDING or
        EXHAUSTED.

        Returns:
            True if the payload was re-enqueued
        """
        failed_job_id = record["id"]
        self.repository.update(
            failed_job_id,
            {"status": FailedJobStatus.RETRYING.value, "updated_at": self.clock()},
        )
        self.repository.update(
            failed_job_id,
            {"status": FailedJobStatus.RESOLVED.value, "updated_at": self.clock()},
        )

        try:
            self.queue.enqueue(record["queue"], serialize_payload(record["payload"]))
        except Exception as e:
            new_attempts = record["attempts"] + 1
            now = self.clock()
            if new_attempts >= record["max_attempts"]:
                self.repository.update(failed_job_id, {
                    "status": FailedJobStatus.EXHAUSTED.value,
                    "attempts": new_attempts,
                    "next_retry_at": None,
                    "error": str(e),
                    "updated_at": now,
                })
                logger.error(
                    f"[DLQ] Job {record['original_job_id']} exhausted after {new_attempts} attempts: {e}",
                    exc_info=True,
                )
            else:
                self.repository.update(failed_job_id, {
                    "status": FailedJobStatus.PENDING.value,
                    "attempts": new_attempts,
                    "next_retry_at": self.calculate_next_retry(new_attempts, now),
                    "error": str(e),
                    "updated_at": now,
                })
                logger.warning(
                    f"[DLQ] Re-enqueue of job {record['original_job_id']} failed "
                    f"(attempt {new_attempts}/{record['max_attempts']}): {e}"
                )
            return False

        logger.info(f"[DLQ] Job {record['original_job_id']} re-enqueued onto {record['queue']}")
        return True

    def process_dlq(self) -> Dict[str, int]:
        """
        Re-enqueue every due PENDING record (one bounded batch, oldest due first).

        Returns:
            {"processed": re-enqueued count, "failed": enqueue failures}
        """
        due = self.repository.list_due(self.clock(), self.batch_size)
        processed = 0
        failed = 0
        for record in due:
            if self._redeliver(record):
                processed += 1
            else:
                failed += 1

        if processed or failed:
            logger.info(f"[DLQ] Processed batch: processed={processed}, failed={failed}")
        return {"processed": processed, "failed": failed}

    def retry_job(self, failed_job_id: str) -> bool:
        """
        Manually re-enqueue a record now, ignoring its schedule.

        Returns:
            False if the record doesn't exist, is already resolved, or the
            enqueue failed; True once re-enqueued
        """
        record = self.repository.get(failed_job_id)
        if not record or record["status"] == FailedJobStatus.RESOLVED.value:
            return False
        return self._redeliver(record)

    def get_dlq_stats(self) -> Dict[str, Any]:
        """Counts per status plus active (pending/retrying) counts per queue."""
        counts = self.repository.count_by_status()
        stats: Dict[str, Any] = {
            status.value.lower(): int(counts.get(status.value, 0))
            for status in FailedJobStatus
        }
        stats["by_queue"] = dict(self.repository.count_active_by_queue())
        return stats

    def get_failed_jobs(
        self,
        status: Optional[str] = None,
        queue: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Newest-first page of records with the matching total."""
        return self.repository.list(status=status, queue=queue, limit=limit, offset=offset)

    def cleanup_dlq(self, older_than_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete resolved and exhausted records not updated within the window."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        deleted = self.repository.delete_before(
            cutoff,
            [s.value for s in TERMINAL_FAILED_JOB_STATUSES],
        )
        if deleted:
            logger.info(f"[DLQ] Cleaned up {deleted} records older than {older_than_days} days")
        return deleted
