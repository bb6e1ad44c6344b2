"""
Database operations for export jobs, job tracking and the dead letter queue.

Three tables are touched:

- ``export_jobs``  one row per export request; the worker is the sole
  writer of its processing and terminal fields
- ``jobs``         generic job-tracking records (status, progress, result)
- ``failed_jobs``  dead letter records awaiting retry or inspection

Terminal export updates are single statements so the row never shows
outputs together with an error message, or the reverse.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import psycopg2.extras
from psycopg2 import DatabaseError, sql

from .pool import get_connection
from src.exceptions import (
    DatabaseOperationError,
    ResourceNotFoundError,
    ValidationError,
)
from src.models import ExportStatus, FailedJobStatus, JobStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 10000

EXPORT_RESULT_FIELDS = (
    "input_sha256",
    "output_wav_url",
    "output_mp3_url",
    "output_aac_url",
    "qc_report_url",
    "final_gain_db",
    "final_true_peak_dbfs",
    "final_integrated_lufs",
    "final_lra",
    "release_ready_passes",
    "attempts",
)

FAILED_JOB_UPDATABLE_FIELDS = (
    "status",
    "attempts",
    "next_retry_at",
    "error",
    "updated_at",
)


def _require_id(value: str, name: str) -> None:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{name} is required")


def _truncate_error(message: Optional[str]) -> Optional[str]:
    if message and len(message) > MAX_ERROR_LENGTH:
        logger.warning(f"Error message truncated to {MAX_ERROR_LENGTH} characters")
        return message[:MAX_ERROR_LENGTH]
    return message


def _execute(
    query,
    params: Iterable[Any],
    operation: str,
    fetch: Optional[str] = "one",
):
    """
    Run one statement in its own transaction.

    Args:
        query: SQL string or psycopg2.sql.Composed
        params: Query parameters
        operation: Description used in errors and logs
        fetch: "one", "all", "rowcount" or None

    Raises:
        DatabaseOperationError: On any database error
    """
    try:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, tuple(params))
                if fetch == "one":
                    row = cur.fetchone()
                    result = dict(row) if row else None
                elif fetch == "all":
                    result = [dict(r) for r in cur.fetchall()]
                elif fetch == "rowcount":
                    result = cur.rowcount
                else:
                    result = None
                conn.commit()
                return result
    except DatabaseError as e:
        logger.error(f"Database error during {operation}: {e}")
        raise DatabaseOperationError(
            f"Failed to {operation}: database error - {str(e)}"
        ) from e


# ============================================================================
# Export Jobs
# ============================================================================

def get_export_job(export_job_id: str) -> Optional[Dict[str, Any]]:
    """
    Retrieve an export job by id.

    Returns:
        Row as a dictionary, or None if it doesn't exist
    """
    _require_id(export_job_id, "export_job_id")
    return _execute(
        "SELECT * FROM export_jobs WHERE id = %s",
        (export_job_id,),
        "get export job",
    )


def mark_export_processing(export_job_id: str) -> Dict[str, Any]:
    """
    Move an export job to PROCESSING.

    Clears outputs, final metrics and any previous error so a redelivered
    job starts from a clean row.

    Raises:
        ResourceNotFoundError: If the export job doesn't exist
        DatabaseOperationError: If the update fails
    """
    _require_id(export_job_id, "export_job_id")
    result = _execute(
        """
        UPDATE export_jobs
        SET
            status = %s,
            error_message = NULL,
            input_sha256 = NULL,
            output_wav_url = NULL,
            output_mp3_url = NULL,
            output_aac_url = NULL,
            qc_report_url = NULL,
            final_gain_db = NULL,
            final_true_peak_dbfs = NULL,
            final_integrated_lufs = NULL,
            final_lra = NULL,
            release_ready_passes = NULL,
            attempts = NULL,
            completed_at = NULL,
            updated_at = NOW()
        WHERE id = %s
        RETURNING id, status, updated_at
        """,
        (ExportStatus.PROCESSING.value, export_job_id),
        "mark export processing",
    )
    if not result:
        raise ResourceNotFoundError(
            f"Export job not found: {export_job_id}",
            details={"export_job_id": export_job_id},
        )
    logger.info(f"Export job {export_job_id} -> PROCESSING")
    return result


def mark_export_succeeded(export_job_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Record a successful export.

    Args:
        export_job_id: ExportJob id
        result: Values for every column in EXPORT_RESULT_FIELDS
            (``output_mp3_url`` / ``output_aac_url`` may be None)

    Raises:
        ValidationError: If a result field is missing
        ResourceNotFoundError: If the export job doesn't exist

    Example:
        >>> mark_export_succeeded('exp-1', {
        ...     'input_sha256': 'a665a459...',
        ...     'output_wav_url': 'gs://bucket/exports/t/exp-1/release-ready-24bit.wav',
        ...     'output_mp3_url': None,
        ...     ...
        ... })
    """
    _require_id(export_job_id, "export_job_id")
    missing = [f for f in EXPORT_RESULT_FIELDS if f not in result]
    if missing:
        raise ValidationError(f"Missing export result fields: {missing}")

    row = _execute(
        """
        UPDATE export_jobs
        SET
            status = %s,
            input_sha256 = %s,
            output_wav_url = %s,
            output_mp3_url = %s,
            output_aac_url = %s,
            qc_report_url = %s,
            final_gain_db = %s,
            final_true_peak_dbfs = %s,
            final_integrated_lufs = %s,
            final_lra = %s,
            release_ready_passes = %s,
            attempts = %s,
            error_message = NULL,
            completed_at = NOW(),
            updated_at = NOW()
        WHERE id = %s
        RETURNING id, status, completed_at
        """,
        (ExportStatus.SUCCEEDED.value, *(result[f] for f in EXPORT_RESULT_FIELDS), export_job_id),
        "mark export succeeded",
    )
    if not row:
        raise ResourceNotFoundError(
            f"Export job not found: {export_job_id}",
            details={"export_job_id": export_job_id},
        )
    logger.info(f"Export job {export_job_id} -> SUCCEEDED")
    return row


def mark_export_failed(export_job_id: str, error_message: str) -> Dict[str, Any]:
    """
    Record a failed export; outputs and final metrics are cleared.

    Raises:
        ValidationError: If error_message is empty
        ResourceNotFoundError: If the export job doesn't exist
    """
    _require_id(export_job_id, "export_job_id")
    if not error_message:
        raise ValidationError("error_message is required when marking an export failed")

    row = _execute(
        """
        UPDATE export_jobs
        SET
            status = %s,
            error_message = %s,
            output_wav_url = NULL,
            output_mp3_url = NULL,
            output_aac_url = NULL,
            qc_report_url = NULL,
            final_gain_db = NULL,
            final_true_peak_dbfs = NULL,
            final_integrated_lufs = NULL,
            final_lra = NULL,
            release_ready_passes = NULL,
            completed_at = NOW(),
            updated_at = NOW()
        WHERE id = %s
        RETURNING id, status, error_message
        """,
        (ExportStatus.FAILED.value, _truncate_error(error_message), export_job_id),
        "mark export failed",
    )
    if not row:
        raise ResourceNotFoundError(
            f"Export job not found: {export_job_id}",
            details={"export_job_id": export_job_id},
        )
    logger.info(f"Export job {export_job_id} -> FAILED")
    return row


# ============================================================================
# Job Tracking
# ============================================================================

def _update_job(job_id: str, assignments: str, params: Iterable[Any], operation: str) -> Dict[str, Any]:
    _require_id(job_id, "job_id")
    row = _execute(
        f"""
        UPDATE jobs
        SET {assignments}, updated_at = NOW()
        WHERE id = %s
        RETURNING id, status, progress
        """,
        (*params, job_id),
        operation,
    )
    if not row:
        raise ResourceNotFoundError(f"Job not found: {job_id}", details={"job_id": job_id})
    return row


def mark_job_processing(job_id: str, message: Optional[str] = None) -> Dict[str, Any]:
    """Set a tracking record to PROCESSING with progress 0."""
    return _update_job(
        job_id,
        "status = %s, progress = 0, message = %s, error = NULL, started_at = NOW()",
        (JobStatus.PROCESSING.value, message),
        "mark job processing",
    )


def update_job_progress(job_id: str, progress: int, message: Optional[str] = None) -> Dict[str, Any]:
    """
    Record stage progress (0-100) on a tracking record.

    Raises:
        ValidationError: If progress is outside 0-100
    """
    if not 0 <= progress <= 100:
        raise ValidationError(f"progress must be between 0 and 100, got {progress}")
    return _update_job(
        job_id,
        "progress = %s, message = %s",
        (progress, message),
        "update job progress",
    )


def mark_job_completed(
    job_id: str,
    result_url: Optional[str] = None,
    result: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Set a tracking record to COMPLETED with progress 100."""
    return _update_job(
        job_id,
        "status = %s, progress = 100, result_url = %s, result = %s, error = NULL, completed_at = NOW()",
        (
            JobStatus.COMPLETED.value,
            result_url,
            psycopg2.extras.Json(result) if result is not None else None,
        ),
        "mark job completed",
    )


def mark_job_failed(job_id: str, error: str) -> Dict[str, Any]:
    """Set a tracking record to FAILED with the error text."""
    return _update_job(
        job_id,
        "status = %s, error = %s, completed_at = NOW()",
        (JobStatus.FAILED.value, _truncate_error(error)),
        "mark job failed",
    )


# ============================================================================
# Failed Jobs (dead letter queue)
# ============================================================================

def insert_failed_job(
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
    """
    Insert a dead letter record.

    Args:
        original_job_id: Id of the job that failed
        queue: Queue the payload came from and will be re-enqueued onto
        payload: Verbatim message (decoded JSON or raw text)
        error: Failure description
        attempts: Initial attempt count
        max_attempts: Attempts before the record is exhausted
        status: Initial FailedJobStatus value
        next_retry_at: When the record becomes due
        now: created_at / updated_at timestamp

    Returns:
        The inserted row
    """
    _require_id(queue, "queue")
    if max_attempts < 1:
        raise ValidationError("max_attempts must be at least 1")

    return _execute(
        """
        INSERT INTO failed_jobs (
            id, original_job_id, queue, payload, error, attempts,
            max_attempts, status, next_retry_at, created_at, updated_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            str(uuid.uuid4()),
            original_job_id,
            queue,
            psycopg2.extras.Json(payload),
            _truncate_error(error),
            attempts,
            max_attempts,
            FailedJobStatus(status).value,
            next_retry_at,
            now,
            now,
        ),
        "insert failed job",
    )


def get_failed_job(failed_job_id: str) -> Optional[Dict[str, Any]]:
    _require_id(failed_job_id, "failed_job_id")
    return _execute(
        "SELECT * FROM failed_jobs WHERE id = %s",
        (failed_job_id,),
        "get failed job",
    )


def get_latest_failed_job(original_job_id: str, queue: str) -> Optional[Dict[str, Any]]:
    """Most recently created record for a job on a queue, if any."""
    _require_id(original_job_id, "original_job_id")
    return _execute(
        """
        SELECT * FROM failed_jobs
        WHERE original_job_id = %s AND queue = %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (original_job_id, queue),
        "get latest failed job",
    )


def update_failed_job(failed_job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update selected columns of a dead letter record.

    Args:
        failed_job_id: Record id
        fields: Column -> value, limited to FAILED_JOB_UPDATABLE_FIELDS.
            A None value clears the column (e.g. next_retry_at).

    Raises:
        ValidationError: On an empty update or an unknown column
        ResourceNotFoundError: If the record doesn't exist
    """
    _require_id(failed_job_id, "failed_job_id")
    if not fields:
        raise ValidationError("No fields to update")
    unknown = set(fields) - set(FAILED_JOB_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update failed job fields: {sorted(unknown)}")

    values = dict(fields)
    if "status" in values:
        values["status"] = FailedJobStatus(values["status"]).value
    if "error" in values:
        values["error"] = _truncate_error(values["error"])

    columns = list(values)
    assignments = sql.SQL(", ").join(
        sql.SQL("{} = %s").format(sql.Identifier(col)) for col in columns
    )
    if "updated_at" not in values:
        assignments = sql.SQL("{}, updated_at = NOW()").format(assignments)

    row = _execute(
        sql.SQL("UPDATE failed_jobs SET {} WHERE id = %s RETURNING *").format(assignments),
        (*(values[c] for c in columns), failed_job_id),
        "update failed job",
    )
    if not row:
        raise ResourceNotFoundError(
            f"Failed job not found: {failed_job_id}",
            details={"failed_job_id": failed_job_id},
        )
    return row


def list_due_failed_jobs(now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
    """PENDING records with next_retry_at <= now, oldest due first."""
    return _execute(
        """
        SELECT * FROM failed_jobs
        WHERE status = %s AND next_retry_at <= %s
        ORDER BY next_retry_at ASC
        LIMIT %s
        """,
        (FailedJobStatus.PENDING.value, now, limit),
        "list due failed jobs",
        fetch="all",
    )


def count_failed_jobs_by_status() -> Dict[str, int]:
    rows = _execute(
        "SELECT status, COUNT(*) AS count FROM failed_jobs GROUP BY status",
        (),
        "count failed jobs by status",
        fetch="all",
    )
    return {row["status"]: int(row["count"]) for row in rows}


def count_active_failed_jobs_by_queue() -> Dict[str, int]:
    """PENDING + RETRYING record counts per queue."""
    rows = _execute(
        """
        SELECT queue, COUNT(*) AS count FROM failed_jobs
        WHERE status IN (%s, %s)
        GROUP BY queue
        """,
        (FailedJobStatus.PENDING.value, FailedJobStatus.RETRYING.value),
        "count active failed jobs by queue",
        fetch="all",
    )
    return {row["queue"]: int(row["count"]) for row in rows}


def list_failed_jobs(
    status: Optional[str] = None,
    queue: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Page through dead letter records, newest first.

    Returns:
        {"jobs": [...], "total": <matching rows>}
    """
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")

    conditions = []
    params: List[Any] = []
    if status:
        conditions.append("status = %s")
        params.append(FailedJobStatus(status).value)
    if queue:
        conditions.append("queue = %s")
        params.append(queue)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    jobs = _execute(
        f"""
        SELECT id, original_job_id, queue, error, attempts, max_attempts,
               status, next_retry_at, created_at
        FROM failed_jobs
        {where}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        (*params, limit, offset),
        "list failed jobs",
        fetch="all",
    )
    total = _execute(
        f"SELECT COUNT(*) AS total FROM failed_jobs {where}",
        params,
        "count failed jobs",
    )
    return {"jobs": jobs, "total": int(total["total"]) if total else 0}


def delete_failed_jobs_before(cutoff: datetime, statuses: Iterable[str]) -> int:
    """Delete records in the given statuses last updated before cutoff."""
    status_values = [FailedJobStatus(s).value for s in statuses]
    if not status_values:
        return 0
    deleted = _execute(
        "DELETE FROM failed_jobs WHERE status = ANY(%s) AND updated_at < %s",
        (status_values, cutoff),
        "delete failed jobs",
        fetch="rowcount",
    )
    logger.info(f"Deleted {deleted} failed job records updated before {cutoff.isoformat()}")
    return deleted
