"""
Repository abstraction for export jobs, job tracking and dead letter records.

The worker and the dead letter queue depend only on these interfaces, so
tests run against in-memory implementations while production uses the
PostgreSQL ones backed by database.operations.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from database import operations

logger = logging.getLogger(__name__)


class ExportJobRepositoryInterface(ABC):
    """Abstract interface for export job records."""

    @abstractmethod
    def get(self, export_job_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def mark_processing(self, export_job_id: str) -> Dict[str, Any]:
        """Move to PROCESSING, clearing outputs, final metrics and error."""
        pass

    @abstractmethod
    def mark_succeeded(self, export_job_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
        """Write outputs and final metrics, clear the error."""
        pass

    @abstractmethod
    def mark_failed(self, export_job_id: str, error_message: str) -> Dict[str, Any]:
        """Write the error, clear outputs and final metrics."""
        pass


class JobRepositoryInterface(ABC):
    """Abstract interface for generic job-tracking records."""

    @abstractmethod
    def mark_processing(self, job_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    def mark_completed(
        self,
        job_id: str,
        result_url: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    def mark_failed(self, job_id: str, error: str) -> Dict[str, Any]:
        pass


class FailedJobRepositoryInterface(ABC):
    """Abstract interface for dead letter records."""

    @abstractmethod
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
        pass

    @abstractmethod
    def get(self, failed_job_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_latest(self, original_job_id: str, queue: str) -> Optional[Dict[str, Any]]:
        """Most recent record for a job on a queue."""
        pass

    @abstractmethod
    def update(self, failed_job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def list_due(self, now: datetime, limit: int) -> List[Dict[str, Any]]:
        """PENDING records due at ``now``, ordered by next_retry_at ascending."""
        pass

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def count_active_by_queue(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def list(
        self,
        status: Optional[str] = None,
        queue: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_before(self, cutoff: datetime, statuses: Iterable[str]) -> int:
        pass


class PostgresExportJobRepository(ExportJobRepositoryInterface):
    """PostgreSQL implementation of the export job repository."""

    def get(self, export_job_id: str) -> Optional[Dict[str, Any]]:
        return operations.get_export_job(export_job_id)

    def mark_processing(self, export_job_id: str) -> Dict[str, Any]:
        try:
            return operations.mark_export_processing(export_job_id)
        except Exception as e:
            logger.error(f"Failed to mark export {export_job_id} processing: {e}")
            raise

    def mark_succeeded(self, export_job_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return operations.mark_export_succeeded(export_job_id, result)
        except Exception as e:
            logger.error(f"Failed to mark export {export_job_id} succeeded: {e}")
            raise

    def mark_failed(self, export_job_id: str, error_message: str) -> Dict[str, Any]:
        try:
            return operations.mark_export_failed(export_job_id, error_message)
        except Exception as e:
            logger.error(f"Failed to mark export {export_job_id} failed: {e}")
            raise


class PostgresJobRepository(JobRepositoryInterface):
    """PostgreSQL implementation of the job-tracking repository."""

    def mark_processing(self, job_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        return operations.mark_job_processing(job_id, message)

    def update_progress(self, job_id: str, progress: int, message: Optional[str] = None) -> Dict[str, Any]:
        return operations.update_job_progress(job_id, progress, message)

    def mark_completed(
        self,
        job_id: str,
        result_url: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return operations.mark_job_completed(job_id, result_url, result)

    def mark_failed(self, job_id: str, error: str) -> Dict[str, Any]:
        try:
            return operations.mark_job_failed(job_id, error)
        except Exception as e:
            logger.error(f"Failed to mark job {job_id} failed: {e}")
            raise


class PostgresFailedJobRepository(FailedJobRepositoryInterface):
    """PostgreSQL implementation of the dead letter record repository."""

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
        try:
            return operations.insert_failed_job(
                original_job_id=original_job_id,
                queue=queue,
                payload=payload,
                error=error,
                attempts=attempts,
                max_attempts=max_attempts,
                status=status,
                next_retry_at=next_retry_at,
                now=now,
            )
        except Exception as e:
            logger.error(f"Failed to insert dead letter record for job {original_job_id}: {e}")
            raise

    def get(self, failed_job_id: str) -> Optional[Dict[str, Any]]:
        return operations.get_failed_job(failed_job_id)

    def find_latest(self, original_job_id: str, queue: str) -> Optional[Dict[str, Any]]:
        return operations.get_latest_failed_job(original_job_id, queue)

    def update(self, failed_job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return operations.update_failed_job(failed_job_id, fields)

    def list_due(self, now: datetime, limit: int) -> List[Dict[str, Any]]:
        return operations.list_due_failed_jobs(now, limit)

    def count_by_status(self) -> Dict[str, int]:
        return operations.count_failed_jobs_by_status()

    def count_active_by_queue(self) -> Dict[str, int]:
        return operations.count_active_failed_jobs_by_queue()

    def list(
        self,
        status: Optional[str] = None,
        queue: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        return operations.list_failed_jobs(status=status, queue=queue, limit=limit, offset=offset)

    def delete_before(self, cutoff: datetime, statuses: Iterable[str]) -> int:
        return operations.delete_failed_jobs_before(cutoff, statuses)
