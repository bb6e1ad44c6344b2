"""
Database module for the Release-Ready export worker.

Provides connection pooling and the SQL operations the pipeline performs
on export jobs, job-tracking records and dead letter records.
"""

from .pool import (
    DatabasePool,
    get_connection_pool,
    get_connection,
    close_pool,
)
from .operations import (
    get_export_job,
    mark_export_processing,
    mark_export_succeeded,
    mark_export_failed,
    mark_job_processing,
    update_job_progress,
    mark_job_completed,
    mark_job_failed,
    insert_failed_job,
    get_failed_job,
    get_latest_failed_job,
    update_failed_job,
    list_due_failed_jobs,
    count_failed_jobs_by_status,
    count_active_failed_jobs_by_queue,
    list_failed_jobs,
    delete_failed_jobs_before,
)

__all__ = [
    "DatabasePool",
    "get_connection_pool",
    "get_connection",
    "close_pool",
    "get_export_job",
    "mark_export_processing",
    "mark_export_succeeded",
    "mark_export_failed",
    "mark_job_processing",
    "update_job_progress",
    "mark_job_completed",
    "mark_job_failed",
    "insert_failed_job",
    "get_failed_job",
    "get_latest_failed_job",
    "update_failed_job",
    "list_due_failed_jobs",
    "count_failed_jobs_by_status",
    "count_active_failed_jobs_by_queue",
    "list_failed_jobs",
    "delete_failed_jobs_before",
]
