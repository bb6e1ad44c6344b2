"""
Status values shared by the worker, repositories and database layer.
"""

from enum import Enum


class ExportStatus(str, Enum):
    """ExportJob lifecycle: QUEUED -> PROCESSING -> SUCCEEDED | FAILED"""
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class JobStatus(str, Enum):
    """Generic job-tracking record status"""
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FailedJobStatus(str, Enum):
    """
    Dead letter record status.

    PENDING -> RETRYING -> RESOLVED, back to PENDING with one more attempt,
    or EXHAUSTED once max attempts is reached.
    """
    PENDING = "PENDING"
    RETRYING = "RETRYING"
    EXHAUSTED = "EXHAUSTED"
    RESOLVED = "RESOLVED"


TERMINAL_FAILED_JOB_STATUSES = (FailedJobStatus.RESOLVED, FailedJobStatus.EXHAUSTED)
ACTIVE_FAILED_JOB_STATUSES = (FailedJobStatus.PENDING, FailedJobStatus.RETRYING)
