"""
Repository Module

Data access abstraction for export jobs, job tracking and dead letter records.
"""

from .export_repository import (
    ExportJobRepositoryInterface,
    JobRepositoryInterface,
    FailedJobRepositoryInterface,
    PostgresExportJobRepository,
    PostgresJobRepository,
    PostgresFailedJobRepository,
)

__all__ = [
    "ExportJobRepositoryInterface",
    "JobRepositoryInterface",
    "FailedJobRepositoryInterface",
    "PostgresExportJobRepository",
    "PostgresJobRepository",
    "PostgresFailedJobRepository",
]
