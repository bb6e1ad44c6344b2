"""
Tests for the PostgreSQL repositories.

The repositories are thin adapters over database.operations; these tests
check each call is forwarded with the right arguments.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from src.exceptions import DatabaseOperationError
from src.repositories import (
    PostgresExportJobRepository,
    PostgresFailedJobRepository,
    PostgresJobRepository,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def operations():
    with patch("src.repositories.export_repository.operations") as mock_operations:
        yield mock_operations


class TestPostgresExportJobRepository:
    """Test export job forwarding."""

    def test_forwarding(self, operations):
        """Test each method calls its operation."""
        repo = PostgresExportJobRepository()
        operations.get_export_job.return_value = {"id": "e1"}

        assert repo.get("e1") == {"id": "e1"}
        repo.mark_processing("e1")
        repo.mark_succeeded("e1", {"attempts": 1})
        repo.mark_failed("e1", "boom")

        operations.mark_export_processing.assert_called_once_with("e1")
        operations.mark_export_succeeded.assert_called_once_with("e1", {"attempts": 1})
        operations.mark_export_failed.assert_called_once_with("e1", "boom")

    def test_errors_propagate(self, operations):
        """Test database errors are logged and re-raised."""
        operations.mark_export_failed.side_effect = DatabaseOperationError("down")

        with pytest.raises(DatabaseOperationError):
            PostgresExportJobRepository().mark_failed("e1", "boom")


class TestPostgresJobRepository:
    """Test job-tracking forwarding."""

    def test_forwarding(self, operations):
        """Test each method calls its operation."""
        repo = PostgresJobRepository()

        repo.mark_processing("j1", "started")
        repo.update_progress("j1", 30, "gating")
        repo.mark_completed("j1", "gs://b/qc.json", {"ok": True})
        repo.mark_failed("j1", "boom")

        operations.mark_job_processing.assert_called_once_with("j1", "started")
        operations.update_job_progress.assert_called_once_with("j1", 30, "gating")
        operations.mark_job_completed.assert_called_once_with("j1", "gs://b/qc.json", {"ok": True})
        operations.mark_job_failed.assert_called_once_with("j1", "boom")


class TestPostgresFailedJobRepository:
    """Test dead letter record forwarding."""

    def test_insert(self, operations):
        """Test inserts pass every column by name."""
        PostgresFailedJobRepository().insert(
            "j1", "dsp-jobs", {"jobId": "j1"}, "err", 1, 3, "PENDING", NOW, NOW,
        )

        operations.insert_failed_job.assert_called_once_with(
            original_job_id="j1",
            queue="dsp-jobs",
            payload={"jobId": "j1"},
            error="err",
            attempts=1,
            max_attempts=3,
            status="PENDING",
            next_retry_at=NOW,
            now=NOW,
        )

    def test_queries(self, operations):
        """Test lookup, listing and maintenance calls."""
        repo = PostgresFailedJobRepository()

        repo.get("f1")
        repo.find_latest("j1", "dsp-jobs")
        repo.update("f1", {"attempts": 2})
        repo.list_due(NOW, 10)
        repo.count_by_status()
        repo.count_active_by_queue()
        repo.list(status="PENDING", limit=5)
        repo.delete_before(NOW, ["RESOLVED"])

        operations.get_failed_job.assert_called_once_with("f1")
        operations.get_latest_failed_job.assert_called_once_with("j1", "dsp-jobs")
        operations.update_failed_job.assert_called_once_with("f1", {"attempts": 2})
        operations.list_due_failed_jobs.assert_called_once_with(NOW, 10)
        operations.count_failed_jobs_by_status.assert_called_once_with()
        operations.count_active_failed_jobs_by_queue.assert_called_once_with()
        operations.list_failed_jobs.assert_called_once_with(status="PENDING", queue=None, limit=5, offset=0)
        operations.delete_failed_jobs_before.assert_called_once_with(NOW, ["RESOLVED"])
