"""
Root conftest.py for pytest configuration and automatic marker assignment.

Markers are assigned from test file names so individual test modules do
not need to repeat them.
"""

import pytest
from typing import List


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    """
    Automatically assign markers based on test file paths.

    Every test runs against fakes and mocks, so all of them are unit tests;
    the area markers only group them by the component they cover.
    """
    for item in items:
        path = str(item.fspath)

        # ffmpeg command lines, output parsing and the gate
        if any(pattern in path for pattern in [
            'test_ebur128_parser.py',
            'test_render.py',
            'test_release_ready.py',
            'test_codec_preview.py',
            'test_quality.py',
        ]):
            item.add_marker(pytest.mark.audio)

        # SQL operations, pooling and repositories
        if any(pattern in path for pattern in [
            'test_database_operations.py',
            'test_database_pool.py',
            'test_repositories.py',
        ]):
            item.add_marker(pytest.mark.persistence)

        # Job queues, the dead letter queue and the worker loop
        if any(pattern in path for pattern in [
            'test_job_queue.py',
            'test_dead_letter_queue.py',
            'test_runner.py',
        ]):
            item.add_marker(pytest.mark.queueing)

        item.add_marker(pytest.mark.unit)


def pytest_configure(config: pytest.Config) -> None:
    """
    Configure custom markers for the test suite.
    """
    config.addinivalue_line(
        "markers", "audio: ffmpeg command, measurement and gate tests (no binary needed)"
    )
    config.addinivalue_line(
        "markers", "persistence: SQL and repository tests against mocked connections"
    )
    config.addinivalue_line(
        "markers", "queueing: job queue, dead letter queue and worker loop tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, isolated)"
    )
