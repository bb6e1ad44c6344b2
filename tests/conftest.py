"""
Test configuration and fixtures for the export worker tests.

Provides:
- Test environment variables
- In-memory repositories, object store and clock (see fakes.py)
- Scripted render/measure functions standing in for ffmpeg
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import (  # noqa: E402
    SOURCE_BYTES,
    SOURCE_URL,
    FakeObjectStore,
    FixedClock,
    InMemoryExportJobRepository,
    InMemoryFailedJobRepository,
    InMemoryJobRepository,
    ScriptedAudio,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables and configuration."""
    original_env = dict(os.environ)

    test_env = {
        'QUEUE_MODE': 'local',
        'GCS_BUCKET_NAME': 'test-bucket',
        'OUTPUT_BUCKET_NAME': 'test-exports',
        'LOG_LEVEL': 'WARNING',  # Reduce log noise during tests
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def export_repository():
    return InMemoryExportJobRepository()


@pytest.fixture
def job_repository():
    return InMemoryJobRepository()


@pytest.fixture
def failed_job_repository():
    return InMemoryFailedJobRepository()


@pytest.fixture
def object_store():
    return FakeObjectStore({SOURCE_URL: SOURCE_BYTES})


@pytest.fixture
def scripted_audio():
    return ScriptedAudio()
