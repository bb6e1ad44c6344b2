"""
Custom exceptions for the Release-Ready export worker
Provides a hierarchy of exceptions for different error scenarios
"""
from typing import Optional


class ExportPipelineError(Exception):
    """Base exception for all export pipeline errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ExportPipelineError):
    """
    Raised when a job requests settings the pipeline cannot honour

    Examples:
    - Unknown bit depth token
    - Sample rate outside {44100, 48000}
    - True-peak ceiling outside [-20, 0] dB

    Always raised before any I/O and never retried.
    """
    pass


class ValidationError(ExportPipelineError):
    """
    Raised when input validation fails

    Examples:
    - Queue message is not valid JSON
    - Missing required message fields
    - Unknown job type tag
    """
    pass


class AudioProcessingError(ExportPipelineError):
    """
    Raised when an external audio tool fails

    Examples:
    - ffmpeg exited non-zero
    - Corrupted or undecodable source audio
    - Unsupported codec token
    """
    pass


class ToolTimeoutError(AudioProcessingError):
    """
    Raised when an external tool exceeds its wall-clock limit

    The process is killed before this is raised.
    """
    pass


class MetricsParseError(AudioProcessingError):
    """
    Raised when the loudness report lacks a Summary field

    Attributes:
        field: Summary field that could not be found ("I", "LRA" or "Peak")
    """

    def __init__(self, field: str, message: Optional[str] = None, details: Optional[dict] = None):
        self.field = field
        super().__init__(
            message or f"Missing '{field}:' in ebur128 Summary block",
            details={"field": field, **(details or {})},
        )


class StorageError(ExportPipelineError):
    """
    Raised when storage operations fail

    Examples:
    - GCS upload/download failure
    - HTTP source download failure
    - Unsupported source URL scheme
    """
    pass


class QueueUnavailableError(ExportPipelineError):
    """
    Raised when the job queue backend cannot be reached

    Enqueue and dequeue both surface this instead of degrading to a no-op.
    """
    pass


class ResourceNotFoundError(ExportPipelineError):
    """
    Raised when a requested resource doesn't exist

    Examples:
    - Export job not found by id
    - Failed job record not found
    """
    pass


class DatabaseOperationError(ExportPipelineError):
    """
    Raised when a database operation fails

    Examples:
    - Connection lost mid-transaction
    - Constraint violation
    """
    pass


# Error code mapping for job-tracking records
ERROR_CODES = {
    ConfigurationError: "CONFIGURATION_ERROR",
    ValidationError: "VALIDATION_ERROR",
    ToolTimeoutError: "TOOL_TIMEOUT",
    MetricsParseError: "METRICS_PARSE_FAILED",
    AudioProcessingError: "AUDIO_PROCESSING_FAILED",
    StorageError: "STORAGE_ERROR",
    QueueUnavailableError: "QUEUE_UNAVAILABLE",
    ResourceNotFoundError: "RESOURCE_NOT_FOUND",
    DatabaseOperationError: "DATABASE_ERROR",
    ExportPipelineError: "INTERNAL_ERROR",
}


def get_error_code(exception: Exception) -> str:
    """Get the error code for an exception"""
    for exc_class, code in ERROR_CODES.items():
        if isinstance(exception, exc_class):
            return code
    return "UNKNOWN_ERROR"
