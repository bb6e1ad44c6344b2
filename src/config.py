"""
Configuration management for the Release-Ready export worker
Centralized configuration using environment variables with sensible defaults
"""
import os
import logging
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerConfig(BaseSettings):
    """Worker configuration with environment variable support"""

    model_config = SettingsConfigDict(
        # Read .env file if it exists (local dev), gracefully ignore if missing (production)
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Worker Identity
    worker_name: str = "release-ready-worker"
    worker_version: str = "0.1.0"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    # Job Queue Configuration
    queue_mode: Literal["redis", "local"] = "redis"
    redis_url: str = "redis://localhost:6379"
    dsp_queue_name: str = "dsp-jobs"
    codec_queue_name: str = "codec-jobs"
    export_queues: str = "dsp-jobs,codec-jobs"  # Comma-separated list polled by the worker loop
    dequeue_timeout_seconds: int = 5

    # Worker Loop
    idle_poll_interval_seconds: float = 1.0
    error_backoff_seconds: float = 5.0

    # Database Configuration
    db_host: str | None = None
    db_port: int = 5432
    db_name: str | None = None
    db_user: str | None = None
    db_password: str | None = None
    db_min_connections: int = 1
    db_max_connections: int = 5

    # Google Cloud Storage Configuration
    gcs_bucket_name: str | None = None
    gcs_project_id: str | None = None
    google_application_credentials: str | None = None  # Path to service account key
    output_bucket_name: str | None = None  # Defaults to gcs_bucket_name

    # Source download
    download_max_size_mb: int = 500
    download_timeout_seconds: int = 120

    # External tools
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    measure_timeout_seconds: int = 600   # 10 minutes
    render_timeout_seconds: int = 1800   # 30 minutes

    # Release-Ready gate
    gate_max_attempts: int = 8
    default_true_peak_ceiling_db: float = -2.0

    # Dead letter queue
    dlq_max_attempts: int = 3
    dlq_batch_size: int = 100
    dlq_interval_seconds: int = 60
    dlq_retention_days: int = 30

    @property
    def export_queues_list(self) -> list[str]:
        """Parse polled queue names string into list"""
        return [queue.strip() for queue in self.export_queues.split(",") if queue.strip()]

    @property
    def log_level_int(self) -> int:
        """Convert log level string to logging constant"""
        return getattr(logging, self.log_level.upper(), logging.INFO)

    @property
    def gcs_credentials_path(self) -> str | None:
        """
        Get GCS credentials path from config or environment.
        Checks GOOGLE_APPLICATION_CREDENTIALS env var as fallback.
        """
        if self.google_application_credentials:
            return self.google_application_credentials
        return os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

    @property
    def is_gcs_configured(self) -> bool:
        """Check if GCS is properly configured"""
        return bool(self.gcs_bucket_name and self.gcs_project_id)

    @property
    def resolved_output_bucket(self) -> str | None:
        """Bucket that receives rendered deliverables and QC reports"""
        return self.output_bucket_name or self.gcs_bucket_name

    @property
    def is_database_configured(self) -> bool:
        """Check if database is properly configured"""
        return bool(self.db_host and self.db_name and self.db_user and self.db_password)

    @property
    def database_url(self) -> str | None:
        """
        Generate PostgreSQL connection URL.
        Returns None if database is not configured.
        """
        # Check for explicit DATABASE_URL first (for deployments with secrets)
        explicit_url = os.getenv("DATABASE_URL")
        if explicit_url:
            return explicit_url

        if not self.is_database_configured:
            return None

        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    def validate_credentials(self) -> dict[str, bool]:
        """
        Validate that all required credentials are available.
        Returns a dict showing which services are properly configured.
        """
        return {
            "gcs": self.is_gcs_configured,
            "database": self.is_database_configured,
            "queue": bool(self.redis_url) if self.queue_mode == "redis" else True,
        }

    def configure_logging(self) -> None:
        """Configure application logging based on settings"""
        if self.log_format == "json":
            # JSON format for structured logging
            log_format = '{"timestamp":"%(asctime)s","logger":"%(name)s","level":"%(levelname)s","message":"%(message)s","module":"%(module)s","function":"%(funcName)s","line":%(lineno)d}'
        else:
            # Text format for human-readable logs
            log_format = '%(asctime)s - %(name)s - %(levelname)s - [%(module)s.%(funcName)s:%(lineno)d] - %(message)s'

        logging.basicConfig(
            level=self.log_level_int,
            format=log_format,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Set specific log levels for noisy libraries
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("google").setLevel(logging.WARNING)


# Global configuration instance
config = WorkerConfig()
