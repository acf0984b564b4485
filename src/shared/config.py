"""Environment-aware configuration with validation.

This module provides centralized configuration management using Pydantic Settings.
All environment variables are validated at startup to fail fast on misconfigurations.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings are cached to avoid repeated parsing.

    Example:
        >>> settings = get_settings()
        >>> print(settings.jobs_table)
        'video-transcode-jobs'
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_REGION",
        description="AWS region for all services",
    )

    # S3 Configuration
    media_bucket: str = Field(
        default="",
        alias="MEDIA_BUCKET",
        description="S3 bucket holding source uploads and transcoded outputs",
    )

    # DynamoDB Configuration
    jobs_table: str = Field(
        default="video-transcode-jobs",
        alias="JOBS_TABLE",
        description="DynamoDB table for job records (hash key: jobId)",
    )
    jobs_user_index: str = Field(
        default="userId-index",
        alias="JOBS_USER_INDEX",
        description="Global secondary index on the jobs table keyed by userId",
    )
    videos_table: str = Field(
        default="video-transcode-videos",
        alias="VIDEOS_TABLE",
        description="DynamoDB table for video records (hash key: videoId)",
    )

    # SQS Configuration
    queue_url: str = Field(
        default="",
        alias="QUEUE_URL",
        description="Main job queue URL",
    )
    dead_letter_queue_url: str = Field(
        default="",
        alias="DEAD_LETTER_QUEUE_URL",
        description="Dead-letter queue paired with the main job queue",
    )
    max_receive_count: int = Field(
        default=3,
        ge=1,
        le=1000,
        alias="MAX_RECEIVE_COUNT",
        description="Redrive threshold configured on the main queue",
    )
    wait_time_seconds: int = Field(
        default=20,
        ge=0,
        le=20,
        alias="WAIT_TIME_SECONDS",
        description="Long-poll wait for the main queue",
    )
    visibility_timeout_seconds: int = Field(
        default=900,
        ge=0,
        le=43200,
        alias="VISIBILITY_TIMEOUT_SECONDS",
        description="Visibility window for received job messages",
    )

    # Worker loop
    reconcile_every_cycles: int = Field(
        default=10,
        ge=1,
        alias="RECONCILE_EVERY_CYCLES",
        description="Run the dead-letter reconciler every N poll cycles",
    )
    dlq_batch_size: int = Field(
        default=10,
        ge=1,
        le=10,
        alias="DLQ_BATCH_SIZE",
        description="Messages read from the dead-letter queue per drain",
    )
    poll_error_backoff_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        alias="POLL_ERROR_BACKOFF_SECONDS",
        description="Pause after a queue error before polling again",
    )

    # Transcoding engine
    work_dir: str = Field(
        default="/tmp",
        alias="WORK_DIR",
        description="Parent directory for per-job temporary storage",
    )
    ffmpeg_binary: str = Field(
        default="ffmpeg",
        alias="FFMPEG_BINARY",
        description="FFmpeg executable",
    )
    ffprobe_binary: str = Field(
        default="ffprobe",
        alias="FFPROBE_BINARY",
        description="FFprobe executable",
    )
    engine_timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        alias="ENGINE_TIMEOUT_SECONDS",
        description="Optional hard limit on one FFmpeg run (unset = unbounded)",
    )

    # Retry Configuration
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        alias="MAX_RETRIES",
        description="Maximum retry attempts for throttled record updates",
    )
    retry_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        alias="RETRY_DELAY_SECONDS",
        description="Initial delay between retries (exponential backoff)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    @field_validator("queue_url", "dead_letter_queue_url", mode="before")
    @classmethod
    def validate_queue_url(cls, v: str) -> str:
        """Ensure queue URLs are http(s) endpoints."""
        if v and not v.startswith(("https://", "http://")):
            raise ValueError("Queue URL must start with https:// or http://")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "prod"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Validated Settings instance

    Raises:
        ValidationError: If environment variables are invalid
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when environment variables change.
    """
    get_settings.cache_clear()
