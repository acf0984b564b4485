"""Pydantic models for data validation and serialization.

This module defines the core data structures used throughout the service:
- Transcoding options snapshot
- Job record (as stored in the jobs table)
- Queue message (job descriptor)
- Submission request/response

Wire and storage attribute names are camelCase (``jobId``, ``inputRef``);
Python attribute names are snake_case. All models use Pydantic v2.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import MessageDecodeError

_CAMEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PERMANENTLY_FAILED = "permanently_failed"


class TranscodeOptions(BaseModel):
    """Immutable transcoding configuration captured at submission time.

    Defaults match what the upload UI sends when a field is left blank.
    Unrecognized keys are dropped; the engine never sees them.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", **_CAMEL_CONFIG)

    resolution: str = Field(
        default="720x480",
        pattern=r"^\d+x\d+$",
        description="Output frame size (e.g., '1280x720')",
    )
    video_codec: str = Field(
        default="libx264",
        min_length=1,
        description="Video encoder passed to FFmpeg",
    )
    audio_codec: str = Field(
        default="aac",
        min_length=1,
        description="Audio encoder passed to FFmpeg",
    )
    video_bitrate: str = Field(
        default="1000k",
        pattern=r"^\d+[kKmM]?$",
        description="Target video bitrate (e.g., '2500k')",
    )
    audio_bitrate: str = Field(
        default="128k",
        pattern=r"^\d+[kKmM]?$",
        description="Target audio bitrate (e.g., '128k')",
    )
    fps: float = Field(
        default=30.0,
        gt=0,
        le=240,
        description="Output frame rate",
    )
    preset: str = Field(
        default="slow",
        min_length=1,
        description="Encoder speed/quality preset",
    )
    crf: str = Field(
        default="23",
        description="Constant rate factor (lower = higher quality, more compute)",
    )

    @field_validator("crf", mode="before")
    @classmethod
    def validate_crf(cls, v: Any) -> str:
        """Accept numeric or string CRF and keep it within the x264/x265 range."""
        try:
            value = int(str(v))
        except ValueError:
            raise ValueError(f"crf must be an integer, got {v!r}")
        if not 0 <= value <= 51:
            raise ValueError("crf must be between 0 and 51")
        return str(value)

    @property
    def width(self) -> int:
        """Extract width from resolution string."""
        return int(self.resolution.split("x")[0])

    @property
    def height(self) -> int:
        """Extract height from resolution string."""
        return int(self.resolution.split("x")[1])


class Job(BaseModel):
    """Job record as persisted in the jobs table.

    A Job is a snapshot read from the store; mutations go through
    ``JobRecordStore`` as partial-attribute updates, never by writing a
    modified copy of this model back.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", **_CAMEL_CONFIG)

    job_id: str = Field(min_length=1, description="Unique job identifier")
    user_id: str = Field(min_length=1, description="Owning user")
    video_id: str | None = Field(default=None, description="Source video record")
    input_ref: str = Field(min_length=1, description="S3 key of the source media")
    output_ref: str = Field(min_length=1, description="S3 key for the transcoded output")
    options: TranscodeOptions = Field(description="Transcoding options snapshot")

    status: JobStatus = Field(description="Current lifecycle state")
    progress: int = Field(default=0, ge=0, le=100, description="Percent complete")
    time_processed: str | None = Field(
        default=None,
        description="Last media timemark reported by the engine",
    )

    created_at: datetime = Field(description="Submission timestamp")
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    failed_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    error: str | None = Field(default=None, description="Last failure message")
    retried_count: int | None = Field(
        default=None,
        description="Delivery attempts observed when the job was dead-lettered",
    )
    output_checksum: str | None = Field(
        default=None,
        description="XXHash64 of the uploaded output",
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset attributes."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class JobMessage(BaseModel):
    """Queue message carrying the intent to process one job.

    Flat structure: ``{jobId, inputRef, outputRef, options}``. Extra fields
    are ignored so producers can add attributes without breaking consumers.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", **_CAMEL_CONFIG)

    job_id: str = Field(min_length=1)
    input_ref: str = Field(min_length=1)
    output_ref: str = Field(min_length=1)
    options: TranscodeOptions = Field(default_factory=TranscodeOptions)

    def to_json(self) -> str:
        """Encode as the message body."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, body: str) -> "JobMessage":
        """Decode a message body.

        Raises:
            MessageDecodeError: If the body is not JSON or misses required fields
        """
        try:
            return cls.model_validate(json.loads(body))
        except (ValueError, TypeError, ValidationError) as e:
            raise MessageDecodeError(
                f"Invalid job message: {e}",
                {"body": body[:200] if isinstance(body, str) else repr(body)[:200]},
            )


class JobSubmitRequest(BaseModel):
    """Validated transcode request accepted by the submitter."""

    model_config = ConfigDict(frozen=True, extra="ignore", **_CAMEL_CONFIG)

    user_id: str = Field(min_length=1, description="Authenticated caller")
    input_ref: str = Field(min_length=1, description="S3 key of the source media")
    options: TranscodeOptions = Field(default_factory=TranscodeOptions)
    video_id: str | None = Field(default=None, description="Source video record")


class SubmitResult(BaseModel):
    """Result returned to the caller after a successful submission."""

    model_config = ConfigDict(frozen=True, **_CAMEL_CONFIG)

    job_id: str
    status: JobStatus = JobStatus.QUEUED
    output_ref: str


class ProcessedVersion(BaseModel):
    """Entry appended to a video record for each completed transcode."""

    model_config = ConfigDict(frozen=True, **_CAMEL_CONFIG)

    job_id: str
    output_ref: str
    bucket: str
    options: TranscodeOptions
    created_at: datetime
