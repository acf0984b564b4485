"""Shared utilities for the transcode job service."""

from .config import Settings, get_settings
from .exceptions import (
    TranscodingPipelineError,
    JobSubmissionError,
    MessageDecodeError,
    JobNotFoundError,
    InvalidTransitionError,
    ObjectStoreError,
    TranscodeEngineError,
    RetryableError,
)
from .models import (
    JobStatus,
    TranscodeOptions,
    Job,
    JobMessage,
    JobSubmitRequest,
    SubmitResult,
    ProcessedVersion,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "TranscodingPipelineError",
    "JobSubmissionError",
    "MessageDecodeError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "ObjectStoreError",
    "TranscodeEngineError",
    "RetryableError",
    # Models
    "JobStatus",
    "TranscodeOptions",
    "Job",
    "JobMessage",
    "JobSubmitRequest",
    "SubmitResult",
    "ProcessedVersion",
]
