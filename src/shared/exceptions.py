"""Custom exception hierarchy for the transcode job service.

All service-specific exceptions inherit from TranscodingPipelineError,
enabling consistent error handling and structured log records.

Exception hierarchy:
    TranscodingPipelineError (base)
    ├── JobSubmissionError
    ├── MessageDecodeError
    ├── JobNotFoundError
    ├── InvalidTransitionError
    ├── ObjectStoreError
    ├── TranscodeEngineError
    └── RetryableError
"""

from typing import Any


class TranscodingPipelineError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error code for metrics/filtering
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize service error.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (e.g., 'JOB_NOT_FOUND')
            details: Additional context for debugging
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with error_code, error_message, and details.
            Note: Uses 'error_message' instead of 'message' to avoid conflicts
            with Python's logging module which reserves 'message' internally.
        """
        return {
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_code!r}, {self.message!r})"


class JobSubmissionError(TranscodingPipelineError):
    """Raised when a job cannot be made runnable.

    This covers:
    - Job record write failures
    - Enqueue failures after the record was written (job stays queued
      with no message that could ever deliver it)
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "JOB_SUBMISSION_ERROR", details)


class MessageDecodeError(TranscodingPipelineError):
    """Raised when a queue message body is not a valid job descriptor."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "MESSAGE_DECODE_ERROR", details)


class JobNotFoundError(TranscodingPipelineError):
    """Raised when a job record does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", "JOB_NOT_FOUND", {"job_id": job_id})
        self.job_id = job_id


class InvalidTransitionError(TranscodingPipelineError):
    """Raised when a status change is not allowed by the job lifecycle.

    Raised both for statically invalid transitions and when a conditional
    write finds the stored status no longer matches an allowed predecessor.
    """

    def __init__(
        self,
        job_id: str,
        target_status: str,
        current_status: str | None = None,
    ) -> None:
        details = {
            "job_id": job_id,
            "current_status": current_status,
            "attempted_status": target_status,
        }
        message = f"Job {job_id} cannot move to {target_status}"
        if current_status:
            message += f" from {current_status}"
        super().__init__(message, "INVALID_TRANSITION", details)


class ObjectStoreError(TranscodingPipelineError):
    """Raised when a media object cannot be read from or written to S3."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "OBJECT_STORE_ERROR", details)


class TranscodeEngineError(TranscodingPipelineError):
    """Raised when the transcoding engine fails.

    This covers:
    - Non-zero FFmpeg exit
    - Missing FFmpeg binary
    - Engine timeout (when configured)
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "TRANSCODE_ENGINE_ERROR", details)


class RetryableError(TranscodingPipelineError):
    """Raised for transient errors that exhausted their in-call retries."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize retryable error.

        Args:
            message: Error description
            original_error: The underlying exception that triggered this
            details: Additional context
        """
        error_details = details or {}
        if original_error:
            error_details["original_error"] = str(original_error)
            error_details["original_error_type"] = type(original_error).__name__

        super().__init__(message, "RETRYABLE_ERROR", error_details)
        self.original_error = original_error
