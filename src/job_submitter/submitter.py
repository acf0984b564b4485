"""Job submission: allocate, persist, enqueue.

Ordering matters: the job record is written before the message is sent,
so a worker can never receive a message for a job that does not exist.
If the send fails after the record write, the job would sit in ``queued``
with nothing to ever deliver it, so the failure is raised to the caller
as a ``JobSubmissionError`` instead of being logged and dropped.
"""

import uuid
from datetime import datetime
from typing import Any, Callable

from aws_lambda_powertools import Logger

from ..shared.exceptions import JobSubmissionError
from ..shared.job_queue import SqsJobQueue
from ..shared.job_store import JobRecordStore, utc_now
from ..shared.models import (
    Job,
    JobMessage,
    JobStatus,
    JobSubmitRequest,
    SubmitResult,
    TranscodeOptions,
)

logger = Logger(service="job-submitter")


def build_output_ref(user_id: str, job_id: str, created_at: datetime) -> str:
    """Derive the output key from owner, job and submission time.

    Example:
        >>> build_output_ref("u1", "abc", datetime.fromisoformat("2024-01-01T00:00:00+00:00"))
        'processed/u1/processed_abc_1704067200000.mp4'
    """
    epoch_ms = int(created_at.timestamp() * 1000)
    return f"processed/{user_id}/processed_{job_id}_{epoch_ms}.mp4"


class JobSubmitter:
    """Create runnable transcode jobs."""

    def __init__(
        self,
        store: JobRecordStore,
        queue: SqsJobQueue,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._store = store
        self._queue = queue
        self._clock = clock
        self._id_factory = id_factory

    def submit(
        self,
        user_id: str,
        input_ref: str,
        options: TranscodeOptions | dict[str, Any] | None = None,
        video_id: str | None = None,
    ) -> SubmitResult:
        """Submit a transcode request.

        Args:
            user_id: Authenticated owner of the job
            input_ref: S3 key of the source media
            options: Transcoding options (defaults filled in for missing keys)
            video_id: Optional source video record

        Returns:
            SubmitResult with the new jobId and ``queued`` status

        Raises:
            pydantic.ValidationError: If the request is malformed
            JobSubmissionError: If the record write or the enqueue fails
        """
        request = JobSubmitRequest(
            user_id=user_id,
            input_ref=input_ref,
            options=options if options is not None else TranscodeOptions(),
            video_id=video_id,
        )
        return self.submit_request(request)

    def submit_request(self, request: JobSubmitRequest) -> SubmitResult:
        """Submit an already validated request."""
        job_id = self._id_factory()
        created_at = self._clock()
        output_ref = build_output_ref(request.user_id, job_id, created_at)

        job = Job(
            job_id=job_id,
            user_id=request.user_id,
            video_id=request.video_id,
            input_ref=request.input_ref,
            output_ref=output_ref,
            options=request.options,
            status=JobStatus.QUEUED,
            progress=0,
            created_at=created_at,
        )

        try:
            self._store.create(job)
        except Exception as e:
            logger.error(
                "Failed to write job record",
                extra={"job_id": job_id, "user_id": request.user_id, "error": str(e)},
            )
            raise JobSubmissionError(
                f"Failed to write job record: {e}",
                {"job_id": job_id, "stage": "record"},
            ) from e

        message = JobMessage(
            job_id=job_id,
            input_ref=request.input_ref,
            output_ref=output_ref,
            options=request.options,
        )

        try:
            self._queue.send(message)
        except Exception as e:
            logger.error(
                "Failed to enqueue job; record left queued without a message",
                extra={"job_id": job_id, "user_id": request.user_id, "error": str(e)},
            )
            raise JobSubmissionError(
                f"Failed to enqueue job {job_id}: {e}",
                {"job_id": job_id, "stage": "enqueue"},
            ) from e

        logger.info(
            "Job submitted",
            extra={
                "job_id": job_id,
                "user_id": request.user_id,
                "input_ref": request.input_ref,
                "output_ref": output_ref,
            },
        )

        return SubmitResult(job_id=job_id, status=JobStatus.QUEUED, output_ref=output_ref)
