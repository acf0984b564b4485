"""Transcode pipeline: one job, start to finish.

    fetch input ──► engine (progress sink) ──► store output ──► record completion

The job record is updated at every phase transition. Any error in fetch,
engine or upload is written to the record as ``failed`` and re-raised so
the poller leaves the message for redelivery.

Because the queue delivers at-least-once, a run may repeat for the same
job (e.g., crash after upload but before the message was deleted). Every
step is safe to repeat: uploads overwrite the same ``outputRef``, record
updates are per-attribute, and a job already ``completed`` is not run
again.
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from ..shared.exceptions import JobNotFoundError, RetryableError
from ..shared.job_states import ensure_transition
from ..shared.job_store import JobRecordStore, utc_now
from ..shared.models import JobMessage, JobStatus, ProcessedVersion
from ..shared.object_store import S3ObjectStore
from ..shared.video_store import VideoRecordStore
from .engine import EngineProgressCallback, TranscodeEngine

logger = Logger(service="transcode-worker")

# Narrow capability handed to the engine run: (percent 0-100, media timemark)
ProgressSink = Callable[[int, str | None], None]


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one successful pipeline run."""

    job_id: str
    output_ref: str
    output_checksum: str | None = None
    skipped: bool = False


def fraction_to_percent(fraction: float) -> int:
    """Map engine-reported completion to an integer percentage in 0-100."""
    return max(0, min(100, int(round(fraction * 100))))


class TranscodePipeline:
    """Drive a single job through fetch, transcode, upload and completion."""

    def __init__(
        self,
        store: JobRecordStore,
        object_store: S3ObjectStore,
        engine: TranscodeEngine,
        video_store: VideoRecordStore | None = None,
        work_dir: str | None = None,
    ) -> None:
        self._store = store
        self._objects = object_store
        self._engine = engine
        self._videos = video_store
        self._work_dir = work_dir

    def run(self, message: JobMessage) -> PipelineResult:
        """Process one job message.

        Raises:
            JobNotFoundError: If the job record does not exist
            InvalidTransitionError: If the job cannot enter ``processing``
            Exception: Any fetch/engine/upload error, after it was recorded
        """
        job_id = message.job_id
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.status == JobStatus.COMPLETED:
            logger.info(
                "Job already completed, acknowledging redelivery",
                extra={"job_id": job_id},
            )
            return PipelineResult(
                job_id=job_id,
                output_ref=job.output_ref,
                output_checksum=job.output_checksum,
                skipped=True,
            )

        ensure_transition(job_id, job.status, JobStatus.PROCESSING)
        self._store.mark_processing(job_id)
        logger.info(
            "Job processing started",
            extra={"job_id": job_id, "input_ref": message.input_ref, "previous_status": job.status.value},
        )

        try:
            with tempfile.TemporaryDirectory(prefix=f"job-{job_id}-", dir=self._work_dir) as tmp:
                input_path = Path(tmp) / f"input{PurePosixPath(message.input_ref).suffix}"
                output_path = Path(tmp) / f"output{PurePosixPath(message.output_ref).suffix or '.mp4'}"

                self._objects.download(message.input_ref, input_path)
                self._engine.transcode(
                    input_path,
                    output_path,
                    message.options,
                    self._engine_callback(self._progress_sink(job_id)),
                )
                checksum = self._objects.upload(output_path, message.output_ref)

            if job.video_id and self._videos is not None:
                self._videos.add_processed_version(
                    job.video_id,
                    ProcessedVersion(
                        job_id=job_id,
                        output_ref=message.output_ref,
                        bucket=self._objects.bucket,
                        options=message.options,
                        created_at=utc_now(),
                    ),
                )

            self._store.mark_completed(job_id, output_checksum=checksum)

        except Exception as e:
            self._record_failure(job_id, e)
            raise

        logger.info(
            "Job completed",
            extra={"job_id": job_id, "output_ref": message.output_ref, "checksum": checksum},
        )
        return PipelineResult(job_id=job_id, output_ref=message.output_ref, output_checksum=checksum)

    def _progress_sink(self, job_id: str) -> ProgressSink:
        def sink(percent: int, timemark: str | None) -> None:
            try:
                self._store.update_progress(job_id, percent, timemark)
            except (ClientError, BotoCoreError, RetryableError) as e:
                # A lost progress write is recovered by the next callback
                logger.warning(
                    "Progress update failed",
                    extra={"job_id": job_id, "progress": percent, "error": str(e)},
                )

        return sink

    @staticmethod
    def _engine_callback(sink: ProgressSink) -> EngineProgressCallback:
        def on_progress(fraction: float, timemark: str | None) -> None:
            sink(fraction_to_percent(fraction), timemark)

        return on_progress

    def _record_failure(self, job_id: str, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error(
            "Job processing failed",
            extra={"job_id": job_id, "error": message, "error_type": type(error).__name__},
        )
        try:
            self._store.mark_failed(job_id, message)
        except Exception:
            logger.exception("Failed to record job failure", extra={"job_id": job_id})
