"""Worker poll loop.

One worker instance holds at most one message at a time: receive one,
run the pipeline to completion, delete on success, leave it on failure.
Retry is entirely redelivery-driven (visibility timeout, then dead-letter
queue after ``maxReceiveCount``); there is no in-process retry loop.

Scale out by running more worker instances against the same queue.

Every ``reconcile_every`` cycles the loop also drains the dead-letter
queue, so no separate scheduler is needed.
"""

import time
from enum import Enum
from typing import Callable

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from ..dead_letter.reconciler import DeadLetterReconciler
from ..shared.exceptions import MessageDecodeError
from ..shared.job_queue import ReceivedMessage, SqsJobQueue
from .pipeline import TranscodePipeline

logger = Logger(service="transcode-worker")
metrics = Metrics(service="transcode-worker", namespace="VideoTranscoding")


class PollOutcome(str, Enum):
    """What happened in one poll cycle."""

    EMPTY = "empty"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    MALFORMED = "malformed"
    QUEUE_ERROR = "queue_error"


class WorkerPoller:
    """Long-poll the job queue and process one message per cycle."""

    def __init__(
        self,
        queue: SqsJobQueue,
        pipeline: TranscodePipeline,
        reconciler: DeadLetterReconciler | None = None,
        wait_time_seconds: int = 20,
        visibility_timeout: int | None = None,
        reconcile_every: int = 10,
        error_backoff_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._queue = queue
        self._pipeline = pipeline
        self._reconciler = reconciler
        self._wait_time_seconds = wait_time_seconds
        self._visibility_timeout = visibility_timeout
        self._reconcile_every = max(1, reconcile_every)
        self._error_backoff_seconds = error_backoff_seconds
        self._sleep = sleep
        self._cycles = 0
        self._stopping = False

    @property
    def cycles(self) -> int:
        return self._cycles

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        self._stopping = True

    def run(self, max_cycles: int | None = None) -> int:
        """Poll until stopped (or ``max_cycles`` cycles have run).

        Returns:
            Number of cycles run
        """
        logger.info(
            "Worker started",
            extra={"queue_url": self._queue.queue_url, "reconcile_every": self._reconcile_every},
        )
        ran = 0
        while not self._stopping and (max_cycles is None or ran < max_cycles):
            self.poll_once()
            metrics.flush_metrics()
            ran += 1

        logger.info("Worker stopped", extra={"cycles": ran})
        return ran

    def poll_once(self) -> PollOutcome:
        """Run one poll cycle; never raises for job or queue errors."""
        self._cycles += 1

        try:
            outcome = self._poll()
        except Exception:
            logger.exception("Error in worker loop, backing off")
            metrics.add_metric(name="QueueErrors", unit=MetricUnit.Count, value=1)
            self._sleep(self._error_backoff_seconds)
            outcome = PollOutcome.QUEUE_ERROR

        if self._reconciler is not None and self._cycles % self._reconcile_every == 0:
            self._reconcile()

        return outcome

    def _poll(self) -> PollOutcome:
        messages = self._queue.receive(
            max_messages=1,
            wait_time_seconds=self._wait_time_seconds,
            visibility_timeout=self._visibility_timeout,
        )
        if not messages:
            logger.debug("No messages, continuing to poll")
            return PollOutcome.EMPTY

        return self._handle(messages[0])

    def _handle(self, received: ReceivedMessage) -> PollOutcome:
        try:
            message = received.decode()
        except MessageDecodeError as e:
            # Not deleted: redelivery and the dead-letter queue keep it visible
            logger.error(
                "Skipping malformed job message",
                extra={"message_id": received.message_id, "receive_count": received.receive_count, **e.to_dict()},
            )
            metrics.add_metric(name="MalformedMessages", unit=MetricUnit.Count, value=1)
            return PollOutcome.MALFORMED

        logger.info(
            "Received job",
            extra={"job_id": message.job_id, "receive_count": received.receive_count},
        )

        try:
            self._pipeline.run(message)
        except Exception as e:
            logger.warning(
                "Job failed, leaving message for redelivery",
                extra={"job_id": message.job_id, "receive_count": received.receive_count, "error": str(e)},
            )
            metrics.add_metric(name="JobsFailed", unit=MetricUnit.Count, value=1)
            return PollOutcome.FAILED

        self._queue.delete(received)
        metrics.add_metric(name="JobsCompleted", unit=MetricUnit.Count, value=1)
        logger.info("Deleted message for completed job", extra={"job_id": message.job_id})
        return PollOutcome.SUCCEEDED

    def _reconcile(self) -> None:
        try:
            marked = self._reconciler.drain()
        except Exception:
            logger.exception("Dead-letter reconciliation failed")
            return

        if marked:
            metrics.add_metric(name="JobsPermanentlyFailed", unit=MetricUnit.Count, value=marked)
