"""Dead-letter reconciliation.

Messages land on the dead-letter queue when SQS has delivered them
``maxReceiveCount`` times without a delete. The reconciler turns each of
them into a terminal ``permanently_failed`` job record and deletes the
message. It never re-attempts processing.

This is the only code path that produces ``permanently_failed``.
"""

import json

from aws_lambda_powertools import Logger

from ..shared.exceptions import InvalidTransitionError, JobNotFoundError, MessageDecodeError
from ..shared.job_queue import ReceivedMessage, SqsJobQueue
from ..shared.job_store import JobRecordStore

logger = Logger(service="dead-letter-reconciler")

EXHAUSTED_RETRIES_ERROR = "exhausted retries"


def extract_job_id(message: ReceivedMessage) -> str:
    """Read only the jobId from a dead-lettered message.

    Options are not validated here: a message that failed because of its
    options must still resolve to its job.

    Raises:
        MessageDecodeError: If the body has no usable jobId
    """
    try:
        job_id = json.loads(message.body).get("jobId")
    except (ValueError, AttributeError) as e:
        raise MessageDecodeError(
            f"Dead-letter message is not a JSON object: {e}",
            {"message_id": message.message_id},
        )
    if not isinstance(job_id, str) or not job_id:
        raise MessageDecodeError(
            "Dead-letter message has no jobId",
            {"message_id": message.message_id},
        )
    return job_id


class DeadLetterReconciler:
    """Mark dead-lettered jobs permanently failed."""

    def __init__(
        self,
        dead_letter_queue: SqsJobQueue,
        store: JobRecordStore,
        max_receive_count: int,
        batch_size: int = 10,
    ) -> None:
        self._dlq = dead_letter_queue
        self._store = store
        self._max_receive_count = max_receive_count
        self._batch_size = batch_size

    def drain(self) -> int:
        """Read one batch from the dead-letter queue without waiting.

        Returns:
            Number of jobs marked ``permanently_failed``
        """
        messages = self._dlq.receive(max_messages=self._batch_size, wait_time_seconds=0)
        if not messages:
            return 0

        marked = 0
        for message in messages:
            if self._reconcile(message):
                marked += 1

        logger.info(
            "Dead-letter drain complete",
            extra={"received": len(messages), "marked_permanently_failed": marked},
        )
        return marked

    def _reconcile(self, message: ReceivedMessage) -> bool:
        try:
            job_id = extract_job_id(message)
        except MessageDecodeError as e:
            # Left in place; visible to operators through queue depth alarms
            logger.error("Unreadable dead-letter message", extra=e.to_dict())
            return False

        marked = False
        try:
            self._store.mark_permanently_failed(
                job_id,
                EXHAUSTED_RETRIES_ERROR,
                retried_count=self._max_receive_count,
            )
            marked = True
            logger.warning(
                "Job permanently failed",
                extra={"job_id": job_id, "retried_count": self._max_receive_count},
            )
        except InvalidTransitionError as e:
            logger.warning("Dead-lettered job already terminal", extra=e.to_dict())
        except JobNotFoundError as e:
            logger.error("Dead-lettered job has no record", extra=e.to_dict())
        except Exception:
            logger.exception("Failed to record permanent failure, will retry", extra={"job_id": job_id})
            return False

        self._dlq.delete(message)
        return marked
