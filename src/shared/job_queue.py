"""SQS adapter for job messages.

One ``SqsJobQueue`` instance addresses exactly one queue. The main queue
and its dead-letter queue are two separate instances built from two
separate URLs; nothing ever repoints an instance at a different queue.

Delivery is at-least-once. A received message stays hidden for the
visibility timeout and reappears unless deleted. After the queue's
``maxReceiveCount`` deliveries, SQS moves it to the dead-letter queue.
"""

from dataclasses import dataclass
from typing import Any

from aws_lambda_powertools import Logger

from .aws_clients import get_sqs_client
from .models import JobMessage

logger = Logger(service="job-queue")


@dataclass(frozen=True)
class ReceivedMessage:
    """A delivered, not yet acknowledged message."""

    message_id: str
    receipt_handle: str
    body: str
    receive_count: int

    def decode(self) -> JobMessage:
        """Decode the body as a job descriptor.

        Raises:
            MessageDecodeError: If the body is not a valid job message
        """
        return JobMessage.from_json(self.body)


class SqsJobQueue:
    """Send, receive and acknowledge messages on one SQS queue."""

    def __init__(self, queue_url: str, sqs_client: Any = None) -> None:
        if not queue_url:
            raise ValueError("queue_url is required")
        self.queue_url = queue_url
        self._sqs = sqs_client or get_sqs_client()

    def send(self, message: JobMessage) -> str:
        """Enqueue a job descriptor.

        Returns:
            SQS message ID
        """
        response = self._sqs.send_message(
            QueueUrl=self.queue_url,
            MessageBody=message.to_json(),
        )
        logger.info(
            "Enqueued job message",
            extra={"job_id": message.job_id, "message_id": response["MessageId"]},
        )
        return response["MessageId"]

    def receive(
        self,
        max_messages: int = 1,
        wait_time_seconds: int = 0,
        visibility_timeout: int | None = None,
    ) -> list[ReceivedMessage]:
        """Receive up to ``max_messages`` messages.

        Args:
            max_messages: 1-10
            wait_time_seconds: Long-poll wait (0 = return immediately)
            visibility_timeout: Override of the queue's visibility timeout

        Returns:
            Zero or more received messages
        """
        kwargs: dict[str, Any] = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": max_messages,
            "WaitTimeSeconds": wait_time_seconds,
            "AttributeNames": ["ApproximateReceiveCount"],
        }
        if visibility_timeout is not None:
            kwargs["VisibilityTimeout"] = visibility_timeout

        response = self._sqs.receive_message(**kwargs)

        return [
            ReceivedMessage(
                message_id=raw["MessageId"],
                receipt_handle=raw["ReceiptHandle"],
                body=raw["Body"],
                receive_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            )
            for raw in response.get("Messages", [])
        ]

    def delete(self, message: ReceivedMessage) -> None:
        """Acknowledge a message so it is never redelivered."""
        self._sqs.delete_message(
            QueueUrl=self.queue_url,
            ReceiptHandle=message.receipt_handle,
        )
        logger.debug("Deleted message", extra={"message_id": message.message_id})
