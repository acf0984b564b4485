"""Pytest configuration and shared fixtures.

This module provides:
- AWS credential mocking for moto
- Mocked S3 bucket, DynamoDB tables and SQS queues (with dead-letter redrive)
- Store/queue objects wired to the mocked resources
- A scriptable fake transcoding engine
- Environment variable setup
"""

import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator

import boto3
import pytest
from moto import mock_aws

# Set dummy AWS credentials BEFORE importing any application code
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

# Set application environment variables
os.environ["ENVIRONMENT"] = "dev"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["MEDIA_BUCKET"] = "test-media-bucket"
os.environ["JOBS_TABLE"] = "test-jobs"
os.environ["VIDEOS_TABLE"] = "test-videos"
os.environ["MAX_RECEIVE_COUNT"] = "3"
os.environ["WAIT_TIME_SECONDS"] = "0"
os.environ["VISIBILITY_TIMEOUT_SECONDS"] = "0"
os.environ["RETRY_DELAY_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["POWERTOOLS_TRACE_DISABLED"] = "true"
os.environ["POWERTOOLS_DEV"] = "true"

from src.shared.aws_clients import clear_client_cache  # noqa: E402
from src.shared.config import clear_settings_cache  # noqa: E402
from src.shared.exceptions import TranscodeEngineError  # noqa: E402
from src.shared.models import TranscodeOptions  # noqa: E402

MEDIA_BUCKET = "test-media-bucket"
JOBS_TABLE = "test-jobs"
VIDEOS_TABLE = "test-videos"
MAX_RECEIVE_COUNT = 3


# =============================================================================
# AWS Fixtures
# =============================================================================


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def aws(aws_credentials: None, monkeypatch: pytest.MonkeyPatch) -> Generator[SimpleNamespace, None, None]:
    """Mocked AWS account with the bucket, tables and queues the service uses.

    The main queue has a zero visibility timeout so an unacknowledged message
    is redelivered on the next receive, and a redrive policy that moves it to
    the dead-letter queue after MAX_RECEIVE_COUNT deliveries.
    """
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=MEDIA_BUCKET)

        dynamodb = boto3.client("dynamodb", region_name="us-east-1")
        dynamodb.create_table(
            TableName=JOBS_TABLE,
            AttributeDefinitions=[
                {"AttributeName": "jobId", "AttributeType": "S"},
                {"AttributeName": "userId", "AttributeType": "S"},
            ],
            KeySchema=[
                {"AttributeName": "jobId", "KeyType": "HASH"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "userId-index",
                    "KeySchema": [{"AttributeName": "userId", "KeyType": "HASH"}],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        dynamodb.create_table(
            TableName=VIDEOS_TABLE,
            AttributeDefinitions=[
                {"AttributeName": "videoId", "AttributeType": "S"},
            ],
            KeySchema=[
                {"AttributeName": "videoId", "KeyType": "HASH"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        sqs = boto3.client("sqs", region_name="us-east-1")
        dlq_url = sqs.create_queue(
            QueueName="test-jobs-dlq",
            Attributes={"VisibilityTimeout": "0"},
        )["QueueUrl"]
        dlq_arn = sqs.get_queue_attributes(
            QueueUrl=dlq_url,
            AttributeNames=["QueueArn"],
        )["Attributes"]["QueueArn"]
        queue_url = sqs.create_queue(
            QueueName="test-jobs",
            Attributes={
                "VisibilityTimeout": "0",
                "RedrivePolicy": json.dumps(
                    {"deadLetterTargetArn": dlq_arn, "maxReceiveCount": str(MAX_RECEIVE_COUNT)}
                ),
            },
        )["QueueUrl"]

        monkeypatch.setenv("QUEUE_URL", queue_url)
        monkeypatch.setenv("DEAD_LETTER_QUEUE_URL", dlq_url)
        clear_settings_cache()
        clear_client_cache()

        yield SimpleNamespace(
            s3=s3,
            dynamodb=dynamodb,
            sqs=sqs,
            bucket=MEDIA_BUCKET,
            queue_url=queue_url,
            dlq_url=dlq_url,
        )

    clear_client_cache()
    clear_settings_cache()


@pytest.fixture
def job_store(aws: SimpleNamespace) -> Any:
    from src.shared.job_store import JobRecordStore

    return JobRecordStore()


@pytest.fixture
def video_store(aws: SimpleNamespace) -> Any:
    from src.shared.video_store import VideoRecordStore

    return VideoRecordStore()


@pytest.fixture
def object_store(aws: SimpleNamespace) -> Any:
    from src.shared.object_store import S3ObjectStore

    return S3ObjectStore()


@pytest.fixture
def main_queue(aws: SimpleNamespace) -> Any:
    from src.shared.job_queue import SqsJobQueue

    return SqsJobQueue(aws.queue_url)


@pytest.fixture
def dead_letter_queue(aws: SimpleNamespace) -> Any:
    from src.shared.job_queue import SqsJobQueue

    return SqsJobQueue(aws.dlq_url)


@pytest.fixture
def submitter(job_store: Any, main_queue: Any) -> Any:
    from src.job_submitter.submitter import JobSubmitter

    return JobSubmitter(store=job_store, queue=main_queue)


@pytest.fixture
def source_video(aws: SimpleNamespace) -> str:
    """Upload a source video and return its key."""
    key = "in/a.mp4"
    aws.s3.put_object(Bucket=aws.bucket, Key=key, Body=b"source video bytes")
    return key


# =============================================================================
# Fake Transcoding Engine
# =============================================================================


class FakeEngine:
    """Scriptable stand-in for FFmpeg.

    Reports the given progress fractions, then either writes ``output`` to
    the output path or raises ``TranscodeEngineError``.

    Args:
        fail_times: Fail this many runs, then succeed
        always_fail: Fail every run
        fractions: Progress fractions reported per run
        output: Bytes written to the output path on success
    """

    def __init__(
        self,
        fail_times: int = 0,
        always_fail: bool = False,
        fractions: tuple[float, ...] = (0.25, 0.5, 0.75, 1.0),
        output: bytes = b"transcoded video bytes",
    ) -> None:
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.fractions = fractions
        self.output = output
        self.runs: list[dict[str, Any]] = []

    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: TranscodeOptions,
        on_progress: Any,
    ) -> None:
        self.runs.append(
            {
                "input_path": input_path,
                "output_path": output_path,
                "options": options,
                "input_bytes": Path(input_path).read_bytes(),
            }
        )

        for index, fraction in enumerate(self.fractions):
            on_progress(fraction, f"00:00:{index:02d}.00")

        if self.always_fail or len(self.runs) <= self.fail_times:
            raise TranscodeEngineError("engine crashed", {"run": len(self.runs)})

        Path(output_path).write_bytes(self.output)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_engine() -> type[FakeEngine]:
    return FakeEngine


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_options() -> dict:
    """Options as sent by the upload UI."""
    return {"resolution": "1280x720", "crf": "18"}


@pytest.fixture
def full_options_dict() -> dict:
    """Every recognized option key, camelCase as on the wire."""
    return {
        "resolution": "1920x1080",
        "videoCodec": "libx265",
        "audioCodec": "libopus",
        "videoBitrate": "4000k",
        "audioBitrate": "160k",
        "fps": 24,
        "preset": "medium",
        "crf": 20,
    }


# =============================================================================
# Lambda Fixtures
# =============================================================================


@pytest.fixture
def lambda_context() -> SimpleNamespace:
    """Minimal Lambda context accepted by Powertools decorators."""
    return SimpleNamespace(
        function_name="test-function",
        function_version="$LATEST",
        memory_limit_in_mb=128,
        invoked_function_arn="arn:aws:lambda:us-east-1:123456789012:function:test-function",
        aws_request_id="52fdfc07-2182-154f-163f-5f0f9a621d72",
        log_group_name="/aws/lambda/test-function",
        log_stream_name="2024/01/01/[$LATEST]abcdef",
        get_remaining_time_in_millis=lambda: 30000,
    )
