"""AWS clients shared by the submitter, status handler and workers.

Clients are created once per process and cached. Record writes go through
``retry_with_backoff`` so DynamoDB throttling and dropped connections do
not fail a job that is otherwise healthy.
"""

import random
import time
from functools import lru_cache
from typing import Any, Callable

import boto3
from aws_lambda_powertools import Logger
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .config import get_settings
from .exceptions import RetryableError

logger = Logger(service="aws-clients")

AWS_CONFIG = Config(
    retries={
        "max_attempts": 3,
        "mode": "adaptive",
    },
    connect_timeout=5,
    read_timeout=30,
)

# A receive can block for up to 20 seconds; the socket must outlive it
SQS_CONFIG = AWS_CONFIG.merge(Config(read_timeout=45))

# Error codes that indicate transient failures
RETRYABLE_ERROR_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "TransactionConflictException",
    "ServiceUnavailable",
    "InternalServerError",
    "InternalError",
    "Throttling",
}

TRANSIENT_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ReadTimeoutError,
)


@lru_cache(maxsize=1)
def get_s3_client() -> Any:
    """Get cached S3 client for the media bucket."""
    return boto3.client(
        "s3",
        region_name=get_settings().aws_region,
        config=AWS_CONFIG,
    )


@lru_cache(maxsize=1)
def get_sqs_client() -> Any:
    """Get cached SQS client for the job queue and its dead-letter queue."""
    return boto3.client(
        "sqs",
        region_name=get_settings().aws_region,
        config=SQS_CONFIG,
    )


@lru_cache(maxsize=1)
def get_dynamodb_resource() -> Any:
    """Get cached DynamoDB resource for the jobs and videos tables."""
    return boto3.resource(
        "dynamodb",
        region_name=get_settings().aws_region,
        config=AWS_CONFIG,
    )


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_conditional_check_failure(error: ClientError) -> bool:
    """Check if a DynamoDB write was rejected by its ConditionExpression."""
    return error_code(error) == "ConditionalCheckFailedException"


def is_retryable_error(error: Exception) -> bool:
    """Check if an AWS error is worth retrying.

    Args:
        error: Exception raised by a boto3 call

    Returns:
        True for throttling/server-side codes and dropped connections
    """
    if isinstance(error, TRANSIENT_CONNECTION_ERRORS):
        return True
    if isinstance(error, ClientError):
        return error_code(error) in RETRYABLE_ERROR_CODES
    return False


def retry_with_backoff(
    func: Callable[..., Any],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    operation: str = "aws_call",
) -> Any:
    """Call ``func`` until it succeeds or a non-transient error occurs.

    Delay doubles per attempt (capped at ``max_delay``) with ±25% jitter so
    workers throttled together do not retry in lockstep.

    Args:
        func: Zero-argument callable wrapping one AWS request
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry (seconds)
        max_delay: Upper bound on any single delay (seconds)
        operation: Name used in logs and the final error

    Returns:
        Whatever ``func`` returns

    Raises:
        RetryableError: If every attempt failed transiently
        ClientError: For non-transient AWS errors (including failed conditions)
    """
    last_error: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            return func()
        except (ClientError, *TRANSIENT_CONNECTION_ERRORS) as e:
            if not is_retryable_error(e):
                raise
            last_error = e

        if attempt < max_retries:
            delay = min(base_delay * (2**attempt), max_delay)
            delay *= 0.75 + random.random() * 0.5
            logger.debug(
                "Retrying transient AWS error",
                extra={"operation": operation, "attempt": attempt + 1, "delay_seconds": round(delay, 3)},
            )
            time.sleep(delay)

    raise RetryableError(
        f"{operation} failed after {max_retries + 1} attempts",
        original_error=last_error,
        details={"operation": operation},
    )


def clear_client_cache() -> None:
    """Drop cached clients so the next call builds fresh ones (tests)."""
    get_s3_client.cache_clear()
    get_sqs_client.cache_clear()
    get_dynamodb_resource.cache_clear()
