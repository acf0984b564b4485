"""Job record store backed by DynamoDB.

The jobs table is the single source of truth for job state. Queue messages
only carry the intent to process a job.

Every mutation is a partial-attribute ``update_item``: concurrent writers
touching disjoint attributes (progress vs. status) never clobber each other,
and writers touching the same attribute resolve last-writer-wins. Status
changes are conditional on the stored status being an allowed predecessor,
so the lifecycle in ``job_states`` holds even with several workers and the
dead-letter reconciler writing to the same record.

Table layout:
    hash key:  jobId (S)
    GSI:       userId-index, hash key userId (S)
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from .aws_clients import get_dynamodb_resource, is_conditional_check_failure, retry_with_backoff
from .config import get_settings
from .exceptions import InvalidTransitionError, JobNotFoundError
from .job_states import allowed_predecessors
from .models import Job, JobStatus

logger = Logger(service="job-store")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_dynamo(value: Any) -> Any:
    """Convert JSON-compatible data to DynamoDB types (floats become Decimal)."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int/float, recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, set):
        return {from_dynamo(v) for v in value}
    return value


class JobRecordStore:
    """Read and mutate job records.

    Example:
        >>> store = JobRecordStore()
        >>> store.mark_processing("2f1c...")
        >>> store.update_progress("2f1c...", 42, "00:00:12.50")
    """

    def __init__(
        self,
        table_name: str | None = None,
        user_index: str | None = None,
        dynamodb: Any = None,
    ) -> None:
        settings = get_settings()
        resource = dynamodb or get_dynamodb_resource()
        self.table_name = table_name or settings.jobs_table
        self.user_index = user_index or settings.jobs_user_index
        self._table = resource.Table(self.table_name)
        self._max_retries = settings.max_retries
        self._retry_delay = settings.retry_delay_seconds

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Job | None:
        """Fetch one job record (strongly consistent), or None if absent."""
        response = self._table.get_item(Key={"jobId": job_id}, ConsistentRead=True)
        item = response.get("Item")
        if not item:
            return None
        return Job.model_validate(from_dynamo(item))

    def list_by_user(self, user_id: str) -> list[Job]:
        """List all jobs owned by ``user_id`` via the owner index."""
        jobs: list[Job] = []
        query_kwargs: dict[str, Any] = {
            "IndexName": self.user_index,
            "KeyConditionExpression": Key("userId").eq(user_id),
        }

        while True:
            response = self._table.query(**query_kwargs)
            jobs.extend(Job.model_validate(from_dynamo(item)) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            query_kwargs["ExclusiveStartKey"] = last_key

        return sorted(jobs, key=lambda j: j.created_at)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, job: Job) -> None:
        """Write the initial record; fails if ``jobId`` already exists."""
        self._call(
            lambda: self._table.put_item(
                Item=to_dynamo(job.to_dict()),
                ConditionExpression="attribute_not_exists(jobId)",
            ),
            "create_job",
        )
        logger.info(
            "Created job record",
            extra={"job_id": job.job_id, "user_id": job.user_id, "status": job.status.value},
        )

    def update(
        self,
        job_id: str,
        attributes: dict[str, Any],
        set_once: dict[str, Any] | None = None,
        remove: Iterable[str] = (),
        condition: str | None = None,
        condition_values: dict[str, Any] | None = None,
        condition_names: dict[str, str] | None = None,
    ) -> None:
        """Apply a partial update to one record.

        Args:
            job_id: Record key
            attributes: Attributes to SET (camelCase names)
            set_once: Attributes to SET only if not already present
            remove: Attributes to REMOVE
            condition: Optional ConditionExpression
            condition_values: Value placeholders used in ``condition``
            condition_names: Name placeholders used in ``condition``

        Raises:
            ClientError: ConditionalCheckFailedException when ``condition`` fails
        """
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        set_clauses: list[str] = []

        for index, (name, value) in enumerate(attributes.items()):
            names[f"#a{index}"] = name
            values[f":v{index}"] = value
            set_clauses.append(f"#a{index} = :v{index}")

        for index, (name, value) in enumerate((set_once or {}).items()):
            names[f"#o{index}"] = name
            values[f":o{index}"] = value
            set_clauses.append(f"#o{index} = if_not_exists(#o{index}, :o{index})")

        remove_clauses = []
        for index, name in enumerate(remove):
            names[f"#r{index}"] = name
            remove_clauses.append(f"#r{index}")

        expression = ""
        if set_clauses:
            expression += "SET " + ", ".join(set_clauses)
        if remove_clauses:
            expression += " REMOVE " + ", ".join(remove_clauses)

        kwargs: dict[str, Any] = {
            "Key": {"jobId": job_id},
            "UpdateExpression": expression.strip(),
            "ExpressionAttributeNames": names,
        }
        if condition:
            kwargs["ConditionExpression"] = condition
            names.update(condition_names or {})
            values.update(condition_values or {})
        if values:
            kwargs["ExpressionAttributeValues"] = to_dynamo(values)

        self._call(lambda: self._table.update_item(**kwargs), "update_job")

    def transition(
        self,
        job_id: str,
        new_status: JobStatus,
        attributes: dict[str, Any] | None = None,
        set_once: dict[str, Any] | None = None,
        remove: Iterable[str] = (),
    ) -> None:
        """Move a job to ``new_status`` if its stored status allows it.

        Raises:
            JobNotFoundError: If the record does not exist
            InvalidTransitionError: If the stored status does not allow the move
        """
        predecessors = allowed_predecessors(new_status)
        if not predecessors:
            raise InvalidTransitionError(job_id, new_status.value)

        placeholders = {f":from{i}": status.value for i, status in enumerate(predecessors)}
        condition = f"#status IN ({', '.join(placeholders)})"

        now = utc_now().isoformat()
        fields = {"status": new_status.value, "updatedAt": now, **(attributes or {})}

        try:
            self.update(
                job_id,
                fields,
                set_once=set_once,
                remove=remove,
                condition=condition,
                condition_values=placeholders,
                condition_names={"#status": "status"},
            )
        except ClientError as e:
            if not is_conditional_check_failure(e):
                raise
            current = self.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            raise InvalidTransitionError(job_id, new_status.value, current.status.value)

        logger.info(
            "Job status updated",
            extra={"job_id": job_id, "status": new_status.value},
        )

    def mark_processing(self, job_id: str) -> None:
        now = utc_now().isoformat()
        self.transition(job_id, JobStatus.PROCESSING, set_once={"startedAt": now}, remove=("error",))

    def mark_completed(self, job_id: str, output_checksum: str | None = None) -> None:
        now = utc_now().isoformat()
        attributes: dict[str, Any] = {"progress": 100}
        if output_checksum:
            attributes["outputChecksum"] = output_checksum
        self.transition(
            job_id,
            JobStatus.COMPLETED,
            attributes=attributes,
            set_once={"completedAt": now},
            remove=("error",),
        )

    def mark_failed(self, job_id: str, error: str) -> None:
        now = utc_now().isoformat()
        self.transition(
            job_id,
            JobStatus.FAILED,
            attributes={"error": error, "failedAt": now},
        )

    def mark_permanently_failed(self, job_id: str, error: str, retried_count: int) -> None:
        now = utc_now().isoformat()
        self.transition(
            job_id,
            JobStatus.PERMANENTLY_FAILED,
            attributes={"error": error, "failedAt": now, "retriedCount": retried_count},
        )

    def update_progress(self, job_id: str, percent: int, time_processed: str | None = None) -> bool:
        """Record progress for a processing job.

        The write only lands while the job is ``processing`` and never lowers
        the stored value, so progress is monotonic even across redeliveries.

        Returns:
            True if the value was written, False if it was stale or the job
            is no longer processing
        """
        attributes: dict[str, Any] = {"progress": percent, "updatedAt": utc_now().isoformat()}
        if time_processed:
            attributes["timeProcessed"] = time_processed

        try:
            self.update(
                job_id,
                attributes,
                condition="#status = :processing AND (attribute_not_exists(#progress) OR #progress <= :progress)",
                condition_values={":processing": JobStatus.PROCESSING.value, ":progress": percent},
                condition_names={"#status": "status", "#progress": "progress"},
            )
        except ClientError as e:
            if not is_conditional_check_failure(e):
                raise
            logger.debug(
                "Skipped stale progress update",
                extra={"job_id": job_id, "progress": percent},
            )
            return False
        return True

    def _call(self, func: Any, operation: str) -> Any:
        return retry_with_backoff(
            func,
            operation=operation,
            max_retries=self._max_retries,
            base_delay=self._retry_delay,
        )
