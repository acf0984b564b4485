"""Video record access for the processed-versions list.

Video records are owned by the upload service; the worker only appends an
entry to ``processedVersions`` when a job for that video completes. The
append is guarded by a ``processedJobIds`` string set so a redelivered job
never adds a second entry.
"""

from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

from .aws_clients import get_dynamodb_resource, is_conditional_check_failure
from .config import get_settings
from .job_store import from_dynamo, to_dynamo
from .models import ProcessedVersion

logger = Logger(service="video-store")


class VideoRecordStore:
    """Append-only access to video records' processed versions."""

    def __init__(self, table_name: str | None = None, dynamodb: Any = None) -> None:
        resource = dynamodb or get_dynamodb_resource()
        self.table_name = table_name or get_settings().videos_table
        self._table = resource.Table(self.table_name)

    def get(self, video_id: str) -> dict[str, Any] | None:
        response = self._table.get_item(Key={"videoId": video_id})
        item = response.get("Item")
        return from_dynamo(item) if item else None

    def add_processed_version(self, video_id: str, version: ProcessedVersion) -> bool:
        """Append a processed version to a video record once per job.

        Returns:
            True if appended, False if the video is missing or the job was
            already recorded
        """
        entry = to_dynamo(version.model_dump(by_alias=True, mode="json"))

        try:
            self._table.update_item(
                Key={"videoId": video_id},
                UpdateExpression=(
                    "SET processedVersions = list_append(if_not_exists(processedVersions, :empty), :entry) "
                    "ADD processedJobIds :job_ids"
                ),
                ConditionExpression="attribute_exists(videoId) AND NOT contains(processedJobIds, :job_id)",
                ExpressionAttributeValues={
                    ":empty": [],
                    ":entry": [entry],
                    ":job_ids": {version.job_id},
                    ":job_id": version.job_id,
                },
            )
        except ClientError as e:
            if not is_conditional_check_failure(e):
                raise
            logger.info(
                "Processed version not appended (video missing or job already recorded)",
                extra={"video_id": video_id, "job_id": version.job_id},
            )
            return False

        logger.info(
            "Appended processed version",
            extra={"video_id": video_id, "job_id": version.job_id},
        )
        return True
