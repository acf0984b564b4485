"""Lambda handler for transcode job submission.

Invoked by the API layer after the caller has been authenticated; the
event carries the resolved ``userId``. Ownership of ``videoId`` is checked
by the API layer before it gets here.

Flow:
1. Validate request and snapshot transcoding options
2. Write job record (status=queued)
3. Enqueue job message
4. Return jobId for status polling
"""

from typing import Any

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from ..shared.config import get_settings
from ..shared.exceptions import JobSubmissionError
from ..shared.job_queue import SqsJobQueue
from ..shared.job_store import JobRecordStore
from ..shared.models import JobSubmitRequest
from .submitter import JobSubmitter

logger = Logger(service="job-submitter")
tracer = Tracer(service="job-submitter")
metrics = Metrics(service="job-submitter", namespace="VideoTranscoding")


@logger.inject_lambda_context(log_event=True)
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """Submit a transcode job.

    Args:
        event: Submission request
        context: Lambda context

    Returns:
        Submission result, or an error body with statusCode

    Input event structure:
        {
            "userId": "u1",
            "inputRef": "uploads/u1/a.mp4",
            "videoId": "optional-video-id",
            "options": {"resolution": "1280x720", "crf": "18", ...}
        }

    Output structure:
        {
            "statusCode": 202,
            "jobId": "9b2e...",
            "status": "queued",
            "outputRef": "processed/u1/processed_9b2e..._1718000000000.mp4"
        }
    """
    try:
        request = JobSubmitRequest.model_validate(event)
    except ValidationError as e:
        logger.warning("Rejected invalid submission", extra={"errors": e.errors(include_url=False)})
        metrics.add_metric(name="SubmissionsRejected", unit=MetricUnit.Count, value=1)
        return {
            "statusCode": 400,
            "error": "INVALID_REQUEST",
            "details": e.errors(include_url=False, include_context=False),
        }

    submitter = _build_submitter()

    try:
        with tracer.provider.in_subsegment("submit_job"):
            result = submitter.submit_request(request)
    except JobSubmissionError as e:
        logger.error("Job submission failed", extra=e.to_dict())
        metrics.add_metric(name="SubmissionErrors", unit=MetricUnit.Count, value=1)
        return {"statusCode": 500, **e.to_dict()}

    metrics.add_metric(name="JobsSubmitted", unit=MetricUnit.Count, value=1)
    metrics.add_metadata(key="job_id", value=result.job_id)

    return {"statusCode": 202, **result.model_dump(by_alias=True, mode="json")}


def _build_submitter() -> JobSubmitter:
    settings = get_settings()
    return JobSubmitter(
        store=JobRecordStore(),
        queue=SqsJobQueue(settings.queue_url),
    )
