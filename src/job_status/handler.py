"""Lambda handler for job status queries.

Returns the stored job record; clients poll this to follow progress and
to see the final outcome (``completed``, ``failed`` with ``error``, or
``permanently_failed``). Authorization (owner or privileged role) is
enforced by the API layer before invocation.
"""

from typing import Any

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from ..shared.job_store import JobRecordStore

logger = Logger(service="job-status")
tracer = Tracer(service="job-status")
metrics = Metrics(service="job-status", namespace="VideoTranscoding")


@logger.inject_lambda_context
@tracer.capture_lambda_handler
@metrics.log_metrics
def handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """Look up one job or list an owner's jobs.

    Input event structure (one of):
        {"jobId": "9b2e..."}
        {"userId": "u1"}

    Output structure:
        {"statusCode": 200, "job": {...}}
        {"statusCode": 200, "jobs": [{...}, ...]}
        {"statusCode": 404, "error": "JOB_NOT_FOUND", "jobId": "..."}
    """
    store = JobRecordStore()

    job_id = event.get("jobId")
    if job_id:
        job = store.get(job_id)
        if job is None:
            logger.info("Job not found", extra={"job_id": job_id})
            return {"statusCode": 404, "error": "JOB_NOT_FOUND", "jobId": job_id}

        metrics.add_metric(name="StatusQueries", unit=MetricUnit.Count, value=1)
        return {"statusCode": 200, "job": job.to_dict()}

    user_id = event.get("userId")
    if user_id:
        jobs = store.list_by_user(user_id)
        logger.debug("Listed jobs", extra={"user_id": user_id, "count": len(jobs)})
        metrics.add_metric(name="ListQueries", unit=MetricUnit.Count, value=1)
        return {"statusCode": 200, "jobs": [j.to_dict() for j in jobs]}

    return {"statusCode": 400, "error": "INVALID_REQUEST", "message": "jobId or userId is required"}
