"""Dead-letter module for the transcode job service.

This module turns messages that exhausted their redeliveries into
terminal ``permanently_failed`` job records.
"""

from .reconciler import EXHAUSTED_RETRIES_ERROR, DeadLetterReconciler, extract_job_id

__all__ = [
    "DeadLetterReconciler",
    "EXHAUSTED_RETRIES_ERROR",
    "extract_job_id",
]
