"""Job submitter module for the transcode job service.

This module handles job creation:
- Request validation and options snapshot
- Job record write followed by enqueue
- Lambda handler
"""

from .submitter import JobSubmitter, build_output_ref

__all__ = [
    "JobSubmitter",
    "build_output_ref",
]
