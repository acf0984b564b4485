"""Job status module for the transcode job service.

This module handles read-only job queries:
- Single job lookup by jobId
- Owner listing through the userId index
- Lambda handler
"""

from .handler import handler

__all__ = ["handler"]
