"""Worker module for the transcode job service.

This module handles job execution:
- Queue poll loop (one in-flight job per instance)
- Transcode pipeline (fetch, engine, upload, record)
- FFmpeg engine
"""

from .engine import FFmpegEngine, TranscodeEngine
from .pipeline import PipelineResult, TranscodePipeline
from .poller import PollOutcome, WorkerPoller

__all__ = [
    "FFmpegEngine",
    "TranscodeEngine",
    "PipelineResult",
    "TranscodePipeline",
    "PollOutcome",
    "WorkerPoller",
]
