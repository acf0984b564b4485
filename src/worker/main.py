"""Worker process entry point.

Builds the poll loop from environment settings and runs it until SIGTERM
or SIGINT. Run as ``transcode-worker`` or ``python -m src.worker``.

Usage:
    transcode-worker
    transcode-worker --max-cycles 100
"""

import argparse
import signal
import sys

from aws_lambda_powertools import Logger

from ..dead_letter.reconciler import DeadLetterReconciler
from ..shared.config import Settings, get_settings
from ..shared.job_queue import SqsJobQueue
from ..shared.job_store import JobRecordStore
from ..shared.object_store import S3ObjectStore
from ..shared.video_store import VideoRecordStore
from .engine import FFmpegEngine, TranscodeEngine
from .pipeline import TranscodePipeline
from .poller import WorkerPoller

logger = Logger(service="transcode-worker")


def build_worker(settings: Settings, engine: TranscodeEngine | None = None) -> WorkerPoller:
    """Wire the poll loop, pipeline and reconciler from settings."""
    if not settings.queue_url or not settings.dead_letter_queue_url:
        raise ValueError("QUEUE_URL and DEAD_LETTER_QUEUE_URL must be set")

    store = JobRecordStore()
    pipeline = TranscodePipeline(
        store=store,
        object_store=S3ObjectStore(),
        engine=engine
        or FFmpegEngine(
            ffmpeg_binary=settings.ffmpeg_binary,
            ffprobe_binary=settings.ffprobe_binary,
            timeout_seconds=settings.engine_timeout_seconds,
        ),
        video_store=VideoRecordStore(),
        work_dir=settings.work_dir,
    )
    reconciler = DeadLetterReconciler(
        dead_letter_queue=SqsJobQueue(settings.dead_letter_queue_url),
        store=store,
        max_receive_count=settings.max_receive_count,
        batch_size=settings.dlq_batch_size,
    )
    return WorkerPoller(
        queue=SqsJobQueue(settings.queue_url),
        pipeline=pipeline,
        reconciler=reconciler,
        wait_time_seconds=settings.wait_time_seconds,
        visibility_timeout=settings.visibility_timeout_seconds,
        reconcile_every=settings.reconcile_every_cycles,
        error_backoff_seconds=settings.poll_error_backoff_seconds,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Video transcode worker")
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop after this many poll cycles (default: run until signalled)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    try:
        worker = build_worker(settings)
    except ValueError as e:
        logger.error("Worker misconfigured", extra={"error": str(e)})
        return 1

    def _shutdown(signum: int, _frame: object) -> None:
        logger.info("Shutdown requested", extra={"signal": signum})
        worker.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info(
        "Starting transcode worker",
        extra={
            "environment": settings.environment,
            "jobs_table": settings.jobs_table,
            "queue_url": settings.queue_url,
            "dead_letter_queue_url": settings.dead_letter_queue_url,
        },
    )
    worker.run(max_cycles=args.max_cycles)
    return 0


if __name__ == "__main__":
    sys.exit(main())
