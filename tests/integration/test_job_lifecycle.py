"""End-to-end job lifecycle tests.

Runs submission, the worker poll loop, SQS redelivery, redrive to the
dead-letter queue and reconciliation together against moto. The queue's
visibility timeout is zero, so every unacknowledged message is redelivered
on the next poll, and the redrive policy moves it to the dead-letter queue
after three deliveries.
"""

import time
from unittest.mock import patch

import pytest

from src.dead_letter.reconciler import EXHAUSTED_RETRIES_ERROR
from src.shared.checksum import checksum_bytes
from src.shared.config import clear_settings_cache, get_settings
from src.shared.job_store import JobRecordStore
from src.shared.models import JobStatus
from src.worker.main import build_worker, main
from src.worker.poller import PollOutcome

Q = JobStatus.QUEUED
P = JobStatus.PROCESSING
C = JobStatus.COMPLETED
F = JobStatus.FAILED
PF = JobStatus.PERMANENTLY_FAILED


def drive(worker, cycles):
    """Run poll cycles with a short pause so zero-timeout redelivery is visible."""
    outcomes = []
    for _ in range(cycles):
        outcomes.append(worker.poll_once())
        time.sleep(0.01)
    return outcomes


@pytest.fixture
def status_history():
    """Record every status a job is moved into, in order."""
    history: dict[str, list[JobStatus]] = {}
    original = JobRecordStore.transition

    def recording(self, job_id, new_status, *args, **kwargs):
        original(self, job_id, new_status, *args, **kwargs)
        history.setdefault(job_id, [Q]).append(new_status)

    with patch.object(JobRecordStore, "transition", recording):
        yield history


@pytest.fixture
def worker_factory(aws, tmp_path):
    def build(engine, reconcile_every=1):
        settings = get_settings().model_copy(
            update={"reconcile_every_cycles": reconcile_every, "work_dir": str(tmp_path)}
        )
        return build_worker(settings, engine=engine)

    return build


class TestJobLifecycle:
    """Full lifecycle scenarios."""

    def test_success(self, aws, submitter, source_video, job_store, worker_factory, fake_engine, status_history):
        """Test a submitted job is processed once and its message acknowledged."""
        result = submitter.submit("u1", source_video, {"resolution": "1280x720", "crf": 18})
        worker = worker_factory(fake_engine)

        outcomes = drive(worker, 3)

        assert outcomes == [PollOutcome.SUCCEEDED, PollOutcome.EMPTY, PollOutcome.EMPTY]
        job = job_store.get(result.job_id)
        assert job.status == C
        assert job.progress == 100
        assert job.output_checksum == checksum_bytes(fake_engine.output)
        assert status_history[result.job_id] == [Q, P, C]

        body = aws.s3.get_object(Bucket=aws.bucket, Key=result.output_ref)["Body"].read()
        assert body == fake_engine.output
        assert len(fake_engine.runs) == 1

    def test_fail_once_then_succeed(
        self, submitter, source_video, job_store, worker_factory, make_engine, status_history
    ):
        """Test a transient failure is retried through redelivery."""
        engine = make_engine(fail_times=1)
        result = submitter.submit("u1", source_video)
        worker = worker_factory(engine)

        outcomes = drive(worker, 3)

        assert outcomes == [PollOutcome.FAILED, PollOutcome.SUCCEEDED, PollOutcome.EMPTY]
        assert status_history[result.job_id] == [Q, P, F, P, C]

        job = job_store.get(result.job_id)
        assert job.status == C
        assert job.error is None
        assert job.failed_at is not None
        assert job.retried_count is None

    def test_exhausted_retries(
        self, aws, submitter, source_video, job_store, worker_factory, make_engine, status_history
    ):
        """Test a job failing every delivery ends permanently_failed via the dead-letter queue."""
        engine = make_engine(always_fail=True)
        result = submitter.submit("u1", source_video)
        worker = worker_factory(engine)

        outcomes = drive(worker, 5)

        assert outcomes[:3] == [PollOutcome.FAILED] * 3
        assert outcomes[3:] == [PollOutcome.EMPTY] * 2
        assert len(engine.runs) == 3
        assert status_history[result.job_id] == [Q, P, F, P, F, P, F, PF]

        job = job_store.get(result.job_id)
        assert job.status == PF
        assert job.retried_count == 3
        assert job.error == EXHAUSTED_RETRIES_ERROR

        # Neither queue holds the message any more
        for url in (aws.queue_url, aws.dlq_url):
            assert "Messages" not in aws.sqs.receive_message(QueueUrl=url, WaitTimeSeconds=0)

    def test_reconciliation_cadence(self, submitter, source_video, job_store, worker_factory, make_engine):
        """Test a dead-lettered job waits for the next scheduled drain."""
        result = submitter.submit("u1", source_video)
        worker = worker_factory(make_engine(always_fail=True), reconcile_every=10)

        drive(worker, 9)
        assert job_store.get(result.job_id).status == F

        drive(worker, 1)
        assert job_store.get(result.job_id).status == PF

    def test_redelivered_completed_job_is_acknowledged(
        self, aws, submitter, source_video, job_store, worker_factory, fake_engine
    ):
        """Test a duplicate delivery of a finished job does not run it again."""
        result = submitter.submit("u1", source_video)
        worker = worker_factory(fake_engine)
        drive(worker, 1)
        completed = job_store.get(result.job_id)

        # Duplicate delivery of the same descriptor
        aws.sqs.send_message(
            QueueUrl=aws.queue_url,
            MessageBody=(
                f'{{"jobId": "{result.job_id}", "inputRef": "{source_video}", '
                f'"outputRef": "{result.output_ref}"}}'
            ),
        )

        assert drive(worker, 2) == [PollOutcome.SUCCEEDED, PollOutcome.EMPTY]
        assert len(fake_engine.runs) == 1
        assert job_store.get(result.job_id) == completed

    def test_two_workers_share_the_queue(self, submitter, source_video, job_store, worker_factory, make_engine):
        """Test several workers drain one queue with each job completing once."""
        jobs = [submitter.submit("u1", source_video).job_id for _ in range(4)]
        engine = make_engine()
        workers = [worker_factory(engine), worker_factory(engine)]

        for _ in range(3):
            for worker in workers:
                worker.poll_once()

        assert {job_store.get(job_id).status for job_id in jobs} == {C}
        assert len(engine.runs) == 4

    def test_malformed_message_dead_lettered_and_kept(self, aws, worker_factory, fake_engine):
        """Test an undecodable message ends on the dead-letter queue untouched."""
        aws.sqs.send_message(QueueUrl=aws.queue_url, MessageBody="not a job")
        worker = worker_factory(fake_engine)

        outcomes = drive(worker, 5)

        assert outcomes[:3] == [PollOutcome.MALFORMED] * 3
        assert fake_engine.runs == []
        messages = aws.sqs.receive_message(QueueUrl=aws.dlq_url, WaitTimeSeconds=0)["Messages"]
        assert messages[0]["Body"] == "not a job"


class TestWorkerEntryPoint:
    """Tests for the worker process entry point."""

    @patch("src.worker.main.signal.signal")
    def test_runs_bounded_cycles(self, mock_signal, aws):
        """Test the worker starts from environment settings and stops after N cycles."""
        assert main(["--max-cycles", "2"]) == 0
        assert mock_signal.call_count == 2

    def test_missing_queue_url(self, aws, monkeypatch):
        """Test a misconfigured worker exits non-zero."""
        monkeypatch.delenv("QUEUE_URL")
        clear_settings_cache()

        assert main(["--max-cycles", "1"]) == 1
