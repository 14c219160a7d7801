"""Worker pool tests: retries, terminal failures, concurrency cap and the start limiter."""
import threading
import time
from unittest.mock import MagicMock

import pytest

from briefings.guardrails.errors import PermanentProviderError, TerminalStageFailure, TransientProviderError
from briefings.guardrails.rate_limit import SlidingWindowLimiter
from briefings.jobs.queue import STALLED_ERROR, InMemoryQueueBackend, JobQueue
from briefings.jobs.worker import WorkerPool
from briefings.utils.retry import RetryPolicy
from conftest import make_meeting


class StubPipeline:
    def __init__(self, error=None):
        self.error = error
        self.runs = []
        self.failed = []

    def run(self, job, job_id):
        self.runs.append(job_id)
        if self.error:
            raise self.error

    def mark_failed(self, job, job_id, error):
        self.failed.append((job_id, error))


@pytest.fixture
def queue(clock):
    return JobQueue(InMemoryQueueBackend(), clock=clock)


def _drain(worker, queue, clock, job_id):
    """Run the job on this thread until it settles, advancing the clock over each backoff delay."""
    delays = []
    while worker.process_next() is not None:
        qjob = queue.get(job_id)
        if qjob.state != "delayed":
            break
        delay = qjob.available_at - clock.now
        delays.append(delay)
        clock.advance(delay)
    return delays


def test_success_completes_and_notifies(queue, clock):
    pipeline, observer = StubPipeline(), MagicMock()
    worker = WorkerPool(queue, pipeline, observer=observer)
    job_id = queue.submit("u1", "m1")

    assert worker.process_next() == job_id
    assert queue.get(job_id).state == "completed"
    observer.on_completed.assert_called_once_with(job_id)
    observer.on_failed.assert_not_called()


def test_transient_errors_retry_five_times_then_fail(queue, clock):
    pipeline, observer = StubPipeline(TransientProviderError("LLM timed out")), MagicMock()
    worker = WorkerPool(queue, pipeline, observer=observer)
    job_id = queue.submit("u1", "m1")

    delays = _drain(worker, queue, clock, job_id)

    assert delays == [2.0, 4.0, 8.0, 16.0]
    assert len(pipeline.runs) == 5
    assert queue.get(job_id).state == "failed"
    assert pipeline.failed == [(job_id, "LLM timed out")]
    observer.on_failed.assert_called_once_with(job_id, "LLM timed out")
    clock.advance(3600)
    assert worker.process_next() is None  # no 6th attempt


def test_unexpected_errors_are_retried(queue, clock):
    pipeline = StubPipeline(RuntimeError("flaky"))
    worker = WorkerPool(queue, pipeline, observer=MagicMock())
    job_id = queue.submit("u1", "m1")
    worker.process_next()
    assert queue.get(job_id).state == "delayed"
    assert pipeline.failed == []


@pytest.mark.parametrize(
    "error",
    [PermanentProviderError("Calendar not connected"), TerminalStageFailure("Talking points generation failed")],
)
def test_non_retryable_errors_fail_immediately(queue, clock, error):
    pipeline = StubPipeline(error)
    worker = WorkerPool(queue, pipeline, observer=MagicMock())
    job_id = queue.submit("u1", "m1")

    worker.process_next()

    assert len(pipeline.runs) == 1
    assert queue.get(job_id).state == "failed"
    assert pipeline.failed == [(job_id, str(error))]


def test_start_limiter_caps_job_starts(queue, clock):
    pipeline = StubPipeline()
    worker = WorkerPool(queue, pipeline, limiter=SlidingWindowLimiter(2, 60, clock=clock), observer=MagicMock())
    for m in ("m1", "m2", "m3"):
        queue.submit("u1", m)

    assert worker.process_next() is not None
    assert worker.process_next() is not None
    assert worker.process_next() is None
    assert queue.counts()["waiting"] == 1

    clock.advance(60)
    assert worker.process_next() == "u1:m3:briefing"


def test_record_stays_processing_between_retries(pipeline, meetings, results, fake_llm, clock):
    queue = JobQueue(InMemoryQueueBackend(), clock=clock)
    fake_llm.responses["talking_points"] = TransientProviderError("LLM call failed for talking_points: timeout")
    worker = WorkerPool(queue, pipeline, observer=MagicMock())
    meetings.save("u1", make_meeting())
    job_id = queue.submit("u1", "m1")

    worker.process_next()
    record = results.get("u1", "m1")
    assert record.status == "processing"
    assert record.company is not None

    clock.advance(2)
    _drain(worker, queue, clock, job_id)
    record = results.get("u1", "m1")
    assert record.status == "failed"
    assert record.error == "LLM call failed for talking_points: timeout"
    assert record.company.domain == "acme.com"
    assert len(fake_llm.calls_for("talking_points")) == 5


def test_pool_runs_at_most_concurrency_jobs_in_parallel():
    queue = JobQueue(InMemoryQueueBackend())
    release = threading.Event()
    lock = threading.Lock()
    state = {"running": 0, "peak": 0, "done": 0}

    class BlockingPipeline:
        def run(self, job, job_id):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            release.wait(5)
            with lock:
                state["running"] -= 1
                state["done"] += 1

        def mark_failed(self, job, job_id, error):
            pass

    for i in range(8):
        queue.submit("u1", f"m{i}")
    worker = WorkerPool(queue, BlockingPipeline(), concurrency=5, observer=MagicMock(), poll_interval=0.01)
    worker.start()
    try:
        deadline = time.monotonic() + 5
        while state["running"] < 5 and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.1)
        assert state["running"] == 5
        assert queue.counts()["waiting"] == 3

        release.set()
        deadline = time.monotonic() + 5
        while state["done"] < 8 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        release.set()
        worker.stop(wait=True)

    assert state["done"] == 8
    assert state["peak"] == 5
    assert queue.counts()["completed"] == 8


def test_dispatcher_respects_start_limiter():
    queue = JobQueue(InMemoryQueueBackend())
    pipeline = StubPipeline()
    worker = WorkerPool(queue, pipeline, limiter=SlidingWindowLimiter(2, 60), observer=MagicMock(), poll_interval=0.01)
    for m in ("m1", "m2", "m3"):
        queue.submit("u1", m)

    worker.start()
    try:
        deadline = time.monotonic() + 5
        while queue.counts()["completed"] < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.2)
    finally:
        worker.stop(wait=True)

    assert len(pipeline.runs) == 2
    assert queue.counts()["completed"] == 2
    assert queue.counts()["waiting"] == 1


class RefusingLimiter:
    """Reports room, then refuses the start: another dispatcher filled the window in between."""

    def wait_time(self, key="global"):
        return 0.0

    def try_acquire(self, key="global"):
        return False


def test_claim_handed_back_when_limiter_refuses(queue):
    pipeline = StubPipeline()
    worker = WorkerPool(queue, pipeline, limiter=RefusingLimiter(), observer=MagicMock())
    job_id = queue.submit("u1", "m1")

    assert worker.process_next() is None
    assert pipeline.runs == []
    stored = queue.get(job_id)
    assert (stored.state, stored.attempts_made) == ("waiting", 0)


def test_stalled_job_is_retried_by_next_worker(queue, clock):
    pipeline = StubPipeline()
    worker = WorkerPool(queue, pipeline, observer=MagicMock())
    job_id = queue.submit("u1", "m1")
    queue.claim()  # claimed by a worker that never reports back

    assert worker.process_next() is None
    clock.advance(queue.stall_timeout + 1)
    assert worker.process_next() == job_id

    stored = queue.get(job_id)
    assert (stored.state, stored.attempts_made) == ("completed", 2)


def test_stalled_job_without_attempts_left_is_marked_failed(clock):
    queue = JobQueue(InMemoryQueueBackend(), RetryPolicy(attempts=1), stall_timeout=60, clock=clock)
    pipeline, observer = StubPipeline(), MagicMock()
    worker = WorkerPool(queue, pipeline, observer=observer)
    job_id = queue.submit("u1", "m1")
    queue.claim()
    clock.advance(61)

    assert worker.recover_stalled() == 1
    assert queue.get(job_id).state == "failed"
    assert pipeline.failed == [(job_id, STALLED_ERROR)]
    observer.on_failed.assert_called_once_with(job_id, STALLED_ERROR)
