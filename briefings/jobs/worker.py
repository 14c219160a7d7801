"""Bounded worker pool: one dispatcher thread claims ready jobs and hands them to a thread pool.

Up to `concurrency` pipelines run in parallel, each to completion before its slot is reused.
Independently, a rolling-window limiter caps how many jobs may *start* per window. No job is
ever cancelled. A job left active by a lost worker is handed back once the queue's stall
timeout passes.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from briefings.guardrails.errors import QueueUnavailable, error_message, is_retryable
from briefings.guardrails.rate_limit import SlidingWindowLimiter
from briefings.jobs.queue import JobQueue, QueuedJob
from briefings.observability.events import JobObserver, LoggingJobObserver

logger = logging.getLogger(__name__)


class WorkerPool:
    """Pulls jobs from a JobQueue and runs them through the enrichment pipeline with bounded concurrency and a global start limiter.
    Why available: The execution side of the queue; terminal outcomes are persisted on the BriefingRecord and reported to the observer."""

    def __init__(
        self,
        queue: JobQueue,
        pipeline,
        *,
        concurrency: int = 5,
        limiter: Optional[SlidingWindowLimiter] = None,
        observer: Optional[JobObserver] = None,
        poll_interval: float = 0.5,
        recovery_interval: float = 30.0,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.limiter = limiter
        self.observer = observer or LoggingJobObserver()
        self.poll_interval = poll_interval
        self.recovery_interval = recovery_interval

        self._slots = threading.BoundedSemaphore(concurrency)
        self._stop = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._last_recovery: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._last_recovery = None
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="briefing-worker")
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="briefing-dispatcher", daemon=True)
        self._dispatcher.start()
        logger.info("worker_started", extra={"concurrency": self.concurrency})

    def stop(self, wait: bool = True) -> None:
        """Stop claiming new jobs; with wait=True, block until running pipelines finish."""
        self._stop.set()
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("worker_stopped")

    def recover_stalled(self) -> int:
        """Return jobs left active by a lost worker to the queue; those out of attempts are finalized as failed."""
        recovered = self.queue.recover_stalled()
        for qjob in recovered:
            if qjob.state == "failed":
                self._finalize_failed(qjob, qjob.last_error or "Job stalled")
        return len(recovered)

    def _maybe_recover(self) -> None:
        now = self.queue.clock()
        if self._last_recovery is not None and now - self._last_recovery < self.recovery_interval:
            return
        self._last_recovery = now
        self.recover_stalled()

    def _start_allowed(self) -> float:
        """Seconds to wait before another job may start (0.0 when the limiter has room or there is none)."""
        return self.limiter.wait_time() if self.limiter else 0.0

    def _claim(self) -> Optional[QueuedJob]:
        qjob = self.queue.claim()
        if qjob is None or self.limiter is None or self.limiter.try_acquire():
            return qjob
        # the window filled between wait_time() and the claim
        self.queue.release(qjob)
        return None

    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            if not self._slots.acquire(timeout=self.poll_interval):
                continue
            try:
                self._maybe_recover()
                delay = self._start_allowed()
                if delay > 0:
                    self._slots.release()
                    self._stop.wait(min(delay, self.poll_interval))
                    continue
                qjob = self._claim()
            except QueueUnavailable as e:
                self._slots.release()
                logger.error("worker_error", extra={"error": str(e)})
                self._stop.wait(self.poll_interval)
                continue

            if qjob is None:
                self._slots.release()
                self._stop.wait(self.poll_interval)
                continue
            self._executor.submit(self._run_in_slot, qjob)

    def _run_in_slot(self, qjob: QueuedJob) -> None:
        try:
            self.execute(qjob)
        except Exception:
            logger.exception("worker_error", extra={"job_id": qjob.job_id})
        finally:
            self._slots.release()

    def process_next(self) -> Optional[str]:
        """Claim and run one ready job on the calling thread, honouring the start limiter. Returns the job id, or None if nothing ran."""
        self._maybe_recover()
        if self._start_allowed() > 0:
            return None
        qjob = self._claim()
        if qjob is None:
            return None
        self.execute(qjob)
        return qjob.job_id

    def execute(self, qjob: QueuedJob) -> None:
        """Run the pipeline for a claimed job and settle it: complete, reschedule with backoff, or finalize as failed."""
        job = qjob.job
        logger.info(
            "job_started",
            extra={"job_id": qjob.job_id, "attempt": qjob.attempts_made, "owner_id": job.owner_id, "meeting_id": job.meeting_id},
        )
        try:
            self.pipeline.run(job, qjob.job_id)
        except Exception as e:
            self._handle_failure(qjob, e)
            return

        self.queue.complete(qjob)
        self.observer.on_completed(qjob.job_id)

    def _handle_failure(self, qjob: QueuedJob, e: Exception) -> None:
        message = error_message(e)
        delay = self.queue.fail(qjob, message, retryable=is_retryable(e))
        if delay is not None:
            logger.warning(
                "job_retry_scheduled",
                extra={"job_id": qjob.job_id, "attempt": qjob.attempts_made, "delay_s": delay, "error": message},
            )
            return
        self._finalize_failed(qjob, message)

    def _finalize_failed(self, qjob: QueuedJob, message: str) -> None:
        try:
            self.pipeline.mark_failed(qjob.job, qjob.job_id, message)
        except Exception:
            logger.exception("briefing_failure_not_saved", extra={"job_id": qjob.job_id})
        self.observer.on_failed(qjob.job_id, message)
