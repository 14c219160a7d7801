"""Deduplicated briefing job queue: submission surface for the request layer, state for the worker pool.

The job id is the job's dedup key, so at most one live (waiting / delayed / active) job exists per
(owner, meeting). Resubmitting a live job is absorbed and returns the same id; resubmitting a
completed or failed one re-arms it under the same id with a fresh attempt counter.
"""
import json
import logging
import threading
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import redis
from pydantic import ValidationError as PydanticValidationError

from briefings.guardrails.errors import QueueUnavailable, ValidationError
from briefings.models.schemas import BriefingJob, EnrichmentSettings
from briefings.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

LIVE_STATES = ("waiting", "delayed", "active")
READY_STATES = ("waiting", "delayed")

DEFAULT_STALL_TIMEOUT_SECONDS = 15 * 60
STALLED_ERROR = "Job stalled: worker stopped reporting"


@dataclass
class QueuedJob:
    """A briefing job as the queue tracks it: state (waiting | delayed | active | completed | failed), attempts, timestamps and the last error.
    Why available: WorkerPool claims and reports on these; operators inspect them through JobQueue.get."""

    job_id: str
    job: BriefingJob
    state: str  # waiting | delayed | active | completed | failed
    created_at: float
    available_at: float
    attempts_made: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    last_error: Optional[str] = None


def is_live(qjob: QueuedJob, stalled_before: Optional[float] = None) -> bool:
    """Live jobs absorb resubmissions. An active job whose worker went silent before stalled_before no longer counts."""
    if qjob.state not in LIVE_STATES:
        return False
    if qjob.state == "active" and stalled_before is not None:
        return (qjob.started_at or 0.0) >= stalled_before
    return True


class InMemoryQueueBackend:
    """Queue state in a dict guarded by a lock. Copies go in and out so callers never share a live object."""

    def __init__(self):
        self._jobs: Dict[str, QueuedJob] = {}
        self._lock = threading.Lock()

    def add(
        self,
        qjob: QueuedJob,
        on_created: Optional[Callable[[], None]] = None,
        stalled_before: Optional[float] = None,
    ) -> Tuple[QueuedJob, bool]:
        with self._lock:
            existing = self._jobs.get(qjob.job_id)
            if existing is not None and is_live(existing, stalled_before):
                return replace(existing), False
            # runs before the job is claimable
            if on_created is not None:
                on_created()
            self._jobs[qjob.job_id] = replace(qjob)
            return replace(qjob), True

    def claim(self, now: float) -> Optional[QueuedJob]:
        with self._lock:
            ready = [j for j in self._jobs.values() if j.state in READY_STATES and j.available_at <= now]
            if not ready:
                return None
            j = min(ready, key=lambda x: (x.available_at, x.created_at))
            j.state = "active"
            j.attempts_made += 1
            j.started_at = now
            return replace(j)

    def release_stalled(self, before: float, settle: Callable[[QueuedJob], None]) -> List[QueuedJob]:
        with self._lock:
            stalled = [j for j in self._jobs.values() if j.state == "active" and (j.started_at or 0.0) < before]
            for j in stalled:
                settle(j)
            return [replace(j) for j in stalled]

    def save(self, qjob: QueuedJob) -> None:
        with self._lock:
            self._jobs[qjob.job_id] = replace(qjob)

    def get(self, job_id: str) -> Optional[QueuedJob]:
        with self._lock:
            j = self._jobs.get(job_id)
            return replace(j) if j else None

    def counts(self, now: float) -> Dict[str, int]:
        with self._lock:
            c = Counter(j.state for j in self._jobs.values())
        return {s: c.get(s, 0) for s in LIVE_STATES + ("completed", "failed")}

    def prune_completed(self, keep: int, max_age: float, now: float) -> int:
        with self._lock:
            done = sorted(
                (j for j in self._jobs.values() if j.state == "completed"),
                key=lambda j: j.finished_at or 0.0,
                reverse=True,
            )
            doomed = [j.job_id for i, j in enumerate(done) if i >= keep or (j.finished_at or 0.0) < now - max_age]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    def clear_failed(self) -> int:
        with self._lock:
            doomed = [k for k, j in self._jobs.items() if j.state == "failed"]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)


class RedisQueueBackend:
    """Queue state in Redis: one hash per job plus a ready zset (score = available_at), an active set,
    and completed / failed zsets (score = finished_at). Transport errors surface as QueueUnavailable."""

    def __init__(self, client, name: str = "briefing-generation"):
        self._redis = client
        self.prefix = f"bq:{name}"
        self.ready_key = f"{self.prefix}:ready"
        self.active_key = f"{self.prefix}:active"
        self.completed_key = f"{self.prefix}:completed"
        self.failed_key = f"{self.prefix}:failed"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    @staticmethod
    def _to_mapping(qjob: QueuedJob) -> Dict[str, str]:
        def opt(v):
            return "" if v is None else repr(v) if isinstance(v, float) else str(v)

        return {
            "job": json.dumps(qjob.job.to_wire()),
            "state": qjob.state,
            "created_at": repr(qjob.created_at),
            "available_at": repr(qjob.available_at),
            "attempts_made": str(qjob.attempts_made),
            "started_at": opt(qjob.started_at),
            "finished_at": opt(qjob.finished_at),
            "last_error": qjob.last_error or "",
        }

    @staticmethod
    def _from_mapping(job_id: str, data: Mapping[str, str]) -> QueuedJob:
        def opt_float(v):
            return float(v) if v else None

        return QueuedJob(
            job_id=job_id,
            job=BriefingJob.model_validate(json.loads(data["job"])),
            state=data["state"],
            created_at=float(data["created_at"]),
            available_at=float(data["available_at"]),
            attempts_made=int(data.get("attempts_made") or 0),
            started_at=opt_float(data.get("started_at")),
            finished_at=opt_float(data.get("finished_at")),
            last_error=data.get("last_error") or None,
        )

    @contextmanager
    def _transport(self):
        try:
            yield
        except redis.exceptions.RedisError as e:
            raise QueueUnavailable(f"Queue transport unavailable: {e}") from e

    def add(
        self,
        qjob: QueuedJob,
        on_created: Optional[Callable[[], None]] = None,
        stalled_before: Optional[float] = None,
    ) -> Tuple[QueuedJob, bool]:
        key = self._job_key(qjob.job_id)

        def _txn(pipe):
            existing = pipe.hgetall(key)
            if existing:
                current = self._from_mapping(qjob.job_id, existing)
                if is_live(current, stalled_before):
                    return current, False
            # runs under WATCH, before the job reaches the ready set
            if on_created is not None:
                on_created()
            pipe.multi()
            pipe.delete(key)
            pipe.hset(key, mapping=self._to_mapping(qjob))
            pipe.srem(self.active_key, qjob.job_id)
            pipe.zrem(self.completed_key, qjob.job_id)
            pipe.zrem(self.failed_key, qjob.job_id)
            pipe.zadd(self.ready_key, {qjob.job_id: qjob.available_at})
            return qjob, True

        with self._transport():
            return self._redis.transaction(_txn, key, value_from_callable=True)

    def claim(self, now: float) -> Optional[QueuedJob]:
        with self._transport():
            ids = self._redis.zrangebyscore(self.ready_key, "-inf", now, start=0, num=1)
            if not ids or not self._redis.zrem(self.ready_key, ids[0]):
                return None  # empty, or another worker took it first
            job_id = ids[0]
            key = self._job_key(job_id)
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(key, mapping={"state": "active", "started_at": repr(now)})
            pipe.hincrby(key, "attempts_made", 1)
            pipe.sadd(self.active_key, job_id)
            pipe.hgetall(key)
            data = pipe.execute()[-1]
        return self._from_mapping(job_id, data)

    def release_stalled(self, before: float, settle: Callable[[QueuedJob], None]) -> List[QueuedJob]:
        released: List[QueuedJob] = []
        with self._transport():
            for job_id in self._redis.smembers(self.active_key):
                key = self._job_key(job_id)

                def _txn(pipe, job_id=job_id, key=key):
                    data = pipe.hgetall(key)
                    if not data:
                        pipe.multi()
                        pipe.srem(self.active_key, job_id)
                        return None
                    qjob = self._from_mapping(job_id, data)
                    if qjob.state != "active" or (qjob.started_at or 0.0) >= before:
                        return None
                    settle(qjob)
                    pipe.multi()
                    self._stage_save(pipe, qjob)
                    return qjob

                qjob = self._redis.transaction(_txn, key, value_from_callable=True)
                if qjob is not None:
                    released.append(qjob)
        return released

    def _stage_save(self, pipe, qjob: QueuedJob) -> None:
        pipe.hset(self._job_key(qjob.job_id), mapping=self._to_mapping(qjob))
        pipe.srem(self.active_key, qjob.job_id)
        if qjob.state in READY_STATES:
            pipe.zadd(self.ready_key, {qjob.job_id: qjob.available_at})
        elif qjob.state == "completed":
            pipe.zadd(self.completed_key, {qjob.job_id: qjob.finished_at or 0.0})
        elif qjob.state == "failed":
            pipe.zadd(self.failed_key, {qjob.job_id: qjob.finished_at or 0.0})
        elif qjob.state == "active":
            pipe.sadd(self.active_key, qjob.job_id)

    def save(self, qjob: QueuedJob) -> None:
        with self._transport():
            pipe = self._redis.pipeline(transaction=True)
            self._stage_save(pipe, qjob)
            pipe.execute()

    def get(self, job_id: str) -> Optional[QueuedJob]:
        with self._transport():
            data = self._redis.hgetall(self._job_key(job_id))
        return self._from_mapping(job_id, data) if data else None

    def counts(self, now: float) -> Dict[str, int]:
        with self._transport():
            return {
                "waiting": self._redis.zcount(self.ready_key, "-inf", now),
                "delayed": self._redis.zcount(self.ready_key, f"({now}", "+inf"),
                "active": self._redis.scard(self.active_key),
                "completed": self._redis.zcard(self.completed_key),
                "failed": self._redis.zcard(self.failed_key),
            }

    def _remove(self, zset_key: str, job_ids: List[str]) -> int:
        if not job_ids:
            return 0
        pipe = self._redis.pipeline(transaction=True)
        pipe.delete(*[self._job_key(j) for j in job_ids])
        pipe.zrem(zset_key, *job_ids)
        pipe.execute()
        return len(job_ids)

    def prune_completed(self, keep: int, max_age: float, now: float) -> int:
        with self._transport():
            old = self._redis.zrangebyscore(self.completed_key, "-inf", now - max_age)
            excess = self._redis.zrange(self.completed_key, 0, -(keep + 1))
            return self._remove(self.completed_key, sorted(set(old) | set(excess)))

    def clear_failed(self) -> int:
        with self._transport():
            return self._remove(self.failed_key, self._redis.zrange(self.failed_key, 0, -1))


def _describe(e: PydanticValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


class JobQueue:
    """enqueue / claim / complete / fail over a queue backend, applying the retry policy and completed-job retention.
    Why available: The only mutual-exclusion mechanism in the system: one live job per (owner, meeting) keeps ResultStore merges uncontended."""

    def __init__(
        self,
        backend,
        policy: RetryPolicy = RetryPolicy(),
        keep_completed: int = 100,
        completed_max_age: float = 24 * 3600,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.policy = policy
        self.keep_completed = keep_completed
        self.completed_max_age = completed_max_age
        self.stall_timeout = stall_timeout
        self.clock = clock

    @staticmethod
    def build_job(owner_id: str, meeting_id: str, settings: Optional[EnrichmentSettings] = None) -> BriefingJob:
        """Validate a submission into a BriefingJob; malformed input raises ValidationError."""
        try:
            return BriefingJob(owner_id=owner_id, meeting_id=meeting_id, settings=settings or EnrichmentSettings())
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid briefing job: {_describe(e)}") from e

    def submit(self, owner_id: str, meeting_id: str, settings: Optional[EnrichmentSettings] = None) -> str:
        return self.enqueue(self.build_job(owner_id, meeting_id, settings))

    def enqueue(
        self,
        job: Union[BriefingJob, Mapping[str, Any]],
        on_created: Optional[Callable[[], None]] = None,
    ) -> str:
        """Make the job visible to workers and return its id synchronously. A live job with the same dedup key absorbs the submission.
        on_created runs only when this call created or re-armed the job, before any worker can claim it; an error from it aborts the enqueue.
        Raises ValidationError for a malformed payload and QueueUnavailable when the transport is down (not retried here)."""
        if not isinstance(job, BriefingJob):
            try:
                job = BriefingJob.model_validate(dict(job))
            except (PydanticValidationError, TypeError, ValueError) as e:
                detail = _describe(e) if isinstance(e, PydanticValidationError) else str(e)
                raise ValidationError(f"Invalid briefing job: {detail}") from e

        now = self.clock()
        qjob = QueuedJob(job_id=job.dedup_key, job=job, state="waiting", created_at=now, available_at=now)
        stored, created = self.backend.add(qjob, on_created=on_created, stalled_before=now - self.stall_timeout)
        extra = {"job_id": stored.job_id, "owner_id": job.owner_id, "meeting_id": job.meeting_id, "state": stored.state}
        if created:
            logger.info("job_enqueued", extra=extra)
        else:
            logger.info("job_deduplicated", extra=extra)
        return stored.job_id

    def claim(self) -> Optional[QueuedJob]:
        """Take the oldest ready job, mark it active and count the attempt. None when nothing is ready."""
        return self.backend.claim(self.clock())

    def release(self, qjob: QueuedJob) -> None:
        """Hand back a claim that was never started; the attempt is not counted."""
        qjob.state = "waiting"
        qjob.attempts_made = max(0, qjob.attempts_made - 1)
        qjob.started_at = None
        self.backend.save(qjob)

    def recover_stalled(self) -> List[QueuedJob]:
        """Move active jobs whose worker has been silent for longer than stall_timeout back to waiting.
        The lost attempt stays counted; a stalled job with no attempts left is failed. Returns the jobs moved."""
        now = self.clock()

        def _settle(qjob: QueuedJob) -> None:
            qjob.last_error = STALLED_ERROR
            if self.policy.has_attempts_left(qjob.attempts_made):
                qjob.state = "waiting"
                qjob.available_at = now
            else:
                qjob.state = "failed"
                qjob.finished_at = now

        recovered = self.backend.release_stalled(now - self.stall_timeout, _settle)
        for qjob in recovered:
            logger.warning(
                "job_stalled",
                extra={"job_id": qjob.job_id, "attempt": qjob.attempts_made, "state": qjob.state},
            )
        return recovered

    def complete(self, qjob: QueuedJob) -> None:
        qjob.state = "completed"
        qjob.finished_at = self.clock()
        qjob.last_error = None
        self.backend.save(qjob)
        pruned = self.backend.prune_completed(self.keep_completed, self.completed_max_age, qjob.finished_at)
        if pruned:
            logger.debug("completed_jobs_pruned", extra={"count": pruned})

    def fail(self, qjob: QueuedJob, error: str, retryable: bool = True) -> Optional[float]:
        """Record a failed attempt. Returns the backoff delay when the job was rescheduled, None when it is now finally failed."""
        now = self.clock()
        qjob.last_error = error
        if retryable and self.policy.has_attempts_left(qjob.attempts_made):
            delay = self.policy.delay_for(qjob.attempts_made)
            qjob.state = "delayed"
            qjob.available_at = now + delay
            self.backend.save(qjob)
            return delay
        qjob.state = "failed"
        qjob.finished_at = now
        self.backend.save(qjob)
        return None

    def get(self, job_id: str) -> Optional[QueuedJob]:
        return self.backend.get(job_id)

    def counts(self) -> Dict[str, int]:
        return self.backend.counts(self.clock())

    def clear_failed(self) -> int:
        """Drop failed jobs kept for inspection. Failed jobs are never pruned automatically."""
        return self.backend.clear_failed()
