"""Service container built once per process and passed explicitly to the API and the worker runner.

`build_services` wires the chosen backend (in-memory for a single process, Redis for a durable
multi-process deployment) into the queue, result store, cache, pipeline and worker pool.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import redis

from briefings.core.config import Settings
from briefings.core.openai_client import ChatClient, build_openai_client
from briefings.enrich.pipeline import EnrichmentPipeline
from briefings.enrich.web import CompanySignals
from briefings.enrich.writer import BriefingWriter
from briefings.guardrails.errors import QueueUnavailable, error_message
from briefings.guardrails.rate_limit import SlidingWindowLimiter
from briefings.jobs.queue import InMemoryQueueBackend, JobQueue, RedisQueueBackend
from briefings.jobs.worker import WorkerPool
from briefings.models.schemas import BriefingRecord, EnrichmentSettings, Meeting
from briefings.observability.events import JobObserver, LoggingJobObserver, ObserverGroup
from briefings.prompts.loader import PromptLoader
from briefings.store.cache import CacheLayer, MemoryCacheBackend, RedisCacheBackend
from briefings.store.meetings import MeetingDirectory
from briefings.store.results import InMemoryResultStore, RedisResultStore, ResultStore
from briefings.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cache: CacheLayer
    results: ResultStore
    meetings: MeetingDirectory
    queue: JobQueue
    pipeline: EnrichmentPipeline
    worker: WorkerPool


def build_services(
    cfg: Settings,
    *,
    llm=None,
    signals: Optional[CompanySignals] = None,
    redis_client=None,
    observer: Optional[JobObserver] = None,
) -> Services:
    """Construct every collaborator once from settings. llm / signals / redis_client may be injected (tests, custom transports).
    Why available: Replaces module-level singletons; the API and the worker process each call this at start-up."""
    if cfg.backend == "redis":
        client = redis_client or redis.Redis.from_url(cfg.redis_url, decode_responses=True)
        cache_backend = RedisCacheBackend(client)
        results: ResultStore = RedisResultStore(client)
        queue_backend = RedisQueueBackend(client, cfg.queue_name)
    else:
        cache_backend = MemoryCacheBackend()
        results = InMemoryResultStore()
        queue_backend = InMemoryQueueBackend()

    cache = CacheLayer(cache_backend, default_ttl=cfg.cache_ttl_seconds)
    meetings = MeetingDirectory(cache, cfg.meeting_ttl_seconds, cfg.cache_ttl_seconds)
    queue = JobQueue(
        queue_backend,
        RetryPolicy(attempts=cfg.job_attempts, backoff_seconds=cfg.job_backoff_seconds),
        keep_completed=cfg.keep_completed_jobs,
        completed_max_age=cfg.completed_job_max_age_seconds,
        stall_timeout=cfg.job_stall_timeout_seconds,
    )

    if llm is None:
        llm = ChatClient(build_openai_client(cfg), timeout_seconds=cfg.llm_timeout_seconds)
    if signals is None:
        signals = CompanySignals(
            logo_base_url=cfg.logo_base_url,
            logo_timeout=cfg.logo_timeout_seconds,
            homepage_timeout=cfg.homepage_timeout_seconds,
            max_bytes=cfg.homepage_max_bytes,
            snippet_chars=cfg.homepage_snippet_chars,
        )
    writer = BriefingWriter(llm, PromptLoader(cfg.prompt_version), cfg.chat_model, cfg.deep_chat_model)
    pipeline = EnrichmentPipeline(results, meetings, writer, signals, max_attendees=cfg.max_attendees)

    worker = WorkerPool(
        queue,
        pipeline,
        concurrency=cfg.worker_concurrency,
        limiter=SlidingWindowLimiter(cfg.limiter_max_jobs, cfg.limiter_window_seconds),
        observer=ObserverGroup([LoggingJobObserver(), observer]) if observer else None,
        poll_interval=cfg.poll_interval_seconds,
    )
    logger.info("services_built", extra={"backend": cfg.backend, "queue": cfg.queue_name})
    return Services(cfg, cache, results, meetings, queue, pipeline, worker)


class BriefingService:
    """The two calls the request layer makes: start a briefing (jobId back synchronously) and read the record for polling."""

    def __init__(self, services: Services):
        self.services = services

    def generate(self, owner_id: str, meeting: Meeting, settings: Optional[EnrichmentSettings] = None) -> str:
        """Store the meeting for the pipeline and enqueue; the record is marked processing only when this call created or re-armed the job.
        Raises ValidationError or QueueUnavailable synchronously; a queue outage also marks the record failed when the store is reachable."""
        s = self.services
        job = s.queue.build_job(owner_id, meeting.id, settings)
        s.meetings.save(owner_id, meeting)

        def mark_processing():
            s.results.upsert(owner_id, meeting.id, {"status": "processing", "jobId": job.dedup_key})

        try:
            return s.queue.enqueue(job, on_created=mark_processing)
        except QueueUnavailable as e:
            self._record_outage(owner_id, meeting.id, e)
            raise

    def _record_outage(self, owner_id: str, meeting_id: str, e: QueueUnavailable) -> None:
        try:
            self.services.results.upsert(owner_id, meeting_id, {"status": "failed", "error": error_message(e)})
        except QueueUnavailable:
            logger.warning("briefing_failure_not_saved", extra={"owner_id": owner_id, "meeting_id": meeting_id})

    def get_briefing(self, owner_id: str, meeting_id: str) -> Optional[BriefingRecord]:
        return self.services.results.get(owner_id, meeting_id)

    def job_status(self, job_id: str):
        return self.services.queue.get(job_id)
