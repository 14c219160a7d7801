#!/usr/bin/env python3
"""Print queue, worker, cache and enrichment limits (from config and the API adapter). Run from repo root: python scripts/print_limits.py"""
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from briefings.core.config import settings
from briefings.core.quality import QUALITY_TIERS, profile_for
from briefings.main import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
from briefings.utils.retry import RetryPolicy


def main():
    """Print worker concurrency, start limiter, retry schedule, retention, cache TTLs, enrichment caps and quality tiers."""
    policy = RetryPolicy(attempts=settings.job_attempts, backoff_seconds=settings.job_backoff_seconds)
    delays = ", ".join(f"{policy.delay_for(n):g}s" for n in range(1, settings.job_attempts))

    print("Queue & worker limits")
    print("---------------------")
    print(f"  BACKEND               = {settings.backend} (queue {settings.queue_name})")
    print(f"  WORKER_CONCURRENCY    = {settings.worker_concurrency} (parallel pipelines)")
    print(f"  Start limiter         = {settings.limiter_max_jobs} jobs / {settings.limiter_window_seconds} s (rolling)")
    print(f"  JOB_ATTEMPTS          = {settings.job_attempts} (retry delays: {delays or 'none'})")
    print(f"  Completed retention   = {settings.keep_completed_jobs} jobs / {settings.completed_job_max_age_seconds} s")
    print(f"  JOB_STALL_TIMEOUT     = {settings.job_stall_timeout_seconds:g} s (silent active jobs handed back)")
    print(f"  CACHE_TTL_SECONDS     = {settings.cache_ttl_seconds}")
    print(f"  MAX_ATTENDEES         = {settings.max_attendees} (enriched per meeting)")
    print(f"  Rate limit            = {RATE_LIMIT_REQUESTS} requests / {RATE_LIMIT_WINDOW_SECONDS} s (per client IP)")
    print("")
    print("Quality tiers")
    print("-------------")
    for quality in QUALITY_TIERS:
        p = profile_for(quality, settings.chat_model, settings.deep_chat_model)
        print(
            f"  {quality:<9} model={p.model} max_tokens={p.max_tokens} "
            f"company={p.company_max_tokens} attendee={p.attendee_max_tokens}"
        )
    print("")
    print("Env: WORKER_CONCURRENCY, LIMITER_MAX_JOBS, JOB_ATTEMPTS, CACHE_TTL_SECONDS, MAX_ATTENDEES (see .env.example)")


if __name__ == "__main__":
    main()
