import os
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Settings loaded from environment: LLM models and timeouts, queue backend and worker limits, cache TTLs, enrichment caps and prompt version.
    Why available: Single source of configuration so the queue, worker pool, pipeline and API agree on limits and model names."""
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    chat_model: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    deep_chat_model: str = os.getenv("DEEP_CHAT_MODEL", "gpt-4o")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    openai_max_retries: int = int(os.getenv("OPENAI_MAX_RETRIES", "0"))  # job-level retries live in the queue

    backend: str = os.getenv("BACKEND", "memory")  # memory | redis
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    queue_name: str = os.getenv("QUEUE_NAME", "briefing-generation")

    worker_concurrency: int = int(os.getenv("WORKER_CONCURRENCY", "5"))
    limiter_max_jobs: int = int(os.getenv("LIMITER_MAX_JOBS", "10"))
    limiter_window_seconds: int = int(os.getenv("LIMITER_WINDOW_SECONDS", "60"))
    job_attempts: int = int(os.getenv("JOB_ATTEMPTS", "5"))
    job_backoff_seconds: float = float(os.getenv("JOB_BACKOFF_SECONDS", "2.0"))
    keep_completed_jobs: int = int(os.getenv("KEEP_COMPLETED_JOBS", "100"))
    completed_job_max_age_seconds: int = int(os.getenv("COMPLETED_JOB_MAX_AGE_SECONDS", str(24 * 3600)))
    job_stall_timeout_seconds: float = float(os.getenv("JOB_STALL_TIMEOUT_SECONDS", str(15 * 60)))
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "0.5"))
    embedded_worker: bool = _env_bool("EMBEDDED_WORKER", "true")

    cache_ttl_seconds: int = int(os.getenv("CACHE_TTL_SECONDS", "900"))  # 15 minutes
    meeting_ttl_seconds: int = int(os.getenv("MEETING_TTL_SECONDS", str(7 * 24 * 3600)))

    logo_base_url: str = os.getenv("LOGO_BASE_URL", "https://logo.clearbit.com")
    logo_timeout_seconds: float = float(os.getenv("LOGO_TIMEOUT_SECONDS", "5"))
    homepage_timeout_seconds: float = float(os.getenv("HOMEPAGE_TIMEOUT_SECONDS", "10"))
    homepage_max_bytes: int = int(os.getenv("HOMEPAGE_MAX_BYTES", "100000"))  # 100 KB
    homepage_snippet_chars: int = int(os.getenv("HOMEPAGE_SNIPPET_CHARS", "500"))
    max_attendees: int = int(os.getenv("MAX_ATTENDEES", "5"))

    prompt_version: str = os.getenv("PROMPT_VERSION", "v1")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator(
        "worker_concurrency",
        "limiter_max_jobs",
        "limiter_window_seconds",
        "job_attempts",
        "keep_completed_jobs",
        "cache_ttl_seconds",
        "meeting_ttl_seconds",
        "homepage_max_bytes",
        "homepage_snippet_chars",
        "max_attendees",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Ensure worker, queue, cache and enrichment limits are positive integers. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("job_backoff_seconds", "job_stall_timeout_seconds", "poll_interval_seconds", "llm_timeout_seconds")
    @classmethod
    def must_be_positive_seconds(cls, v):
        if v <= 0:
            raise ValueError("must be > 0 seconds")
        return v

    @field_validator("backend")
    @classmethod
    def known_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("must be 'memory' or 'redis'")
        return v


settings = Settings()
