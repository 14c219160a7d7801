"""Job outcome observers: a fixed contract the worker pool reports terminal results through."""
import logging
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)


class JobObserver(Protocol):
    def on_completed(self, job_id: str) -> None: ...

    def on_failed(self, job_id: str, error: str) -> None: ...


class LoggingJobObserver:
    """Logs terminal job outcomes (completed at INFO, failed at ERROR)."""

    def on_completed(self, job_id: str) -> None:
        logger.info("job_completed", extra={"job_id": job_id})

    def on_failed(self, job_id: str, error: str) -> None:
        logger.error("job_failed", extra={"job_id": job_id, "error": error})


class ObserverGroup:
    """Fans one outcome out to several observers; an observer that raises is logged and skipped."""

    def __init__(self, observers: Iterable[JobObserver]):
        self.observers = list(observers)

    def on_completed(self, job_id: str) -> None:
        for o in self.observers:
            try:
                o.on_completed(job_id)
            except Exception:
                logger.exception("observer_error", extra={"job_id": job_id})

    def on_failed(self, job_id: str, error: str) -> None:
        for o in self.observers:
            try:
                o.on_failed(job_id, error)
            except Exception:
                logger.exception("observer_error", extra={"job_id": job_id})
