import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class BriefingError(Exception):
    """Base class for briefing pipeline errors."""


class ValidationError(BriefingError):
    """Malformed job payload. Raised synchronously at enqueue time; never retried."""


class QueueUnavailable(BriefingError):
    """The durable queue transport could not be reached. Reported to the caller of enqueue; not retried inside enqueue."""


class StoreUnavailable(QueueUnavailable):
    """The result store transport could not be reached. With the Redis backend it shares the queue's transport, so callers treat it as a queue outage."""


class TransientProviderError(BriefingError):
    """Network failure, timeout or 5xx from an external provider. The job is retried per the queue's backoff policy."""


class PermanentProviderError(BriefingError):
    """Provider reported a condition retrying cannot fix (missing meeting, rejected credentials). Finalizes the job as failed."""


class TerminalStageFailure(BriefingError):
    """The talking points / icebreakers stage failed. Fails the job; earlier partial results stay persisted."""


class StageDegradation(BriefingError):
    """A non-terminal stage failed; the pipeline logs it, omits or degrades that sub-result, and continues."""


NON_RETRYABLE = (ValidationError, PermanentProviderError, TerminalStageFailure)


def is_retryable(e: BaseException) -> bool:
    """Return True when a pipeline exception should consume another attempt (anything outside NON_RETRYABLE)."""
    return not isinstance(e, NON_RETRYABLE)


def error_message(e: BaseException) -> str:
    """Human-readable message for a BriefingRecord's `error` field (falls back to the exception class name)."""
    msg = str(e).strip()
    return msg or e.__class__.__name__


def as_http_error(e: Exception) -> HTTPException:
    """Map a briefing error to an HTTPException: 422 for validation, 503 when the queue is down, generic 500 otherwise (no internal details leaked).
    Why available: Centralized error handling so the request adapter never leaks stack traces or internal state to clients."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, QueueUnavailable):
        return HTTPException(status_code=503, detail="Briefing queue unavailable. Please retry later.")
    logger.error("unhandled_request_error", exc_info=e)
    return HTTPException(status_code=500, detail="Internal server error")
