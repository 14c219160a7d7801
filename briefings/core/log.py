"""Logging setup: event-name messages with context passed via `extra=`, rendered as key=value pairs."""
import logging
from typing import Optional

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """Standard formatter that appends `extra=` fields to the line (e.g. `job_enqueued job_id=u1:m1:briefing`)."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")}
        if not extras:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return f"{line} {pairs}"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler with ExtraFormatter on the root logger. Safe to call more than once.
    Why available: API and worker processes share one log format so job ids can be followed across both."""
    if level is None:
        from briefings.core.config import settings
        level = settings.log_level

    root = logging.getLogger()
    root.setLevel(level.upper())
    for h in root.handlers:
        if isinstance(h.formatter, ExtraFormatter):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
