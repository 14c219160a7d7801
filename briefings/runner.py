"""Worker process entry point: python -m briefings.runner (or the briefings-worker script).

Builds the services once, starts the WorkerPool and stops it on SIGINT / SIGTERM, letting running
pipelines finish first.
"""
import logging
import signal
import threading

from briefings.core.config import settings
from briefings.core.log import configure_logging
from briefings.services import build_services

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    if settings.backend == "memory":
        # Jobs submitted by another process are invisible to an in-memory queue.
        logger.warning("worker_memory_backend", extra={"hint": "set BACKEND=redis to share the queue with the API"})

    services = build_services(settings)
    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("worker_shutdown_requested", extra={"signal": signum})
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    services.worker.start()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        services.worker.stop(wait=True)


if __name__ == "__main__":
    main()
