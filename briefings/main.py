"""Thin HTTP adapter over the briefing services. Run with: uvicorn briefings.main:create_app --factory"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from briefings.core.config import settings
from briefings.core.log import configure_logging
from briefings.guardrails.errors import BriefingError, as_http_error
from briefings.guardrails.rate_limit import RequestRateLimiter
from briefings.models.schemas import (
    GenerateBriefingRequest,
    GenerateBriefingResponse,
    HealthResponse,
    JobStatusResponse,
)
from briefings.observability.middleware import RequestTimingMiddleware
from briefings.services import BriefingService, Services, build_services


RATE_LIMIT_REQUESTS = 20
RATE_LIMIT_WINDOW_SECONDS = 60


def _owner(x_owner_id: Optional[str]) -> str:
    """Opaque owner id supplied by the auth layer in front of this adapter; no token validation happens here."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def create_app(services: Optional[Services] = None, embedded_worker: Optional[bool] = None) -> FastAPI:
    """Build the FastAPI adapter around a service container (built from settings when not given).
    Why available: Lets tests and deployments inject their own services; the embedded worker runs inside the API process for the memory backend."""
    configure_logging()
    services = services or build_services(settings)
    run_worker = services.settings.embedded_worker if embedded_worker is None else embedded_worker
    briefings = BriefingService(services)
    rate_limiter = RequestRateLimiter(RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_worker:
            services.worker.start()
        try:
            yield
        finally:
            if run_worker:
                services.worker.stop(wait=False)

    app = FastAPI(title="Meeting Briefings", lifespan=lifespan)
    app.add_middleware(RequestTimingMiddleware)
    app.state.services = services

    # -------------------------
    # Root / health
    # -------------------------

    @app.get("/")
    def root():
        """Returns a minimal welcome payload with app name and docs URL."""
        return {"app": "Meeting Briefings", "docs": "/docs"}

    @app.get("/health", response_model=HealthResponse, response_model_by_alias=True)
    def health():
        """Returns 200 with the backend in use and queue counts per state.
        Why available: Probes and operators can see whether jobs are piling up or failing."""
        try:
            counts = services.queue.counts()
        except Exception as e:
            raise as_http_error(e)
        return HealthResponse(backend=services.settings.backend, queue=counts)

    # -------------------------
    # Briefings
    # -------------------------

    @app.post("/meetings/{meeting_id}/generate", status_code=202, response_model=GenerateBriefingResponse, response_model_by_alias=True)
    def generate_briefing(
        meeting_id: str,
        req: GenerateBriefingRequest,
        request: Request,
        x_owner_id: Optional[str] = Header(None),
    ):
        """Stores the supplied meeting and enqueues a briefing job; returns the job id immediately. Repeated calls for the same meeting return the same job id.
        Why available: Producer side of the queue; clients then poll GET /meetings/{meeting_id}/briefing."""
        rate_limiter.check(request)
        owner_id = _owner(x_owner_id)
        if req.meeting.id != meeting_id:
            raise HTTPException(status_code=400, detail="Meeting id in body does not match path")

        try:
            job_id = briefings.generate(owner_id, req.meeting, req.settings)
        except BriefingError as e:
            raise as_http_error(e)
        return GenerateBriefingResponse(job_id=job_id)

    @app.get("/meetings/{meeting_id}/briefing")
    def get_briefing(meeting_id: str, request: Request, x_owner_id: Optional[str] = Header(None)):
        """Returns the current BriefingRecord (processing / completed / failed) for polling.
        Why available: The read side clients poll; failed records carry a human-readable error, never an exception."""
        rate_limiter.check(request)
        owner_id = _owner(x_owner_id)
        try:
            record = briefings.get_briefing(owner_id, meeting_id)
        except BriefingError as e:
            raise as_http_error(e)
        if record is None:
            raise HTTPException(status_code=404, detail="Briefing not found")
        return JSONResponse(record.to_wire())

    # -------------------------
    # Job Status
    # -------------------------

    @app.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_by_alias=True)
    def job_status(job_id: str, request: Request):
        """Returns the queue-side state of a job (waiting / delayed / active / completed / failed), attempts made and last error."""
        rate_limiter.check(request)
        try:
            qjob = briefings.job_status(job_id)
        except BriefingError as e:
            raise as_http_error(e)
        if qjob is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobStatusResponse(
            job_id=qjob.job_id,
            state=qjob.state,
            attempts_made=qjob.attempts_made,
            last_error=qjob.last_error,
        )

    return app
