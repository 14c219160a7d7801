"""Multi-stage briefing enrichment for one job.

Stages run strictly in order and each checkpoints its contribution to the BriefingRecord before
the next starts, so an interrupted job still leaves a usable partial briefing:

1. company domain inference     (organizer, then attendees; public providers skipped)
2. company signals              (logo probe, homepage snippet; best-effort)
3. company summary              (LLM; failure degrades company only)   -> checkpoint `company`
4. attendee enrichment          (first N attendees; per-attendee failure degrades that entry) -> checkpoint `attendees`
5. talking points / icebreakers (LLM; failure fails the job)           -> finalize `completed`
"""
import logging
from typing import Callable, List, Optional, Protocol

from briefings.enrich.domain import (
    company_name_from_domain,
    extract_linkedin_urls,
    infer_company_domain,
    linkedin_handles,
    match_linkedin_url,
)
from briefings.enrich.web import CompanySignals
from briefings.enrich.writer import BriefingWriter
from briefings.guardrails.errors import (
    PermanentProviderError,
    StageDegradation,
    TerminalStageFailure,
    TransientProviderError,
)
from briefings.models.schemas import (
    AttendeeInfo,
    BriefingJob,
    BriefingRecord,
    BriefingUpdate,
    CompanyInfo,
    EnrichmentSettings,
    Meeting,
    utcnow,
)
from briefings.store.results import ResultStore

logger = logging.getLogger(__name__)


class MeetingSource(Protocol):
    def get_meeting(self, owner_id: str, meeting_id: str) -> Optional[Meeting]: ...


class EnrichmentPipeline:
    """Turns a (owner, meeting, settings) job into company info, attendee info, talking points and icebreakers, persisting after every stage.
    Why available: The unit of work the WorkerPool executes; only the talking-points stage can fail the job."""

    def __init__(
        self,
        results: ResultStore,
        meetings: MeetingSource,
        writer: BriefingWriter,
        signals: CompanySignals,
        *,
        max_attendees: int = 5,
        now: Callable = utcnow,
    ):
        self.results = results
        self.meetings = meetings
        self.writer = writer
        self.signals = signals
        self.max_attendees = max_attendees
        self.now = now

    def _save(self, job: BriefingJob, **fields) -> None:
        self.results.upsert(job.owner_id, job.meeting_id, BriefingUpdate(**fields))

    @staticmethod
    def _degraded(stage: str, e: Exception, **context) -> None:
        degradation = StageDegradation(f"{stage} enrichment degraded: {e}")
        logger.warning("stage_degraded", extra={"stage": stage, "error": str(degradation), **context})

    def run(self, job: BriefingJob, job_id: str) -> BriefingRecord:
        """Execute all stages for a job and return the completed record.
        Raises PermanentProviderError if the meeting is unknown, TransientProviderError for retryable provider failures in the terminal stage, TerminalStageFailure otherwise."""
        owner_id, meeting_id, settings = job.owner_id, job.meeting_id, job.settings
        extra = {"job_id": job_id, "owner_id": owner_id, "meeting_id": meeting_id}

        self._save(job, status="processing", job_id=job_id, last_generated_at=self.now())

        meeting = self.meetings.get_meeting(owner_id, meeting_id)
        if meeting is None:
            raise PermanentProviderError(f"Meeting {meeting_id} not found")

        logger.debug("stage_company_started", extra=extra)
        company = self.enrich_company(meeting, settings)
        if company is not None:
            self._save(job, company=company)

        logger.debug("stage_attendees_started", extra=extra)
        attendees = self.enrich_attendees(meeting, settings)
        self._save(job, attendees=attendees)

        logger.debug("stage_talking_points_started", extra=extra)
        try:
            talking_points, icebreakers = self.writer.talking_points(meeting, company, attendees, settings)
        except (TransientProviderError, PermanentProviderError):
            raise
        except Exception as e:
            raise TerminalStageFailure(f"Talking points generation failed: {e}") from e

        model = self.writer.profile(settings).model
        self._save(
            job,
            status="completed",
            job_id=job_id,
            model=model,
            last_generated_at=self.now(),
            talking_points=talking_points,
            icebreakers=icebreakers,
        )
        logger.info("briefing_completed", extra={**extra, "model": model})
        return self.results.get(owner_id, meeting_id)

    def mark_failed(self, job: BriefingJob, job_id: str, error: str) -> None:
        """Finalize the record as failed with a human-readable error; previously persisted sub-results are kept."""
        self._save(job, status="failed", job_id=job_id, last_generated_at=self.now(), error=error)

    def enrich_company(self, meeting: Meeting, settings: EnrichmentSettings) -> Optional[CompanyInfo]:
        """Stages 1-3. Returns None when no business domain is found or when any step fails (logged as a degradation)."""
        domain = infer_company_domain(meeting)
        if not domain:
            logger.debug("company_domain_not_found", extra={"meeting_id": meeting.id})
            return None

        try:
            logo = self.signals.fetch_company_logo(domain)
            snippet = self.signals.fetch_homepage_snippet(domain)
            company = self.writer.company_summary(domain, company_name_from_domain(domain), snippet, settings)
        except Exception as e:
            self._degraded("company", e, domain=domain)
            return None

        if logo:
            company.logo = logo
        return company

    def enrich_attendees(self, meeting: Meeting, settings: EnrichmentSettings) -> List[AttendeeInfo]:
        """Stage 4. Enrich at most the first max_attendees attendees (those without an email are skipped). Always returns a list; failed entries are degraded to email/display name with confidence 0."""
        handles = linkedin_handles(extract_linkedin_urls(meeting.description))
        enriched: List[AttendeeInfo] = []

        for person in meeting.attendees[: self.max_attendees]:
            if not person.email:
                continue
            linkedin_url = None
            if settings.enable_linked_in_enrichment:
                linkedin_url = match_linkedin_url(person, handles)
            try:
                enriched.append(self.writer.attendee_summary(person, linkedin_url, settings))
            except Exception as e:
                self._degraded("attendee", e, email=person.email)
                enriched.append(AttendeeInfo(email=person.email, display_name=person.display_name, confidence=0.0))

        return enriched
