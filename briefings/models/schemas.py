from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

BriefingQuality = Literal["compact", "standard", "deep"]
BriefingStatus = Literal["processing", "completed", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_dedup_key(owner_id: str, meeting_id: str) -> str:
    """Deterministic job id for (owner, meeting): identical inputs always give the same key, so at most one live job exists per pair."""
    return f"{owner_id}:{meeting_id}:briefing"


class CamelModel(BaseModel):
    """Base for persisted shapes: snake_case attributes, camelCase on the wire (ownerId, lastGeneratedAt, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EnrichmentSettings(CamelModel):
    """Per-user enrichment settings carried on every job. Why available: quality tier drives model/token/temperature choice; LinkedIn flag gates URL matching."""

    briefing_quality: BriefingQuality = "standard"
    enable_linked_in_enrichment: bool = False
    notifications_enabled: bool = True


class BriefingJob(CamelModel):
    """One briefing generation request: who, which meeting, with which settings. dedupKey is derived, never supplied."""

    owner_id: str = Field(..., min_length=1)
    meeting_id: str = Field(..., min_length=1)
    settings: EnrichmentSettings = Field(default_factory=EnrichmentSettings)

    @field_validator("owner_id", "meeting_id")
    @classmethod
    def no_separator(cls, v: str) -> str:
        """Reject blank ids and ids containing ':' (the dedup key separator) so two different pairs can never share a key."""
        if not v.strip():
            raise ValueError("must not be blank")
        if ":" in v:
            raise ValueError("must not contain ':'")
        return v

    @computed_field
    @property
    def dedup_key(self) -> str:
        return build_dedup_key(self.owner_id, self.meeting_id)


class Person(CamelModel):
    email: Optional[str] = None
    display_name: Optional[str] = None
    response_status: Optional[str] = None


class Meeting(CamelModel):
    """Calendar meeting supplied by the request layer (external, read-mostly); enrichment input only."""

    id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[Person] = Field(default_factory=list)
    organizer: Optional[Person] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    html_link: Optional[str] = None
    cached_at: Optional[datetime] = None
    last_fetched_at: Optional[datetime] = None


class CompanyInfo(CamelModel):
    domain: Optional[str] = None
    name: Optional[str] = None
    logo: Optional[str] = None
    summary: Optional[str] = None
    confidence: Optional[float] = None


class AttendeeInfo(CamelModel):
    email: str
    display_name: Optional[str] = None
    linked_in_url: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    focus_areas: Optional[List[str]] = None
    recent_highlights: Optional[str] = None
    confidence: Optional[float] = None


class TalkingPoint(CamelModel):
    point: str
    rationale: str = ""
    confidence: float = 0.7
    sources: List[str] = Field(default_factory=list)


class Icebreaker(CamelModel):
    icebreaker: str
    rationale: str = ""
    confidence: float = 0.7
    sources: List[str] = Field(default_factory=list)


class BriefingRecord(CamelModel):
    """Evolving briefing for one (owner, meeting): created at enqueue, merged by each stage, finalized by the worker.
    Why available: The shape pollers read; sub-fields may be absent when their stage degraded."""

    status: BriefingStatus = "processing"
    job_id: Optional[str] = None
    last_generated_at: datetime = Field(default_factory=utcnow)
    model: Optional[str] = None
    company: Optional[CompanyInfo] = None
    attendees: Optional[List[AttendeeInfo]] = None
    talking_points: Optional[List[TalkingPoint]] = None
    icebreakers: Optional[List[Icebreaker]] = None
    error: Optional[str] = None


class BriefingUpdate(CamelModel):
    """Partial BriefingRecord for ResultStore.upsert: only the fields that are set are merged."""

    status: Optional[BriefingStatus] = None
    job_id: Optional[str] = None
    last_generated_at: Optional[datetime] = None
    model: Optional[str] = None
    company: Optional[CompanyInfo] = None
    attendees: Optional[List[AttendeeInfo]] = None
    talking_points: Optional[List[TalkingPoint]] = None
    icebreakers: Optional[List[Icebreaker]] = None
    error: Optional[str] = None


class CacheEntry(CamelModel):
    """A cached value and when it was stored (epoch seconds). Freshness is judged by the caller: now - storedAt <= ttl."""

    key: str
    value: Any = None
    stored_at: float


# -------------------------
# Request adapter payloads
# -------------------------

class GenerateBriefingRequest(CamelModel):
    meeting: Meeting
    settings: Optional[EnrichmentSettings] = None


class GenerateBriefingResponse(CamelModel):
    ok: bool = True
    job_id: str
    message: str = "Briefing generation started"


class JobStatusResponse(CamelModel):
    """Queue-side view of a job. Why available: Lets operators inspect attempts and the last error while a job is retrying."""

    job_id: str
    state: str
    attempts_made: int = Field(..., ge=0)
    last_error: Optional[str] = None


class HealthResponse(CamelModel):
    ok: bool = True
    backend: str
    queue: dict = Field(default_factory=dict)
