import json
import logging
from typing import Any, List, Optional, Sequence, Tuple

from briefings.core.quality import QualityProfile, profile_for
from briefings.enrich.responses import (
    ATTENDEE_FIELDS,
    COMPANY_DESCRIPTION_FIELDS,
    ICEBREAKER_FIELDS,
    TALKING_POINT_FIELDS,
    Parsed,
    RawText,
    as_object,
    first_field,
    parse_llm_output,
)
from briefings.models.schemas import (
    AttendeeInfo,
    CompanyInfo,
    EnrichmentSettings,
    Icebreaker,
    Meeting,
    Person,
    TalkingPoint,
)
from briefings.prompts.loader import PromptLoader, PromptTemplate

logger = logging.getLogger(__name__)

NO_CONTEXT = "No additional context available."
MEETING_CONTEXT = "Sales meeting briefing preparation"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        value = "; ".join(str(v) for v in value if v)
    text = str(value).strip()
    return text or None


def _text_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return None
    out = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return out or None


def _items(data: dict, key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) else []


def _confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(max(float(value), 0.0), 1.0) if value else default


class BriefingWriter:
    """LLM-backed writers for the company summary, attendee summaries, and talking points / icebreakers.
    Why available: Stages 3-5 of enrichment; each call takes its model, token budget and temperature from the job's quality tier."""

    def __init__(self, llm, prompts: PromptLoader, light_model: str = "gpt-4o-mini", deep_model: str = "gpt-4o"):
        self.llm = llm
        self.prompts = prompts
        self.light_model = light_model
        self.deep_model = deep_model

    def profile(self, settings: EnrichmentSettings) -> QualityProfile:
        return profile_for(settings.briefing_quality, self.light_model, self.deep_model)

    def _complete(self, template: PromptTemplate, variables: dict, model: str, max_tokens: int, temperature: float) -> str:
        # A template may pin its own model / budget / temperature.
        return self.llm.complete(
            template.name,
            self.prompts.messages(template.name, variables),
            model=template.model or model,
            max_tokens=template.max_tokens or max_tokens,
            temperature=template.temperature if template.temperature is not None else temperature,
        )

    def company_summary(
        self,
        domain: str,
        name: str,
        homepage_snippet: Optional[str],
        settings: EnrichmentSettings,
    ) -> CompanyInfo:
        """Summarize the company. JSON output supplies the description; anything else is used verbatim. Confidence is 0.8 with a homepage snippet, 0.5 without."""
        p = self.profile(settings)
        template = self.prompts.load("company_summary")
        raw = self._complete(
            template,
            {"COMPANY_NAME": name, "COMPANY_DOMAIN": domain, "COMPANY_ABOUT": homepage_snippet or NO_CONTEXT},
            p.model,
            p.company_max_tokens,
            p.extraction_temperature,
        )

        summary = raw
        data = as_object(parse_llm_output(raw))
        if data is not None:
            summary = _text(first_field(data, COMPANY_DESCRIPTION_FIELDS)) or raw

        return CompanyInfo(
            domain=domain,
            name=name,
            summary=summary or None,
            confidence=0.8 if homepage_snippet else 0.5,
        )

    def attendee_summary(self, person: Person, linkedin_url: Optional[str], settings: EnrichmentSettings) -> AttendeeInfo:
        """Profile one attendee. A JSON object (or the first element of a JSON array) is merged field by field; plain text becomes the summary.
        Default confidence is 0.7 with a matched LinkedIn URL, 0.3 without."""
        p = self.profile(settings)
        template = self.prompts.load("attendee_summary")
        raw = self._complete(
            template,
            {
                "NAME": person.display_name or person.email or "",
                "EMAIL": person.email or "",
                "LINKEDIN_URL": linkedin_url or "",
                "MEETING_CONTEXT": MEETING_CONTEXT,
            },
            p.model,
            p.attendee_max_tokens,
            p.extraction_temperature,
        )

        default_confidence = 0.7 if linkedin_url else 0.3
        info = AttendeeInfo(
            email=person.email or "",
            display_name=person.display_name,
            linked_in_url=linkedin_url,
            confidence=default_confidence,
        )
        output = parse_llm_output(raw)
        data = as_object(output)
        if data is None:
            info.summary = _text(output.text if isinstance(output, RawText) else raw)
            return info

        fields = {name: first_field(data, aliases) for name, aliases in ATTENDEE_FIELDS.items()}
        info.name = _text(fields["name"])
        info.title = _text(fields["title"])
        info.summary = _text(fields["summary"])
        info.focus_areas = _text_list(fields["focus_areas"])
        info.recent_highlights = _text(fields["recent_highlights"])
        info.confidence = _confidence(fields["confidence"], default_confidence)
        return info

    def talking_points(
        self,
        meeting: Meeting,
        company: Optional[CompanyInfo],
        attendees: Sequence[AttendeeInfo],
        settings: EnrichmentSettings,
    ) -> Tuple[List[TalkingPoint], List[Icebreaker]]:
        """Generate talking points and icebreakers in one call from a compact JSON brief of the earlier stages.
        Raises ValueError when the response is not a JSON object (the terminal stage has no text fallback)."""
        p = self.profile(settings)
        template = self.prompts.load("talking_points")

        company_brief = (
            json.dumps({"name": company.name, "domain": company.domain, "description": company.summary})
            if company
            else "{}"
        )
        attendees_brief = json.dumps(
            [{"name": a.display_name or a.email, "summary": a.summary} for a in attendees]
        )
        raw = self._complete(
            template,
            {
                "COMPANY_BRIEF_JSON": company_brief,
                "ATTENDEES_JSON": attendees_brief,
                "MEETING_INTENT": meeting.description or "General meeting",
                "TONE": "professional",
                "LENGTH": p.quality,
            },
            p.model,
            p.max_tokens,
            p.creative_temperature,
        )

        output = parse_llm_output(raw)
        if not isinstance(output, Parsed) or not isinstance(output.data, dict):
            raise ValueError("Talking points response was not a JSON object")
        data = output.data

        talking_points: List[TalkingPoint] = []
        for item in _items(data, "talkingPoints"):
            point, rationale = self._item(item, TALKING_POINT_FIELDS, "point")
            if point:
                talking_points.append(TalkingPoint(point=point, rationale=rationale))

        icebreakers: List[Icebreaker] = []
        for item in _items(data, "icebreakers"):
            line, rationale = self._item(item, ICEBREAKER_FIELDS, "icebreaker")
            if line:
                icebreakers.append(Icebreaker(icebreaker=line, rationale=rationale))

        return talking_points, icebreakers

    @staticmethod
    def _item(item: Any, fields: dict, main: str) -> Tuple[str, str]:
        if isinstance(item, str):
            return item.strip(), ""
        if not isinstance(item, dict):
            return "", ""
        return (
            _text(first_field(item, fields[main])) or "",
            _text(first_field(item, fields["rationale"])) or "",
        )
