"""LLM response parsing as an explicit result type.

Model output is often, but not reliably, JSON. `parse_llm_output` returns either `Parsed` (the
decoded JSON value) or `RawText` (the stripped text), and field lookups go through ordered alias
tables instead of ad-hoc probing.
"""
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union


@dataclass(frozen=True)
class Parsed:
    data: Any


@dataclass(frozen=True)
class RawText:
    text: str


LLMOutput = Union[Parsed, RawText]

# Accepted field names per response kind, in order of preference.
COMPANY_DESCRIPTION_FIELDS = ("description", "oneLine", "summary")
TALKING_POINT_FIELDS = {"point": ("bullet", "point"), "rationale": ("rationale",)}
ICEBREAKER_FIELDS = {"icebreaker": ("line", "icebreaker"), "rationale": ("whyItWorks", "rationale")}
ATTENDEE_FIELDS = {
    "name": ("name",),
    "title": ("title",),
    "summary": ("summary",),
    "focus_areas": ("focusAreas",),
    "recent_highlights": ("recentHighlights",),
    "confidence": ("confidence",),
}


def _strip_fences(raw: str) -> str:
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[1] if "\n" in raw else ""
        if raw.rstrip().endswith("```"):
            raw = raw.rstrip()[:-3]
    return raw.strip()


def parse_llm_output(raw: Optional[str]) -> LLMOutput:
    """Parse LLM output as JSON (markdown code fences tolerated). If that fails, try the outermost {...} block; otherwise return RawText.
    Why available: Every enrichment stage needs the same JSON-or-text decision before reading fields."""
    text = (raw or "").strip()
    if not text:
        return RawText("")
    body = _strip_fences(text)
    try:
        return Parsed(json.loads(body))
    except ValueError:
        start, end = body.find("{"), body.rfind("}")
        if start != -1 and end > start:
            try:
                return Parsed(json.loads(body[start : end + 1]))
            except ValueError:
                pass
    return RawText(text)


def first_field(data: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Value of the first alias present with a non-empty value, else None."""
    for name in aliases:
        value = data.get(name)
        if value not in (None, "", [], {}):
            return value
    return None


def as_object(output: LLMOutput) -> Optional[Mapping[str, Any]]:
    """The JSON object in a Parsed result: the value itself, or the first element of a list. None otherwise."""
    if not isinstance(output, Parsed):
        return None
    data = output.data
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None
