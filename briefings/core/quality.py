"""Briefing quality tiers: model choice, output-token budgets and sampling temperatures."""
from dataclasses import dataclass

QUALITY_TIERS = ("compact", "standard", "deep")

MAX_TOKENS_BY_QUALITY = {"compact": 500, "standard": 1000, "deep": 2000}
COMPANY_SUMMARY_MAX_TOKENS = {"compact": 200, "standard": 400, "deep": 400}
ATTENDEE_SUMMARY_MAX_TOKENS = {"compact": 150, "standard": 300, "deep": 300}

# extraction: company / attendee summaries; creative: talking points and icebreakers
TEMPERATURE_BY_KIND = {"extraction": 0.2, "creative": 0.6}


@dataclass(frozen=True)
class QualityProfile:
    """Resolved LLM parameters for one briefing quality tier.
    Why available: Every LLM call in the pipeline reads its model, token budget and temperature from one place."""

    quality: str
    model: str
    max_tokens: int
    company_max_tokens: int
    attendee_max_tokens: int
    extraction_temperature: float
    creative_temperature: float


def model_for_quality(quality: str, light_model: str = "gpt-4o-mini", deep_model: str = "gpt-4o") -> str:
    """compact and standard use the light tier; deep uses the higher-capability model. Unknown tiers fall back to light."""
    return deep_model if quality == "deep" else light_model


def temperature_for(kind: str) -> float:
    return TEMPERATURE_BY_KIND.get(kind, TEMPERATURE_BY_KIND["extraction"])


def profile_for(quality: str, light_model: str = "gpt-4o-mini", deep_model: str = "gpt-4o") -> QualityProfile:
    """Return the QualityProfile for compact | standard | deep (unknown values resolve like standard)."""
    tier = quality if quality in QUALITY_TIERS else "standard"
    return QualityProfile(
        quality=tier,
        model=model_for_quality(tier, light_model, deep_model),
        max_tokens=MAX_TOKENS_BY_QUALITY[tier],
        company_max_tokens=COMPANY_SUMMARY_MAX_TOKENS[tier],
        attendee_max_tokens=ATTENDEE_SUMMARY_MAX_TOKENS[tier],
        extraction_temperature=temperature_for("extraction"),
        creative_temperature=temperature_for("creative"),
    )
