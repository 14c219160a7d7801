import sys
from pathlib import Path
import json
import pytest

# Ensure repo root is on sys.path so `import briefings...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from briefings.core.config import Settings
from briefings.enrich.pipeline import EnrichmentPipeline
from briefings.enrich.writer import BriefingWriter
from briefings.models.schemas import Meeting
from briefings.prompts.loader import PromptLoader
from briefings.services import build_services
from briefings.store.cache import CacheLayer, MemoryCacheBackend
from briefings.store.meetings import MeetingDirectory
from briefings.store.results import InMemoryResultStore


COMPANY_JSON = '{"description": "Acme builds anvils for coyotes."}'
ATTENDEE_JSON = '{"title": "VP Sales", "summary": "Runs the sales org.", "focusAreas": ["pipeline", "pricing"]}'
TALKING_POINTS_JSON = json.dumps(
    {
        "talkingPoints": [{"bullet": "Ask about the Q3 rollout", "rationale": "They mentioned it"}],
        "icebreakers": [{"line": "How was the offsite?", "whyItWorks": "Recent event"}],
    }
)


class FakeClock:
    """Manually advanced clock for queue, limiter and cache tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLM:
    """Stands in for ChatClient. Responses per component: a string, an exception to raise, or a callable(messages) -> str."""

    def __init__(self, responses=None):
        self.responses = {
            "company_summary": COMPANY_JSON,
            "attendee_summary": ATTENDEE_JSON,
            "talking_points": TALKING_POINTS_JSON,
        }
        self.responses.update(responses or {})
        self.calls = []

    def complete(self, component, messages, *, model, max_tokens, temperature):
        self.calls.append(
            {"component": component, "messages": messages, "model": model, "max_tokens": max_tokens, "temperature": temperature}
        )
        r = self.responses[component]
        if isinstance(r, Exception):
            raise r
        if callable(r):
            return r(messages)
        return r

    def calls_for(self, component):
        return [c for c in self.calls if c["component"] == component]


class FakeSignals:
    """Stands in for CompanySignals with fixed logo / snippet results."""

    def __init__(self, logo="https://logo.example/acme.com", snippet="Acme Corp. Anvils since 1949.", error=None):
        self.logo = logo
        self.snippet = snippet
        self.error = error
        self.domains = []

    def fetch_company_logo(self, domain):
        self.domains.append(domain)
        if self.error:
            raise self.error
        return self.logo

    def fetch_homepage_snippet(self, domain):
        return self.snippet


def make_meeting(meeting_id="m1", organizer="alice@acme.com", attendees=("bob@acme.com",), description=None) -> Meeting:
    return Meeting.model_validate(
        {
            "id": meeting_id,
            "summary": "Quarterly sync",
            "description": description,
            "organizer": {"email": organizer} if organizer else None,
            "attendees": [{"email": a, "displayName": a.split("@")[0].title()} for a in attendees],
        }
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_signals():
    return FakeSignals()


@pytest.fixture
def results():
    return InMemoryResultStore()


@pytest.fixture
def meetings():
    return MeetingDirectory(CacheLayer(MemoryCacheBackend()), meeting_ttl_seconds=3600, list_ttl_seconds=900)


@pytest.fixture
def pipeline(results, meetings, fake_llm, fake_signals):
    writer = BriefingWriter(fake_llm, PromptLoader("v1"), "light-model", "deep-model")
    return EnrichmentPipeline(results, meetings, writer, fake_signals, max_attendees=5)


@pytest.fixture
def test_settings():
    return Settings(
        openai_api_key="test",
        chat_model="light-model",
        deep_chat_model="deep-model",
        backend="memory",
        embedded_worker=False,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def services(test_settings, fake_llm, fake_signals):
    return build_services(test_settings, llm=fake_llm, signals=fake_signals)


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      item._api_logs = [{"title": "...", "request": {...}, "response": {...}}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    # Only attach if pytest-html is installed/enabled
    extras = getattr(rep, "extras", [])

    try:
        from pytest_html import extras as html_extras
    except ImportError:
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        html = (
            f"<h4>{title}</h4>"
            f"<details><summary><b>Request</b></summary><pre>{pretty_json(entry.get('request', {}))}</pre></details>"
            f"<details><summary><b>Response</b></summary><pre>{pretty_json(entry.get('response', {}))}</pre></details>"
        )
        extras.append(html_extras.html(html))

    rep.extras = extras
