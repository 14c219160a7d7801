"""Company domain inference and LinkedIn URL extraction (pure functions, no I/O)."""
import re
from typing import Dict, Iterable, List, Optional

from briefings.models.schemas import Meeting, Person

COMMON_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "yahoo.com",
        "outlook.com",
        "hotmail.com",
        "icloud.com",
        "protonmail.com",
        "aol.com",
    }
)

LINKEDIN_URL_RE = re.compile(r"https?://(?:www\.)?linkedin\.com/in/[\w-]+", re.IGNORECASE)
LINKEDIN_HANDLE_RE = re.compile(r"linkedin\.com/in/([\w-]+)", re.IGNORECASE)


def extract_domain(email: Optional[str]) -> Optional[str]:
    """Return the part after the last '@' (user@example.com -> example.com), or None when there is none."""
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip()
    return domain or None


def is_common_email_domain(domain: str) -> bool:
    return domain.lower() in COMMON_EMAIL_DOMAINS


def infer_company_domain(meeting: Meeting) -> Optional[str]:
    """Pick the company domain for a meeting: the organizer's domain unless it is a public email provider, else the first attendee domain (in list order) that is not. None when every domain is public.
    Why available: Stage 1 of enrichment; company research is skipped entirely when no business domain is found."""
    candidates: List[Optional[Person]] = [meeting.organizer] + list(meeting.attendees)
    for person in candidates:
        domain = extract_domain(person.email) if person else None
        if domain and not is_common_email_domain(domain):
            return domain
    return None


def company_name_from_domain(domain: str) -> str:
    """Display name from the domain's first label: acme-labs.io -> 'Acme Labs'."""
    label = domain.split(".")[0]
    words = re.sub(r"[_-]", " ", label).split(" ")
    return " ".join(w[:1].upper() + w[1:] for w in words)


def extract_linkedin_urls(text: Optional[str]) -> List[str]:
    """Return LinkedIn profile URLs (linkedin.com/in/<handle>) found in text, deduplicated in order of appearance."""
    if not text:
        return []
    seen = set()
    out: List[str] = []
    for url in LINKEDIN_URL_RE.findall(text):
        if url not in seen:
            seen.add(url)
            out.append(url)
    return out


def linkedin_handles(urls: Iterable[str]) -> Dict[str, str]:
    """Map handle -> URL, keeping the first URL seen for each handle."""
    out: Dict[str, str] = {}
    for url in urls:
        m = LINKEDIN_HANDLE_RE.search(url)
        if m and m.group(1) not in out:
            out[m.group(1)] = url
    return out


def match_linkedin_url(person: Person, handles: Dict[str, str]) -> Optional[str]:
    """First URL whose handle is contained (case-insensitive) in the attendee's email or display name."""
    email = (person.email or "").lower()
    name = (person.display_name or "").lower()
    for handle, url in handles.items():
        h = handle.lower()
        if h in email or (name and h in name):
            return url
    return None
