"""Company signal gathering over HTTP: logo presence probe and a bounded homepage text snippet.

Both calls are best-effort: any non-200, timeout, or network failure yields None, never an error.
"""
import logging
import re
from typing import Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; BriefingsBot/1.0)"

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def html_to_snippet(html: str, max_chars: int = 500) -> str:
    """Strip script/style blocks and tags, collapse whitespace, and keep the first max_chars characters."""
    text = _SCRIPT_RE.sub("", html or "")
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", text).strip()
    return text[:max_chars]


class CompanySignals:
    """Logo probe and homepage snippet for a company domain, sharing one requests.Session.
    Why available: Stage 2 of enrichment; gives the company summary prompt real context when the site is reachable."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        logo_base_url: str = "https://logo.clearbit.com",
        logo_timeout: float = 5.0,
        homepage_timeout: float = 10.0,
        max_bytes: int = 100_000,
        snippet_chars: int = 500,
    ):
        self.session = session or requests.Session()
        self.logo_base_url = logo_base_url.rstrip("/")
        self.logo_timeout = logo_timeout
        self.homepage_timeout = homepage_timeout
        self.max_bytes = max_bytes
        self.snippet_chars = snippet_chars

    def fetch_company_logo(self, domain: str) -> Optional[str]:
        """Return the logo URL when the lookup service answers 200 for the domain, else None."""
        url = f"{self.logo_base_url}/{domain}"
        try:
            resp = self.session.head(url, timeout=self.logo_timeout, allow_redirects=True)
        except requests.RequestException:
            logger.debug("logo_not_found", extra={"domain": domain})
            return None
        if resp.status_code == 200:
            logger.debug("logo_found", extra={"domain": domain})
            return url
        return None

    def fetch_homepage_snippet(self, domain: str) -> Optional[str]:
        """GET https://<domain> (body capped at max_bytes) and return a plain-text snippet, or None on any failure or empty page."""
        url = f"https://{domain}"
        try:
            with self.session.get(
                url,
                timeout=self.homepage_timeout,
                headers={"User-Agent": USER_AGENT},
                stream=True,
            ) as resp:
                if resp.status_code != 200:
                    return None
                body = bytearray()
                for chunk in resp.iter_content(chunk_size=8192):
                    body.extend(chunk)
                    if len(body) >= self.max_bytes:
                        break
                encoding = resp.encoding or "utf-8"
        except requests.RequestException as e:
            logger.debug("homepage_fetch_failed", extra={"domain": domain, "error": str(e)})
            return None

        raw = bytes(body[: self.max_bytes])
        try:
            html = raw.decode(encoding, errors="replace")
        except LookupError:  # unknown charset in Content-Type
            html = raw.decode("utf-8", errors="replace")
        snippet = html_to_snippet(html, self.snippet_chars)
        if not snippet:
            return None
        logger.debug("homepage_snippet_fetched", extra={"domain": domain, "snippet_len": len(snippet)})
        return snippet
