"""Company signal gathering tests (requests session mocked, no network)."""
from unittest.mock import MagicMock

import requests

from briefings.enrich.web import CompanySignals, html_to_snippet


def _session_with_page(status=200, chunks=(b"",), encoding="utf-8"):
    session = MagicMock()
    resp = MagicMock(status_code=status, encoding=encoding)
    resp.iter_content.return_value = list(chunks)
    session.get.return_value.__enter__.return_value = resp
    return session


def test_html_to_snippet_strips_markup():
    html = "<html><head><style>body{color:red}</style><script>var x = '<b>';</script></head>" \
           "<body><h1>Acme</h1>\n\n<p>Anvils   for everyone</p></body></html>"
    assert html_to_snippet(html) == "Acme Anvils for everyone"
    assert html_to_snippet("<p>" + "a" * 600 + "</p>", 500) == "a" * 500


def test_logo_found_and_missing():
    session = MagicMock()
    session.head.return_value = MagicMock(status_code=200)
    signals = CompanySignals(session, logo_base_url="https://logo.example/")
    assert signals.fetch_company_logo("acme.com") == "https://logo.example/acme.com"
    assert session.head.call_args.kwargs["timeout"] == 5.0

    session.head.return_value = MagicMock(status_code=404)
    assert signals.fetch_company_logo("acme.com") is None

    session.head.side_effect = requests.Timeout("slow")
    assert signals.fetch_company_logo("acme.com") is None


def test_homepage_snippet():
    session = _session_with_page(chunks=[b"<title>Acme</title>", b"<p>We make anvils.</p>"])
    signals = CompanySignals(session)
    assert signals.fetch_homepage_snippet("acme.com") == "Acme We make anvils."
    args, kwargs = session.get.call_args
    assert args[0] == "https://acme.com"
    assert kwargs["timeout"] == 10.0
    assert kwargs["stream"] is True


def test_homepage_body_capped():
    session = _session_with_page(chunks=[b"a" * 60, b"b" * 60, b"c" * 60])
    signals = CompanySignals(session, max_bytes=100, snippet_chars=500)
    snippet = signals.fetch_homepage_snippet("acme.com")
    assert snippet == "a" * 60 + "b" * 40


def test_homepage_failures_yield_none():
    assert CompanySignals(_session_with_page(status=500)).fetch_homepage_snippet("acme.com") is None
    assert CompanySignals(_session_with_page(chunks=[b"<script>x()</script>"])).fetch_homepage_snippet("acme.com") is None

    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    assert CompanySignals(session).fetch_homepage_snippet("acme.com") is None


def test_unknown_charset_falls_back_to_utf8():
    session = _session_with_page(chunks=["café".encode("utf-8")], encoding="x-unknown")
    assert CompanySignals(session).fetch_homepage_snippet("acme.com") == "café"
