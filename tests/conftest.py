"""Shared test fixtures."""

import pytest

from email_scrubber.core.config import RULES_ENV_VAR


@pytest.fixture(autouse=True)
def _no_rule_cache(monkeypatch, tmp_path):
    """Point the rule lookup at a missing file so the built-in minimal rules are used."""
    monkeypatch.setenv(RULES_ENV_VAR, str(tmp_path / "no-such-rules.json"))


@pytest.fixture()
def provider_rules():
    """A small ClearURLs-style rule set with one provider per behaviour."""
    return {
        "google.com": {
            "urlPattern": r"google\.com",
            "rules": ["gclid", "gclsrc", "utm_source", "utm_medium", "utm_campaign"],
            "redirections": ["^url$"],
            "referralMarketing": ["^ref$"],
        },
        "facebook.com": {
            "urlPattern": r"facebook\.com",
            "rules": ["fbclid", "utm_source", "utm_medium"],
        },
        "tracker.com": {
            "urlPattern": r"tracker\.com",
            "rules": ["^track_"],
            "exceptions": ["^track_keep$"],
        },
    }


TRACKED_HTML = (
    "<html><head><title>News</title></head><body>"
    "<p>Hello</p>"
    '<a href="https://example.com/a?utm_source=news&amp;id=1">Article</a>'
    '<a href="https://www.google.com/search?q=x&amp;gclid=abc">Search</a>'
    '<a href="https://example.com/about">About</a>'
    '<a href="/relative/path">Relative</a>'
    '<img src="https://track.hubspot.com/open/abc123">'
    '<img src="https://example.com/p.gif" width="1" height="1">'
    '<img src="https://example.com/o.gif" style="display:none" alt="x">'
    '<img src="https://example.com/logo.png" width="200" height="50" alt="Logo">'
    "</body></html>"
)


@pytest.fixture()
def tracked_html():
    """HTML with two tracking links and three tracking pixels."""
    return TRACKED_HTML
