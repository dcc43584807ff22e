"""Tests for the link cleaner: parameter stripping, exceptions and redirect unwrapping."""

from __future__ import annotations

from urllib.parse import SplitResult, quote, urlsplit

import pytest

from email_scrubber.cleaners.links import MAX_REDIRECT_DEPTH, LinkCleaner
from email_scrubber.core.base import ExceptionMode, InvalidUrl, RuleSet


@pytest.fixture()
def cleaner(provider_rules) -> LinkCleaner:
    return LinkCleaner(provider_rules)


# --- Parameter stripping ---


def test_removes_google_tracking_params(cleaner):
    url = "https://google.com/search?q=test&gclid=123&utm_source=email&utm_medium=newsletter"
    assert cleaner.clean(url) == "https://google.com/search?q=test"


def test_removes_facebook_tracking_params(cleaner):
    url = "https://facebook.com/page?fbclid=abc123&utm_source=social"
    assert cleaner.clean(url) == "https://facebook.com/page"


def test_referral_params_are_removed(cleaner):
    url = "https://google.com/item?ref=newsletter&id=7"
    assert cleaner.clean(url) == "https://google.com/item?id=7"


def test_unmatched_url_is_returned_unchanged(cleaner):
    url = "https://example.com/page?param=value&other=test"
    assert cleaner.clean(url) == url


def test_url_without_query_is_unchanged(cleaner):
    assert cleaner.clean("https://google.com/search") == "https://google.com/search"


def test_empty_values_are_removed_by_name(cleaner):
    url = "https://google.com/search?gclid=&utm_source=email&q=test"
    assert cleaner.clean(url) == "https://google.com/search?q=test"


def test_fragment_is_preserved(cleaner):
    url = "https://google.com/page?gclid=123&q=test#section"
    assert cleaner.clean(url) == "https://google.com/page?q=test#section"


def test_port_is_preserved(cleaner):
    url = "https://google.com:8080/search?q=test&gclid=123"
    assert cleaner.clean(url) == "https://google.com:8080/search?q=test"


def test_duplicate_tracking_params_all_removed(cleaner):
    url = "https://google.com/search?gclid=123&gclid=456&other=keep"
    assert cleaner.clean(url) == "https://google.com/search?other=keep"


def test_malformed_query_segments_survive(cleaner):
    url = "https://google.com/search?gclid=&utm_source=test&=value&other=keep"
    assert cleaner.clean(url) == "https://google.com/search?=value&other=keep"


def test_surviving_params_keep_their_encoding(cleaner):
    url = "https://google.com/search?q=hello%20world&gclid=123&other=a%26b"
    assert cleaner.clean(url) == "https://google.com/search?q=hello%20world&other=a%26b"


def test_unicode_is_not_reencoded(cleaner):
    assert cleaner.clean("https://google.com/search?q=café&gclid=123") == (
        "https://google.com/search?q=café"
    )


def test_removing_every_param_drops_question_mark(cleaner):
    assert cleaner.clean("https://google.com/search?gclid=1") == "https://google.com/search"


def test_cleaning_is_idempotent(provider_rules):
    cleaner = LinkCleaner({"*": {"urlPattern": ".*", "rules": ["utm_source"]}, **provider_rules})
    wrapped = quote("https://facebook.com/x?fbclid=1&a=2&utm_source=mail", safe="")
    urls = [
        "https://google.com/search?q=test&gclid=123&utm_source=email",
        "https://facebook.com/page?fbclid=abc#top",
        "https://tracker.com/p?track_id=1&track_keep=2&x=3",
        "https://example.com/page?a=1&utm_source=news",
        f"https://google.com/url?url={wrapped}&gclid=9",
    ]
    for url in urls:
        once = cleaner.clean(url)
        assert cleaner.clean(once) == once
    assert cleaner.clean(urls[-1]) == "https://facebook.com/x?a=2"


# --- Exceptions ---


def test_exception_keeps_matching_param(cleaner):
    url = "https://tracker.com/p?track_id=1&track_keep=2&x=3"
    assert cleaner.clean(url) == "https://tracker.com/p?track_keep=2&x=3"


def test_url_exception_mode_skips_whole_url():
    rules = {
        "google.com": {
            "urlPattern": r"google\.com",
            "rules": ["gclid", "utm_source"],
            "exceptions": [r"^https?://mail\.google\.com/mail/"],
        }
    }
    cleaner = LinkCleaner(rules, exception_mode=ExceptionMode.URL)

    excepted = "https://mail.google.com/mail/u/0/?gclid=123&utm_source=email&tab=wm#inbox"
    assert cleaner.clean(excepted) == excepted
    assert cleaner.clean("https://www.google.com/search?q=x&gclid=1") == (
        "https://www.google.com/search?q=x"
    )


def test_exception_mode_accepts_plain_string(provider_rules):
    cleaner = LinkCleaner(provider_rules, exception_mode="url")
    assert cleaner.exception_mode is ExceptionMode.URL


# --- Provider selection ---


def test_first_matching_provider_wins():
    rules = {
        "generic": {"urlPattern": r"\.com", "rules": ["generic_param"]},
        "google.com": {"urlPattern": r"google\.com", "rules": ["gclid"]},
    }
    cleaner = LinkCleaner(rules)
    url = "https://google.com/search?gclid=123&generic_param=456&other=keep"
    assert cleaner.clean(url) == "https://google.com/search?gclid=123&other=keep"


def test_global_rules_apply_before_provider_rules():
    rules = {
        "*": {"urlPattern": ".*", "rules": ["utm_source"]},
        "specific.com": {"urlPattern": r"specific\.com", "rules": ["track_id"]},
    }
    cleaner = LinkCleaner(rules)
    url = "https://specific.com/page?utm_source=test&track_id=123&other=keep"
    assert cleaner.clean(url) == "https://specific.com/page?other=keep"
    assert cleaner.clean("https://unknown.org/?utm_source=x&a=1") == "https://unknown.org/?a=1"


def test_global_rules_key_alias():
    cleaner = LinkCleaner({"globalRules": {"urlPattern": ".*", "rules": ["fbclid"]}})
    assert cleaner.clean("https://example.org/?fbclid=1&a=2") == "https://example.org/?a=2"


def test_find_provider_ignores_catch_all(provider_rules):
    rules = {"*": {"urlPattern": ".*", "rules": ["x"]}, **provider_rules}
    cleaner = LinkCleaner(rules)
    assert cleaner.find_provider("https://facebook.com/x").key == "facebook.com"
    assert cleaner.find_provider("https://example.com/x") is None


def test_accepts_rule_set_model(provider_rules):
    rule_set = RuleSet.model_validate(provider_rules)
    cleaner = LinkCleaner(rule_set)
    assert cleaner.rules is rule_set


# --- Redirections ---


def test_redirect_is_unwrapped_and_target_cleaned():
    rules = {
        "*": {"urlPattern": ".*", "rules": ["gclid"]},
        "p.com": {"urlPattern": r"p\.com", "rules": [], "redirections": ["url"]},
    }
    cleaner = LinkCleaner(rules)
    inner = quote("https://q.com/target?gclid=1", safe="")
    assert cleaner.clean(f"https://p.com/url?url={inner}&gclid=2") == "https://q.com/target"


def test_invalid_redirect_target_falls_back_to_stripping(cleaner):
    url = "https://google.com/url?url=invalid-url&gclid=123"
    assert cleaner.clean(url) == "https://google.com/url?url=invalid-url"


def test_empty_redirect_value_is_ignored(cleaner):
    assert cleaner.clean("https://google.com/url?url=&gclid=123") == "https://google.com/url?url="


def test_first_redirect_param_wins(cleaner):
    first = quote("https://example.com/target1", safe="")
    second = quote("https://example.com/target2", safe="")
    url = f"https://google.com/url?url={first}&url={second}&gclid=1"
    assert cleaner.clean(url) == "https://example.com/target1"


def test_nested_redirects_up_to_the_hop_limit(cleaner):
    url = "https://example.com/final"
    for _ in range(MAX_REDIRECT_DEPTH):
        url = f"https://google.com/url?url={quote(url, safe='')}&gclid=123"
    assert cleaner.clean(url) == "https://example.com/final"


def test_deep_redirect_chain_terminates():
    rules = {"r.com": {"urlPattern": r"r\.com", "rules": ["^x$"], "redirections": ["^next$"]}}
    cleaner = LinkCleaner(rules)
    url = "https://example.com/end"
    chain = []
    for i in range(1000):
        url = f"https://r.com/hop{i}?next={url}"
        chain.insert(0, url)

    result = cleaner.clean(url)
    # Hops stop at the limit and the URL reached there is returned as-is
    assert result == chain[MAX_REDIRECT_DEPTH]
    assert cleaner.clean(url) == result


def test_circular_redirect_chain_terminates():
    rules = {"r.com": {"urlPattern": r"r\.com", "rules": ["^x$"], "redirections": ["^next$"]}}
    cleaner = LinkCleaner(rules)
    back_to_a = "https://r.com/b?next=" + quote("https://r.com/a", safe="")
    url = "https://r.com/a?next=" + quote(back_to_a, safe="")

    result = cleaner.clean(url)
    assert result == "https://r.com/a"
    assert cleaner.clean(result) == result


def test_unencoded_redirect_target_keeps_plus_signs():
    rules = {"p.com": {"urlPattern": r"p\.com", "rules": [], "redirections": ["^u$"]}}
    cleaner = LinkCleaner(rules)
    assert cleaner.clean("https://p.com/r?u=https://q.com/s?q=a+b") == "https://q.com/s?q=a+b"


def test_custom_redirect_depth(provider_rules):
    cleaner = LinkCleaner(provider_rules, max_redirect_depth=1)
    inner = "https://google.com/url?url=" + quote("https://example.com/end", safe="")
    outer = "https://google.com/url?url=" + quote(inner, safe="")
    assert cleaner.clean(outer) == inner


# --- Input handling ---


def test_invalid_string_raises():
    cleaner = LinkCleaner({})
    with pytest.raises(InvalidUrl, match="Invalid URL provided: not-a-valid-url"):
        cleaner.clean("not-a-valid-url")


def test_invalid_url_is_a_value_error():
    with pytest.raises(ValueError):
        LinkCleaner({}).clean("/relative/path")


def test_split_result_input(cleaner):
    parts = urlsplit("https://google.com/search?q=test&gclid=123")
    assert cleaner.clean(parts) == "https://google.com/search?q=test"


def test_relative_split_result_is_returned_as_is(cleaner):
    parts = SplitResult("", "", "relative/path", "gclid=1", "")
    assert cleaner.clean(parts) is parts


def test_non_http_schemes_pass_through(cleaner):
    assert cleaner.clean("mailto:someone@example.com") == "mailto:someone@example.com"
