"""Tests for absolute-URL parsing and in-place query editing."""

import pytest

from email_scrubber.core.base import InvalidUrl
from email_scrubber.core.urls import EditableUrl, is_absolute_url, parse_absolute_url, query_params


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/",
        "http://example.com:8080/path?q=1#frag",
        "mailto:someone@example.com",
        "ftp://files.example.com/pub",
        "  https://example.com/padded  ",
    ],
)
def test_absolute_urls(url):
    assert is_absolute_url(url)


@pytest.mark.parametrize(
    "url",
    [
        "",
        "not-a-valid-url",
        "/relative/path",
        "//example.com/protocol-relative",
        "https://",
        "http://example.com:notaport/",
        "{{unsubscribe_url}}",
    ],
)
def test_rejected_urls(url):
    assert not is_absolute_url(url)
    with pytest.raises(InvalidUrl):
        parse_absolute_url(url)


def test_invalid_url_keeps_input():
    with pytest.raises(InvalidUrl) as exc_info:
        parse_absolute_url("nope")
    assert exc_info.value.url == "nope"
    assert str(exc_info.value) == "Invalid URL provided: nope"


def test_query_params_decode_and_skip_empty_segments():
    pairs = list(query_params("a=1&&b=hello+world&c=%26&flag"))
    assert pairs == [("a", "1"), ("b", "hello world"), ("c", "&"), ("flag", "")]


def test_query_params_can_keep_plus_signs():
    pairs = list(query_params("u=https://q.com/?q=a+b&v=a%2Bb%20c", plus_as_space=False))
    assert pairs == [("u", "https://q.com/?q=a+b"), ("v", "a+b c")]


def test_unmodified_href_is_original_string():
    url = "HTTPS://Example.COM/Path?b=2&a=1"
    target = EditableUrl(url)
    assert target.href == url
    assert not target.modified
    assert target.hostname == "example.com"


def test_remove_params_reports_count_and_keeps_order():
    target = EditableUrl("https://example.com/?a=1&drop=2&b=3&drop=4#top")
    assert target.remove_params(lambda name: name == "drop") == 2
    assert target.modified
    assert target.href == "https://example.com/?a=1&b=3#top"
    assert target.params() == [("a", "1"), ("b", "3")]


def test_remove_nothing_leaves_url_alone():
    url = "https://example.com/?a=1&b=2"
    target = EditableUrl(url)
    assert target.remove_params(lambda name: False) == 0
    assert target.href == url


def test_names_are_decoded_before_matching():
    target = EditableUrl("https://example.com/?utm%5Fsource=x&keep=1")
    target.remove_params(lambda name: name == "utm_source")
    assert target.href == "https://example.com/?keep=1"
