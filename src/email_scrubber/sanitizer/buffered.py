"""Buffered sanitizer — parse a whole HTML document, clean it, serialize it back."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from bs4 import BeautifulSoup, ParserRejectedMarkup, Tag
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

from email_scrubber.cleaners.links import LinkCleaner
from email_scrubber.cleaners.pixels import TrackerPixelRemover
from email_scrubber.core.base import (
    DocumentLike,
    InvalidUrl,
    RuleSet,
    SanitizableElement,
    SanitizationResult,
    SanitizeOptions,
)

logger = logging.getLogger(__name__)

class _SourceOrderFormatter(HTMLFormatter):
    """Write attributes in the order they were parsed instead of sorted."""

    def attributes(self, tag: Tag) -> list[tuple[str, Any]]:
        return list(tag.attrs.items()) if tag.attrs else []


# HTML void-element style (<img ...>) with minimal escaping, so text is not entity-encoded
_OUTPUT_FORMATTER = _SourceOrderFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)


class SoupElement(SanitizableElement):
    """SanitizableElement over a BeautifulSoup tag."""

    def __init__(self, tag: Tag) -> None:
        self.tag = tag

    def get_attribute(self, name: str) -> str | None:
        value = self.tag.get(name)
        if value is None:
            return None
        # multi_valued_attributes is disabled, but tolerate lists from other soups
        return " ".join(value) if isinstance(value, list) else str(value)

    def has_attribute(self, name: str) -> bool:
        return self.tag.has_attr(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.tag[name] = value

    def remove_attribute(self, name: str) -> None:
        if name in self.tag.attrs:
            del self.tag[name]

    def remove(self) -> None:
        self.tag.decompose()


class SoupDocument(DocumentLike):
    """DocumentLike over a parsed BeautifulSoup tree."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self.soup = soup

    def images(self) -> Iterator[SoupElement]:
        for tag in self.soup.find_all("img"):
            yield SoupElement(tag)

    def links(self) -> Iterator[SoupElement]:
        for tag in self.soup.find_all("a", href=True):
            yield SoupElement(tag)


def _as_link_cleaner(
    rules: LinkCleaner | RuleSet | Mapping[str, Any], options: SanitizeOptions
) -> LinkCleaner:
    if isinstance(rules, LinkCleaner):
        return rules
    return LinkCleaner(rules, exception_mode=options.exception_mode)


def clean_links(document: SoupDocument, cleaner: LinkCleaner) -> int:
    """Rewrite every anchor href through *cleaner*; return how many changed."""
    cleaned = 0
    for link in document.links():
        href = link.get_attribute("href")
        if not href:
            continue
        try:
            new_href = cleaner.clean(href)
        except InvalidUrl:
            # Relative links, fragments, templating placeholders...
            logger.debug("Leaving unparseable href as-is: %s", href)
            continue
        if new_href != href:
            link.set_attribute("href", new_href)
            cleaned += 1
    return cleaned


def sanitize_email(
    html: str,
    rules: LinkCleaner | RuleSet | Mapping[str, Any],
    options: SanitizeOptions | None = None,
    **overrides: Any,
) -> SanitizationResult:
    """Clean tracking links and remove tracking pixels from an HTML email.

    *rules* may be a prebuilt LinkCleaner so that many messages share one
    compiled rule set. Keyword overrides are applied on top of *options*.
    The original string comes back untouched when nothing was changed or
    when the markup cannot be processed at all.
    """
    options = options or SanitizeOptions()
    if overrides:
        options = SanitizeOptions.model_validate({**options.model_dump(), **overrides})

    unchanged = SanitizationResult(html=html)
    if not html or not html.strip():
        return unchanged

    try:
        soup = BeautifulSoup(html, "html.parser", multi_valued_attributes=None)
        document = SoupDocument(soup)

        urls_cleaned = 0
        if options.clean_urls:
            urls_cleaned = clean_links(document, _as_link_cleaner(rules, options))

        pixels_removed = 0
        if options.remove_tracking_pixels:
            remover = TrackerPixelRemover(options.tracker_pixel_options)
            pixels_removed = remover.clean(document)

        result = SanitizationResult(
            html=html,
            urls_cleaned=urls_cleaned,
            tracking_pixels_removed=pixels_removed,
        )
        if not result.was_modified:
            return result

        if options.preserve_document_structure or soup.body is None:
            result.html = soup.decode(formatter=_OUTPUT_FORMATTER)
        else:
            result.html = soup.body.decode_contents(formatter=_OUTPUT_FORMATTER)
        return result
    except (ParserRejectedMarkup, RecursionError) as exc:
        logger.error("Error sanitizing email HTML: %s", exc)
        return unchanged


def sanitize_email_simple(
    html: str,
    rules: LinkCleaner | RuleSet | Mapping[str, Any],
    options: SanitizeOptions | None = None,
    **overrides: Any,
) -> str:
    """Like sanitize_email but return only the cleaned HTML."""
    return sanitize_email(html, rules, options, **overrides).html
