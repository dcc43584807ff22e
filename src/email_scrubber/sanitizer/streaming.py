"""Streaming sanitizer — rewrite HTML chunk by chunk without building a tree.

HtmlRewriter is a small incremental rewriter on top of ``html.parser``:
element handlers are registered per tag name, receive each matching start tag
as a StreamElement, and may edit its attributes or drop it. Markup nobody
touched is passed through as it arrived (end tags are re-emitted as
``</name>``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from html import escape
from html.parser import HTMLParser
from typing import Any

from email_scrubber.cleaners.links import LinkCleaner
from email_scrubber.cleaners.pixels import TrackerPixelRemover
from email_scrubber.core.base import (
    ExceptionMode,
    InvalidUrl,
    RuleSet,
    SanitizableElement,
    SanitizationResult,
    SanitizeOptions,
    TrackerPixelOptions,
)

logger = logging.getLogger(__name__)

VOID_ELEMENTS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input",
        "link", "meta", "param", "source", "track", "wbr",
    }
)  # fmt: skip


class StreamElement(SanitizableElement):
    """SanitizableElement over a single start tag seen by HtmlRewriter."""

    def __init__(self, tag: str, attrs: Iterable[tuple[str, str | None]], raw: str) -> None:
        self.tag = tag
        self.raw = raw
        self._attrs: list[tuple[str, str | None]] = list(attrs)
        self.modified = False
        self.removed = False

    def get_attribute(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self._attrs:
            if key == name:
                return value if value is not None else ""
        return None

    def has_attribute(self, name: str) -> bool:
        name = name.lower()
        return any(key == name for key, _ in self._attrs)

    def set_attribute(self, name: str, value: str) -> None:
        name = name.lower()
        for i, (key, _) in enumerate(self._attrs):
            if key == name:
                self._attrs[i] = (name, value)
                break
        else:
            self._attrs.append((name, value))
        self.modified = True

    def remove_attribute(self, name: str) -> None:
        name = name.lower()
        kept = [(key, value) for key, value in self._attrs if key != name]
        if len(kept) != len(self._attrs):
            self._attrs = kept
            self.modified = True

    def remove(self) -> None:
        self.removed = True

    def serialize(self, self_closing: bool = False) -> str:
        if not self.modified:
            return self.raw
        parts = [self.tag]
        for key, value in self._attrs:
            parts.append(key if value is None else f'{key}="{escape(value, quote=True)}"')
        return "<" + " ".join(parts) + (" />" if self_closing else ">")


ElementHandler = Callable[[StreamElement], None]


class HtmlRewriter(HTMLParser):
    """Incremental HTML rewriter with per-tag element handlers.

    ``feed`` returns whatever output is ready; ``close`` flushes the rest.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=False)
        self._handlers: dict[str, list[ElementHandler]] = {}
        self._out: list[str] = []
        # Set while dropping a removed non-void element and its content
        self._skip_tag: str | None = None
        self._skip_depth = 0

    def on(self, tag: str, handler: ElementHandler) -> HtmlRewriter:
        self._handlers.setdefault(tag.lower(), []).append(handler)
        return self

    def feed(self, data: str) -> str:  # type: ignore[override]
        super().feed(data)
        return self._drain()

    def close(self) -> str:  # type: ignore[override]
        super().close()
        return self._drain()

    def _drain(self) -> str:
        out = "".join(self._out)
        self._out.clear()
        return out

    def _emit(self, text: str) -> None:
        if self._skip_tag is None:
            self._out.append(text)

    def _start(self, tag: str, attrs: list[tuple[str, str | None]], self_closing: bool) -> None:
        raw = self.get_starttag_text() or ""
        if self._skip_tag is not None:
            if tag == self._skip_tag and not self_closing:
                self._skip_depth += 1
            return

        handlers = self._handlers.get(tag)
        if not handlers:
            self._out.append(raw)
            return

        element = StreamElement(tag, attrs, raw)
        for handler in handlers:
            handler(element)
            if element.removed:
                break

        if element.removed:
            if not self_closing and tag not in VOID_ELEMENTS:
                self._skip_tag = tag
                self._skip_depth = 1
            return
        self._out.append(element.serialize(self_closing))

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._start(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._start(tag, attrs, self_closing=True)

    def handle_endtag(self, tag: str) -> None:
        if self._skip_tag is not None:
            if tag == self._skip_tag:
                self._skip_depth -= 1
                if self._skip_depth == 0:
                    self._skip_tag = None
            return
        self._out.append(f"</{tag}>")

    def handle_data(self, data: str) -> None:
        self._emit(data)

    def handle_entityref(self, name: str) -> None:
        self._emit(f"&{name};")

    def handle_charref(self, name: str) -> None:
        self._emit(f"&#{name};")

    def handle_comment(self, data: str) -> None:
        self._emit(f"<!--{data}-->")

    def handle_decl(self, decl: str) -> None:
        self._emit(f"<!{decl}>")

    def handle_pi(self, data: str) -> None:
        self._emit(f"<?{data}>")

    def unknown_decl(self, data: str) -> None:
        self._emit(f"<![{data}]>")


class StreamingHandlers:
    """Element handlers for anchors and images, with running counters."""

    def __init__(self, link_cleaner: LinkCleaner, pixel_remover: TrackerPixelRemover) -> None:
        self.link_cleaner = link_cleaner
        self.pixel_remover = pixel_remover
        self.urls_cleaned = 0
        self.tracking_pixels_removed = 0

    def link_handler(self, element: SanitizableElement) -> None:
        """Attach to ``a`` elements."""
        href = element.get_attribute("href")
        if not href:
            return
        try:
            cleaned = self.link_cleaner.clean(href)
        except InvalidUrl:
            logger.debug("Failed to clean URL during streaming: %s", href)
            return
        if cleaned != href:
            element.set_attribute("href", cleaned)
            self.urls_cleaned += 1

    def pixel_handler(self, element: SanitizableElement) -> None:
        """Attach to ``img`` elements."""
        if self.pixel_remover.is_tracking_pixel(element):
            element.remove()
            self.tracking_pixels_removed += 1


def get_streaming_handlers(
    rules: LinkCleaner | RuleSet | Mapping[str, Any],
    pixel_options: TrackerPixelOptions | None = None,
    *,
    exception_mode: ExceptionMode = ExceptionMode.PARAMETER,
) -> StreamingHandlers:
    """Build link/pixel handlers sharing one compiled rule set."""
    if isinstance(rules, LinkCleaner):
        link_cleaner = rules
    else:
        link_cleaner = LinkCleaner(rules, exception_mode=exception_mode)
    return StreamingHandlers(link_cleaner, TrackerPixelRemover(pixel_options))


class StreamingSanitizer:
    """Sanitize an HTML document fed in chunks.

    The whole document structure is always kept; ``preserve_document_structure``
    only applies to the buffered sanitizer.
    """

    def __init__(
        self,
        rules: LinkCleaner | RuleSet | Mapping[str, Any],
        options: SanitizeOptions | None = None,
    ) -> None:
        self.options = options or SanitizeOptions()
        self.handlers = get_streaming_handlers(
            rules,
            self.options.tracker_pixel_options,
            exception_mode=self.options.exception_mode,
        )
        self._rewriter = HtmlRewriter()
        if self.options.clean_urls:
            self._rewriter.on("a", self.handlers.link_handler)
        if self.options.remove_tracking_pixels:
            self._rewriter.on("img", self.handlers.pixel_handler)

    def feed(self, chunk: str) -> str:
        return self._rewriter.feed(chunk)

    def close(self) -> str:
        return self._rewriter.close()

    @property
    def urls_cleaned(self) -> int:
        return self.handlers.urls_cleaned

    @property
    def tracking_pixels_removed(self) -> int:
        return self.handlers.tracking_pixels_removed

    def result(self, html: str, output: str = "") -> SanitizationResult:
        """Counters so far, with *output* as the html only if something changed."""
        result = SanitizationResult(
            html=html,
            urls_cleaned=self.urls_cleaned,
            tracking_pixels_removed=self.tracking_pixels_removed,
        )
        if result.was_modified:
            result.html = output
        return result


def sanitize_stream(
    chunks: Iterable[str],
    rules: LinkCleaner | RuleSet | Mapping[str, Any],
    options: SanitizeOptions | None = None,
) -> Iterator[str]:
    """Yield sanitized output as *chunks* arrive."""
    sanitizer = StreamingSanitizer(rules, options)
    for chunk in chunks:
        out = sanitizer.feed(chunk)
        if out:
            yield out
    tail = sanitizer.close()
    if tail:
        yield tail


def sanitize_email_streaming(
    html: str,
    rules: LinkCleaner | RuleSet | Mapping[str, Any],
    options: SanitizeOptions | None = None,
) -> SanitizationResult:
    """Run a complete document through the streaming path and report counters."""
    sanitizer = StreamingSanitizer(rules, options)
    output = sanitizer.feed(html) + sanitizer.close()
    return sanitizer.result(html, output)
