"""Tracking pixel remover — decide whether an <img> is an open-tracking beacon.

Three strong signals each remove an image on their own: a known tracking
domain, a tracking query parameter, or CSS that hides the image. Tiny
dimensions, transparency and a missing alt text are weak signals; any two of
them together remove the image.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from email_scrubber.cleaners.trackers import matches_tracking_domain
from email_scrubber.core.base import (
    DocumentLike,
    InvalidUrl,
    SanitizableElement,
    TrackerPixelOptions,
)
from email_scrubber.core.urls import parse_absolute_url, query_params

logger = logging.getLogger(__name__)

TRANSPARENT_GIF = "data:image/gif;base64,R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
TRANSPARENT_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJ"
    "AAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

# Off-screen positioning beyond this offset counts as hidden
OFFSCREEN_OFFSET_PX = -1000

_DIMENSION_RE = re.compile(r"^(\d+)(?:px)?$", re.IGNORECASE)

# Anchored on declaration boundaries so max-width / line-height don't count
_STYLE_WIDTH_RE = re.compile(r"(?:^|;)\s*width\s*:\s*(\d+)\s*px", re.IGNORECASE)
_STYLE_HEIGHT_RE = re.compile(r"(?:^|;)\s*height\s*:\s*(\d+)\s*px", re.IGNORECASE)
_STYLE_OPACITY_RE = re.compile(r"(?:^|;)\s*opacity\s*:\s*([\d.]+)", re.IGNORECASE)

_HIDDEN_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)
_ABSOLUTE_RE = re.compile(r"position\s*:\s*absolute", re.IGNORECASE)
_OFFSET_RES = (
    re.compile(r"(?:^|;)\s*left\s*:\s*(-?\d+)\s*px", re.IGNORECASE),
    re.compile(r"(?:^|;)\s*top\s*:\s*(-?\d+)\s*px", re.IGNORECASE),
)


def _parse_dimension(value: str | None) -> int | None:
    """Parse a width/height attribute like '1' or '1px'."""
    if value is None:
        return None
    match = _DIMENSION_RE.match(value.strip())
    return int(match.group(1)) if match else None


def _parse_style_dimension(style: str, pattern: re.Pattern[str]) -> int | None:
    match = pattern.search(style)
    return int(match.group(1)) if match else None


class TrackerPixelRemover:
    """Classify and remove tracking pixels.

    Options merge over the defaults field by field::

        TrackerPixelRemover(max_pixel_size=1, remove_no_alt_images=False)
    """

    def __init__(self, options: TrackerPixelOptions | None = None, **overrides: Any) -> None:
        if options is None:
            options = TrackerPixelOptions(**overrides)
        elif overrides:
            options = TrackerPixelOptions.model_validate({**options.model_dump(), **overrides})
        self.options = options

    def clean(self, document: DocumentLike) -> int:
        """Remove every tracking pixel from *document* and return how many went."""
        doomed = [img for img in document.images() if self.is_tracking_pixel(img)]
        for img in doomed:
            img.remove()
        if doomed:
            logger.debug("Removed %d tracking pixels", len(doomed))
        return len(doomed)

    def is_tracking_pixel(self, img: SanitizableElement) -> bool:
        src = img.get_attribute("src")
        if not src or not src.strip():
            return False
        src = src.strip()

        if self.has_tracking_domain(src) or self.has_tracking_params(src):
            return True
        if self.is_hidden(img):
            return True

        weak_signals = [self.has_tracking_pixel_dimensions(img)]
        if self.options.remove_transparent_images:
            weak_signals.append(self.is_transparent(img))
        if self.options.remove_no_alt_images:
            weak_signals.append(self.has_no_alt_text(img))
        return sum(weak_signals) >= 2

    # --- strong signals ---

    def has_tracking_domain(self, src: str) -> bool:
        try:
            hostname = parse_absolute_url(src).hostname or ""
        except InvalidUrl:
            src_lower = src.lower()
            return any(domain in src_lower for domain in self.options.tracking_domains)
        return matches_tracking_domain(hostname, self.options.tracking_domains) is not None

    def has_tracking_params(self, src: str) -> bool:
        try:
            query = parse_absolute_url(src).query
        except InvalidUrl:
            src_lower = src.lower()
            return any(f"{p.lower()}=" in src_lower for p in self.options.tracking_params)
        return any(name in self.options.tracking_params for name, _ in query_params(query))

    @staticmethod
    def is_hidden(img: SanitizableElement) -> bool:
        style = img.get_attribute("style")
        if not style:
            return False
        if _HIDDEN_RE.search(style):
            return True
        if _ABSOLUTE_RE.search(style):
            for pattern in _OFFSET_RES:
                match = pattern.search(style)
                if match and int(match.group(1)) < OFFSCREEN_OFFSET_PX:
                    return True
        return False

    # --- weak signals ---

    def has_tracking_pixel_dimensions(self, img: SanitizableElement) -> bool:
        width = _parse_dimension(img.get_attribute("width"))
        height = _parse_dimension(img.get_attribute("height"))
        if width is None or height is None:
            # Attributes are used as a pair; otherwise both must come from the style
            style = img.get_attribute("style") or ""
            width = _parse_style_dimension(style, _STYLE_WIDTH_RE)
            height = _parse_style_dimension(style, _STYLE_HEIGHT_RE)

        if width is None or height is None:
            return False
        limit = self.options.max_pixel_size
        return width <= limit and height <= limit

    @staticmethod
    def is_transparent(img: SanitizableElement) -> bool:
        src = (img.get_attribute("src") or "").strip()
        if src in (TRANSPARENT_GIF, TRANSPARENT_PNG):
            return True
        if src.lower().startswith("data:") and "transparent" in src:
            return True

        style = img.get_attribute("style")
        if style:
            match = _STYLE_OPACITY_RE.search(style)
            if match:
                try:
                    return float(match.group(1)) == 0
                except ValueError:
                    return False
        return False

    @staticmethod
    def has_no_alt_text(img: SanitizableElement) -> bool:
        alt = img.get_attribute("alt")
        return alt is None or alt.strip() == ""
