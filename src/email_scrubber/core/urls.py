"""Absolute-URL parsing and in-place query editing.

Query strings are edited segment by segment: segments that survive are
written back exactly as they arrived, so a URL is never re-encoded just
because a neighbouring parameter was dropped.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from urllib.parse import SplitResult, unquote, unquote_plus, urlsplit, urlunsplit

from email_scrubber.core.base import InvalidUrl

# Schemes that cannot exist without a host (WHATWG "special" schemes minus file)
SPECIAL_SCHEMES = frozenset({"http", "https", "ftp", "ws", "wss"})

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*$", re.IGNORECASE)


def parse_absolute_url(url: str) -> SplitResult:
    """Split *url*, raising InvalidUrl unless it is an absolute URL."""
    try:
        parts = urlsplit(url.strip())
        _ = parts.port  # ValueError on a malformed port
    except ValueError as exc:
        raise InvalidUrl(url) from exc

    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        raise InvalidUrl(url)
    if parts.scheme.lower() in SPECIAL_SCHEMES and not parts.hostname:
        raise InvalidUrl(url)
    return parts


def is_absolute_url(url: str) -> bool:
    try:
        parse_absolute_url(url)
    except InvalidUrl:
        return False
    return True


def query_params(query: str, *, plus_as_space: bool = True) -> Iterator[tuple[str, str]]:
    """Yield decoded (name, value) pairs in encounter order, skipping empty segments.

    With *plus_as_space* off, values are only percent-decoded, so a literal
    "+" in an unencoded nested URL survives.
    """
    decode_value = unquote_plus if plus_as_space else unquote
    for segment in query.split("&"):
        if segment:
            name, _, value = segment.partition("=")
            yield unquote_plus(name), decode_value(value)


class EditableUrl:
    """A parsed absolute URL whose query parameters can be dropped in place."""

    def __init__(self, url: str) -> None:
        self._original = url
        self._parts = parse_absolute_url(url)
        self._segments = [s for s in self._parts.query.split("&") if s]
        self._modified = False

    @property
    def modified(self) -> bool:
        return self._modified

    @property
    def hostname(self) -> str:
        return self._parts.hostname or ""

    @property
    def href(self) -> str:
        """The URL as a string; the untouched input if nothing was removed."""
        if not self._modified:
            return self._original
        return urlunsplit(self._parts._replace(query="&".join(self._segments)))

    def params(self, *, plus_as_space: bool = True) -> list[tuple[str, str]]:
        return list(query_params("&".join(self._segments), plus_as_space=plus_as_space))

    def remove_params(self, should_remove: Callable[[str], bool]) -> int:
        """Drop every parameter whose decoded name satisfies *should_remove*."""
        kept: list[str] = []
        removed = 0
        for segment in self._segments:
            name = unquote_plus(segment.partition("=")[0])
            if should_remove(name):
                removed += 1
            else:
                kept.append(segment)

        if removed:
            self._segments = kept
            self._modified = True
        return removed
