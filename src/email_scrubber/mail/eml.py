"""Scrub .eml files — sanitize every text/html part of an RFC 822 message."""

from __future__ import annotations

import email
import email.errors
import itertools
import logging
import os
import tempfile
from collections.abc import Iterator
from email.generator import BytesGenerator
from email.message import Message
from io import BytesIO
from pathlib import Path

from pydantic import BaseModel, Field

from email_scrubber.cleaners.links import LinkCleaner
from email_scrubber.core.base import SanitizationResult, SanitizeOptions
from email_scrubber.sanitizer.buffered import sanitize_email

logger = logging.getLogger(__name__)

MAX_FILES = 10_000
MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB


class ScrubReport(BaseModel):
    """What scrubbing one .eml file did (or would do, in dry-run)."""

    path: str
    dry_run: bool
    html_parts: int = 0
    urls_cleaned: int = Field(default=0, ge=0)
    tracking_pixels_removed: int = Field(default=0, ge=0)
    rewritten: bool = False
    error: str | None = None

    @property
    def was_modified(self) -> bool:
        return self.urls_cleaned > 0 or self.tracking_pixels_removed > 0


def iter_eml_files(path: Path) -> Iterator[Path]:
    """Yield a single .eml file, or every .eml below a directory (capped at MAX_FILES)."""
    if path.is_file():
        candidates: Iterator[Path] = iter([path]) if path.suffix == ".eml" else iter([])
    elif path.is_dir():
        candidates = itertools.islice(path.rglob("*.eml"), MAX_FILES)
    else:
        return

    for eml_path in candidates:
        if not eml_path.is_file() or eml_path.is_symlink():
            continue
        try:
            if eml_path.stat().st_size > MAX_FILE_SIZE:
                logger.info("Skipping %s: larger than %d bytes", eml_path, MAX_FILE_SIZE)
                continue
        except OSError:
            continue
        yield eml_path


def _decode_part(part: Message) -> tuple[str, str] | None:
    """Return (html, charset) for a text/html part, or None if it has no payload."""
    payload = part.get_payload(decode=True)
    if not isinstance(payload, bytes):
        return None
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace"), charset
    except (LookupError, UnicodeDecodeError):
        return payload.decode("utf-8", errors="replace"), "utf-8"


def scrub_message(
    msg: Message,
    rules: LinkCleaner,
    options: SanitizeOptions | None = None,
) -> list[SanitizationResult]:
    """Sanitize every text/html part of *msg* in place. One result per part."""
    results: list[SanitizationResult] = []
    for part in msg.walk():
        if part.get_content_type() != "text/html":
            continue
        decoded = _decode_part(part)
        if decoded is None:
            continue

        html, charset = decoded
        result = sanitize_email(html, rules, options)
        if result.was_modified:
            try:
                result.html.encode(charset)
            except UnicodeEncodeError:
                # Replacement characters from a lossy decode need a wider charset
                charset = "utf-8"
            # Drop the old encoding header so set_payload re-encodes the body
            del part["Content-Transfer-Encoding"]
            part.set_payload(result.html, charset=charset)
        results.append(result)
    return results


def _rewrite_eml(eml_path: Path, msg: Message) -> None:
    """Write a modified email message back to disk (atomic via temp file)."""
    buf = BytesIO()
    generator = BytesGenerator(buf)
    generator.flatten(msg)
    data = buf.getvalue()

    fd, tmp_path = tempfile.mkstemp(dir=eml_path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, eml_path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def scrub_eml_file(
    eml_path: Path,
    rules: LinkCleaner,
    options: SanitizeOptions | None = None,
    dry_run: bool = True,
) -> ScrubReport:
    """Scrub one .eml file. Dry-run by default — the file is only rewritten with dry_run=False."""
    report = ScrubReport(path=str(eml_path), dry_run=dry_run)
    try:
        msg = email.message_from_bytes(eml_path.read_bytes())
    except (OSError, email.errors.MessageError) as exc:
        report.error = str(exc)
        return report

    try:
        results = scrub_message(msg, rules, options)
        report.html_parts = len(results)
        report.urls_cleaned = sum(r.urls_cleaned for r in results)
        report.tracking_pixels_removed = sum(r.tracking_pixels_removed for r in results)

        if report.was_modified and not dry_run:
            _rewrite_eml(eml_path, msg)
            report.rewritten = True
    except Exception as e:
        logger.warning("Failed to scrub %s: %s", eml_path.name, e)
        report.error = f"Failed to scrub {eml_path.name}: {e}"
        return report

    if report.rewritten:
        logger.info(
            "Scrubbed %s: %d links, %d pixels",
            eml_path.name,
            report.urls_cleaned,
            report.tracking_pixels_removed,
        )
    return report
