"""Rule set sources — JSON files, the built-in minimal set, and the ClearURLs download."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from email_scrubber.core.base import RuleSet, RulesLoadError
from email_scrubber.core.config import get_rules_path
from email_scrubber.core.paths import DATA_DIR

logger = logging.getLogger(__name__)

DEFAULT_RULES_URL = "https://rules2.clearurls.xyz/data.minify.json"

_FETCH_TIMEOUT = 30
_MINIMAL_RULES_FILE = DATA_DIR / "minimal_rules.yaml"


def _validate(data: Any, source: str) -> RuleSet:
    try:
        return RuleSet.model_validate(data)
    except ValidationError as exc:
        raise RulesLoadError(f"Invalid rule set in {source}: {exc}") from exc


def load_rules(path: Path) -> RuleSet:
    """Load a ClearURLs-format JSON rule file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise RulesLoadError(f"Cannot read rule file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise RulesLoadError(f"Rule file {path} is not valid JSON: {exc}") from exc
    return _validate(data, str(path))


@lru_cache(maxsize=1)
def create_minimal_rules() -> RuleSet:
    """A small rule set covering UTM and click-id parameters plus a few big providers."""
    with _MINIMAL_RULES_FILE.open() as f:
        return _validate(yaml.safe_load(f), _MINIMAL_RULES_FILE.name)


def load_default_rules(config: dict[str, Any] | None = None) -> RuleSet:
    """The downloaded/configured corpus if present, else the minimal set."""
    path = get_rules_path(config)
    if path.exists():
        logger.debug("Loading rules from %s", path)
        return load_rules(path)
    logger.debug("No rule file at %s, using built-in minimal rules", path)
    return create_minimal_rules()


def save_rules(rule_set: RuleSet, path: Path) -> None:
    """Write *rule_set* as ClearURLs JSON (atomic via temp file)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = rule_set.model_dump(by_alias=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


async def fetch_rules(
    url: str = DEFAULT_RULES_URL,
    client: httpx.AsyncClient | None = None,
) -> RuleSet:
    """Download and validate the ClearURLs rule corpus."""
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=_FETCH_TIMEOUT, follow_redirects=True) as c:
                resp = await c.get(url)
        else:
            resp = await client.get(url)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as exc:
        raise RulesLoadError(f"Could not download rules from {url}: {exc}") from exc
    except ValueError as exc:
        raise RulesLoadError(f"Rules at {url} are not valid JSON: {exc}") from exc

    rule_set = _validate(data, url)
    logger.info("Fetched %d providers from %s", len(rule_set.providers), url)
    return rule_set
