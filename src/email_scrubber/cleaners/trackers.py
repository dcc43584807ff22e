"""Known tracking-pixel domains and tracking query parameters, loaded from YAML."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import yaml

from email_scrubber.core.paths import DATA_DIR

_TRACKERS_FILE = DATA_DIR / "trackers.yaml"


@lru_cache(maxsize=1)
def _load_tracker_data() -> dict[str, Any]:
    with _TRACKERS_FILE.open() as f:
        return yaml.safe_load(f) or {}


def default_tracking_domains() -> frozenset[str]:
    """Domains whose images are treated as tracking beacons by default."""
    return frozenset(d.lower() for d in _load_tracker_data().get("tracking_domains", []))


def default_tracking_params() -> frozenset[str]:
    """Query parameter names that mark an image URL as a tracker by default."""
    return frozenset(_load_tracker_data().get("tracking_params", []))


def matches_tracking_domain(hostname: str, domains: frozenset[str]) -> str | None:
    """Return the tracking domain *hostname* belongs to, if any.

    Matches the domain itself and its subdomains on dot boundaries only, so
    "nothubspot.com" does not match "hubspot.com".
    """
    hostname = hostname.lower().rstrip(".")
    for domain in domains:
        if hostname == domain or hostname.endswith("." + domain):
            return domain
    return None
