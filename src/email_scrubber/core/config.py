"""Configuration loading — reads an optional TOML config file.

Example ``escrub.toml``::

    [sanitize]
    clean_urls = true
    preserve_document_structure = false
    exception_mode = "parameter"

    [pixels]
    max_pixel_size = 1
    remove_no_alt_images = false

    [rules]
    path = "~/mail/clearurls.json"
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from email_scrubber.core.base import SanitizeOptions, TrackerPixelOptions
from email_scrubber.core.paths import CONFIG_DIR, RULES_CACHE_PATH

DEFAULT_CONFIG_PATHS = [
    CONFIG_DIR / "config.toml",
    Path("escrub.toml"),
]

RULES_ENV_VAR = "ESCRUB_RULES"


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from a TOML file.

    Searches default paths if no explicit path is given.
    Returns an empty dict if no config file is found.
    """
    paths = [path] if path is not None else DEFAULT_CONFIG_PATHS

    for p in paths:
        if p.exists():
            with open(p, "rb") as f:
                return tomllib.load(f)

    return {}


def get_sanitize_options(config: dict[str, Any] | None = None) -> SanitizeOptions:
    """Build SanitizeOptions from the [sanitize] and [pixels] tables."""
    if config is None:
        config = load_config()
    sanitize = dict(config.get("sanitize", {}))
    pixels = config.get("pixels", {})
    return SanitizeOptions(
        **sanitize,
        tracker_pixel_options=TrackerPixelOptions(**pixels),
    )


def get_rules_path(config: dict[str, Any] | None = None) -> Path:
    """Rule file location: ESCRUB_RULES env var → config [rules] path → download cache."""
    env = os.environ.get(RULES_ENV_VAR)
    if env:
        return Path(env).expanduser()
    if config is None:
        config = load_config()
    configured = config.get("rules", {}).get("path")
    if configured:
        return Path(configured).expanduser()
    return RULES_CACHE_PATH
