"""Packaged data and per-user cache locations."""

from __future__ import annotations

from pathlib import Path

# src/email_scrubber/core/paths.py -> src/email_scrubber/data/
DATA_DIR = Path(__file__).resolve().parent.parent / "data"

CONFIG_DIR = Path.home() / ".config" / "email-scrubber"

# Downloaded ClearURLs corpus (see `escrub rules update`)
RULES_CACHE_PATH = CONFIG_DIR / "rules.json"
