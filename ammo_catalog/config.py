# ammo_catalog/config.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Any

# -------------------------
# Base project root
# -------------------------

# Computed so the checkout can live anywhere
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# -------------------------
# Default local file paths
# -------------------------

# Catalog document consumed by the display app
DEFAULT_CATALOG_PATH = PROJECT_ROOT / "data" / "products.json"

# Optional JSON file with overrides for the values below
DEFAULT_SETTINGS_PATH = PROJECT_ROOT / "settings.json"

# Root folder for exported run logs
LOG_ROOT = PROJECT_ROOT / "logs"

# -------------------------
# Browser / scraping
# -------------------------

MAX_CONCURRENCY = 5
NAVIGATION_TIMEOUT_MS = 15000

# Client-side rendering grace period before the second strategy pass
SETTLE_MS = 3000

# Discovery pass waits this long for an <h1> before reading variant rows
VARIANT_WAIT_MS = 8000

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
LOCALE = "fi-FI"
HEADLESS = True

# -------------------------
# Correction sanity bounds
# -------------------------

# No ammunition is packaged in boxes below this
MIN_ROUNDS_PER_BOX = 10

# Per-round price may move at most this factor in either direction per run
MAX_PPR_RATIO = 3.0


_OVERRIDABLE = (
    "DEFAULT_CATALOG_PATH",
    "LOG_ROOT",
    "MAX_CONCURRENCY",
    "NAVIGATION_TIMEOUT_MS",
    "SETTLE_MS",
    "VARIANT_WAIT_MS",
    "USER_AGENT",
    "LOCALE",
    "HEADLESS",
    "MIN_ROUNDS_PER_BOX",
    "MAX_PPR_RATIO",
)


def load_settings(settings_path: Path | str | None = None) -> Dict[str, Any]:
    """
    Load overrides from a JSON settings file and apply them to this module.

    Every key must name one of the module-level settings, e.g.:

        {"MAX_CONCURRENCY": 3, "SETTLE_MS": 5000, "LOCALE": "en-GB"}

    A missing default settings file is not an error (returns {}); an
    explicitly requested file that does not exist is.
    """
    explicit = settings_path is not None
    if settings_path is None:
        settings_path = DEFAULT_SETTINGS_PATH

    settings_path = Path(settings_path)
    if not settings_path.exists():
        if explicit:
            raise FileNotFoundError(f"settings file not found at: {settings_path}")
        return {}

    with open(settings_path, "r", encoding="utf-8") as f:
        settings: Dict[str, Any] = json.load(f)

    unknown = [k for k in settings if k not in _OVERRIDABLE]
    if unknown:
        raise KeyError(f"settings file has unknown keys: {unknown}")

    g = globals()
    for key, value in settings.items():
        if key in ("DEFAULT_CATALOG_PATH", "LOG_ROOT"):
            value = Path(value)
        g[key] = value

    return settings
