"""Configuration: upstream page URLs, cache timing, fetch settings."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (won't override existing env vars)
load_dotenv(Path(__file__).parent / ".env")

# ---------------------------------------------------------------------------
# Upstream pages
# ---------------------------------------------------------------------------
PREVISION_URL = os.environ.get(
    "PREVISION_URL", "https://portal.cpevalencia.com/noray/previsionDemanda.jsp"
)
CHAPERO_URL = os.environ.get(
    "CHAPERO_URL", "https://portal.cpevalencia.com/noray/chapero.jsp"
)

# ---------------------------------------------------------------------------
# Cache timing — fixed for the life of the process
# ---------------------------------------------------------------------------
# Snapshots older than this are stale and trigger a refresh on the next read.
CACHE_TTL_SECONDS = float(os.environ.get("CACHE_TTL_SECONDS", "1800"))

# How long a reader blocks waiting for an in-flight refresh before falling
# back to whatever snapshot exists.
CACHE_WAIT_SECONDS = float(os.environ.get("CACHE_WAIT_SECONDS", "5"))

# ---------------------------------------------------------------------------
# Fetch settings
# ---------------------------------------------------------------------------
FETCH_MODES = ("auto", "http", "browser")

# "auto" tries a plain HTTP GET first and opens a browser page when that fails.
FETCH_MODE = os.environ.get("FETCH_MODE", "auto").strip().lower()

NAV_TIMEOUT_MS = int(os.environ.get("NAV_TIMEOUT_MS", "30000"))
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "20"))

# Attach to an already-running Chrome over CDP instead of launching one.
BROWSER_CDP_URL = os.environ.get("BROWSER_CDP_URL", "")

# Validate at import time
if CACHE_TTL_SECONDS <= 0:
    raise ValueError(f"CACHE_TTL_SECONDS must be positive, got {CACHE_TTL_SECONDS!r}")
if CACHE_WAIT_SECONDS < 0:
    raise ValueError(f"CACHE_WAIT_SECONDS must be non-negative, got {CACHE_WAIT_SECONDS!r}")
if FETCH_MODE not in FETCH_MODES:
    raise ValueError(f"FETCH_MODE must be one of {FETCH_MODES}, got {FETCH_MODE!r}")
if NAV_TIMEOUT_MS <= 0:
    raise ValueError(f"NAV_TIMEOUT_MS must be positive, got {NAV_TIMEOUT_MS!r}")
