"""JSON envelopes handed to whatever serves the data."""

from __future__ import annotations

import json

from cache import CacheResult
from utils import utc_now_iso


def success_envelope(result: CacheResult) -> dict:
    envelope = {"success": True}
    envelope.update(result.snapshot.to_dict())
    envelope["stale"] = result.is_stale
    return envelope


def error_envelope(exc: BaseException) -> dict:
    return {
        "success": False,
        "error": str(exc) or exc.__class__.__name__,
        "timestamp": utc_now_iso(),
    }


def to_json(envelope: dict) -> str:
    return json.dumps(envelope, ensure_ascii=False, indent=2)
