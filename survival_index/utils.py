"""Shared utility functions used across Survival Index modules."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def humanize_lever(name: str) -> str:
    """``insightCompression`` -> ``insight compression``."""
    out: list[str] = []
    for ch in name:
        if ch.isupper():
            out.append(" ")
        out.append(ch.lower())
    return "".join(out)
