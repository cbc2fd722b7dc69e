"""Datetime helpers.

All stored timestamps are timezone-aware UTC ISO 8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
