"""ULID generation for request correlation ids.

Uses the ``python-ulid`` library. Request ids are echoed in the
``X-Request-ID`` response header and attached to every log line emitted
while the request is in flight.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Return a new 26-character Crockford Base32 ULID string."""
    return str(ULID())
