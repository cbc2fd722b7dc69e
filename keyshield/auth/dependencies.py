"""FastAPI dependencies for KeyShield routes.

``require_session()`` guards every operator route. It reads
``Authorization: Bearer <token>`` and raises InvalidOrExpiredTokenError (401)
before the handler runs when the header is absent, malformed, or the token
does not verify.
"""

from __future__ import annotations

import re

from fastapi import Request

from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.sessions import Identity
from keyshield.errors import InvalidOrExpiredTokenError
from keyshield.keys.lifecycle import KeyLifecycleManager

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)$", re.IGNORECASE)


def _extract_bearer(authorization: str) -> str | None:
    if not authorization:
        return None
    m = _BEARER_RE.match(authorization.strip())
    return m.group(1) if m else None


def get_gate(request: Request) -> AuthenticationGate:
    return request.app.state.gate


def get_lifecycle(request: Request) -> KeyLifecycleManager:
    return request.app.state.lifecycle


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def require_session(request: Request) -> Identity:
    """Resolve the operator identity for this request.

    Raises:
        InvalidOrExpiredTokenError: "Missing token" when no Bearer token is
            present, otherwise the generic invalid/expired message.
    """
    token = _extract_bearer(request.headers.get("authorization", ""))
    if token is None:
        raise InvalidOrExpiredTokenError("Missing token")
    identity = get_gate(request).verify_session(token)
    request.state.operator = identity.username
    return identity
