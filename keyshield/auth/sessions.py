"""Operator session tokens.

HS256 JWTs signed with the configured session secret. Verification is
signature + expiry only; no store round-trip. Payload:

    {"sub": <username>, "iat": <epoch>, "exp": <epoch>, "type": "session"}
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from keyshield.constants import SESSION_ALGORITHM, SESSION_TOKEN_TYPE, SESSION_TTL_SECONDS
from keyshield.errors import InvalidOrExpiredTokenError
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """The operator a verified session token speaks for."""

    username: str
    expires_at: int


@dataclass(frozen=True)
class SessionToken:
    token: str
    expires_in: int

    def __repr__(self) -> str:
        return f"SessionToken(expires_in={self.expires_in})"


class SessionManager:
    """Issues and verifies signed, time-limited operator sessions.

    Raises:
        ValueError: If secret is empty.
    """

    def __init__(self, secret: str, ttl_seconds: int = SESSION_TTL_SECONDS) -> None:
        if not secret:
            raise ValueError("Session secret must be configured")
        self._secret = secret
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, username: str) -> SessionToken:
        now = int(time.time())
        payload = {
            "sub": username,
            "iat": now,
            "exp": now + self._ttl_seconds,
            "type": SESSION_TOKEN_TYPE,
        }
        token = jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)
        return SessionToken(token=token, expires_in=self._ttl_seconds)

    def verify(self, token: str) -> Identity:
        """Check signature, expiry and token type.

        Raises:
            InvalidOrExpiredTokenError: On any failure. The reason is logged,
                not returned.
        """
        if not token:
            raise InvalidOrExpiredTokenError("Missing token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError as exc:
            logger.debug("session_token_expired")
            raise InvalidOrExpiredTokenError() from exc
        except InvalidTokenError as exc:
            logger.info("session_token_invalid", error_type=type(exc).__name__)
            raise InvalidOrExpiredTokenError() from exc

        if payload.get("type") != SESSION_TOKEN_TYPE:
            logger.info("session_token_type_mismatch", token_type=payload.get("type"))
            raise InvalidOrExpiredTokenError()

        return Identity(username=payload["sub"], expires_at=int(payload["exp"]))
