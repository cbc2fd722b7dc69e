"""Authentication gate — operator login and machine key checks.

Two independent contracts:

  Operator (human) path:
    login(username, password)   → SessionToken
    verify_session(token)       → Identity

  Machine path:
    authenticate_key(raw_key)   → ApiKey

Responses are shaped so a caller cannot tell which check failed:
  - unknown user and wrong password both raise InvalidCredentialsError, and
    the unknown-user branch still pays for a bcrypt comparison;
  - an unknown fingerprint and a failed hash comparison both raise InvalidKeyError.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from keyshield.auth.hashing import KeyHasher, hash_password, verify_password
from keyshield.auth.sessions import Identity, SessionManager, SessionToken
from keyshield.constants import DEFAULT_PASSWORD_BCRYPT_ROUNDS
from keyshield.errors import (
    InvalidCredentialsError,
    InvalidKeyError,
    KeyNotActiveError,
    MissingKeyError,
    ValidationError,
)
from keyshield.store.models import ApiKey
from keyshield.store.sqlite_store import SQLiteCredentialStore
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)

_DUMMY_PASSWORD = "keyshield-timing-equaliser"


class AuthenticationGate:
    def __init__(
        self,
        store: SQLiteCredentialStore,
        hasher: KeyHasher,
        sessions: SessionManager,
        password_rounds: int = DEFAULT_PASSWORD_BCRYPT_ROUNDS,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._sessions = sessions
        self._password_rounds = password_rounds
        self._dummy_hash: Optional[str] = None

    # ── Operator path ─────────────────────────────────────────────────────────

    async def login(self, username: Optional[str], password: Optional[str]) -> SessionToken:
        """Check operator credentials and issue a session token.

        Raises:
            ValidationError: username or password missing.
            InvalidCredentialsError: unknown user or wrong password.
        """
        if not username or not password:
            raise ValidationError("username and password required")

        user = await self._store.get_user_by_username(username)
        if user is None:
            await asyncio.to_thread(verify_password, password, self._get_dummy_hash())
            logger.info("login_failed", username=username)
            raise InvalidCredentialsError()

        ok = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not ok:
            logger.info("login_failed", username=username)
            raise InvalidCredentialsError()

        logger.info("login_succeeded", username=username)
        return self._sessions.issue(username)

    def verify_session(self, token: Optional[str]) -> Identity:
        """Raises InvalidOrExpiredTokenError."""
        return self._sessions.verify(token or "")

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = hash_password(_DUMMY_PASSWORD, rounds=self._password_rounds)
        return self._dummy_hash

    # ── Machine path ──────────────────────────────────────────────────────────

    async def authenticate_key(self, raw_key: Optional[str]) -> ApiKey:
        """Resolve a presented raw key to its ApiKey row.

        Check order: presence → fingerprint lookup → status → bcrypt.

        Raises:
            MissingKeyError: No key presented (the store is not consulted).
            InvalidKeyError: No fingerprint match, or hash comparison failed.
            KeyNotActiveError: Fingerprint matched a key that is not ACTIVE.
        """
        if not raw_key:
            raise MissingKeyError()

        fingerprint = self._hasher.fingerprint(raw_key)
        api_key = await self._store.get_api_key_by_fingerprint(fingerprint)
        if api_key is None:
            logger.info("key_auth_failed", reason="no_match")
            raise InvalidKeyError()

        if not api_key.is_active:
            logger.info("key_auth_failed", reason="not_active", key_id=api_key.id)
            raise KeyNotActiveError(api_key.status)

        if not await self._hasher.verify_async(raw_key, api_key.key_hash):
            logger.warning("key_auth_failed", reason="hash_mismatch", key_id=api_key.id)
            raise InvalidKeyError()

        return api_key
