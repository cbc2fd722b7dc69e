"""Key fingerprinting and hashing.

Two derivations per raw key:
  - fingerprint: HMAC-SHA256(pepper, raw), hex. Deterministic and cheap,
    stored in the UNIQUE key_fingerprint column and used for every lookup.
  - hash: bcrypt with a fresh salt. Slow, non-deterministic encoding,
    checked with bcrypt.checkpw after the fingerprint lookup.

The pepper is injected at construction and never read from the environment
here. Raw keys are never stored.

Operator passwords use bcrypt over a SHA-256 pre-hash so inputs longer than
bcrypt's 72-byte limit are accepted.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import secrets

import bcrypt

from keyshield.constants import (
    DEFAULT_KEY_BCRYPT_ROUNDS,
    DEFAULT_PASSWORD_BCRYPT_ROUNDS,
    RAW_KEY_BYTES,
)
from keyshield.store.models import KeyMaterial
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)


class KeyHasher:
    """Derives fingerprints and verification hashes from raw API keys.

    Args:
        pepper: Server-side secret mixed into every fingerprint. Required.
        rounds: bcrypt cost factor for key hashes.

    Raises:
        ValueError: If pepper is empty.
    """

    def __init__(self, pepper: str, rounds: int = DEFAULT_KEY_BCRYPT_ROUNDS) -> None:
        if not pepper:
            raise ValueError("Key pepper must be configured; refusing to fingerprint without it")
        self._pepper = pepper.encode()
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def fingerprint(self, raw: str) -> str:
        return hmac.new(self._pepper, raw.encode(), hashlib.sha256).hexdigest()

    def hash(self, raw: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(raw.encode(), salt).decode()

    def verify(self, raw: str, hashed: str) -> bool:
        """bcrypt comparison. A malformed stored hash verifies as False."""
        try:
            return bcrypt.checkpw(raw.encode(), hashed.encode())
        except ValueError as exc:
            logger.warning("bcrypt_verify_error", error=str(exc))
            return False

    @staticmethod
    def generate_raw_key() -> str:
        """256 bits from the OS CSPRNG, hex encoded (64 chars)."""
        return secrets.token_hex(RAW_KEY_BYTES)

    @staticmethod
    def last4(raw: str) -> str:
        """Display hint only."""
        return raw[-4:]

    def derive(self, raw: str) -> KeyMaterial:
        return KeyMaterial(
            raw_key=raw,
            fingerprint=self.fingerprint(raw),
            key_hash=self.hash(raw),
            last4=self.last4(raw),
        )

    async def new_material(self) -> KeyMaterial:
        """Generate a raw key and derive its material off the event loop."""
        return await asyncio.to_thread(self.derive, self.generate_raw_key())

    async def verify_async(self, raw: str, hashed: str) -> bool:
        return await asyncio.to_thread(self.verify, raw, hashed)


# ─── Operator passwords ───────────────────────────────────────────────────────


def _prepare_password(password: str) -> bytes:
    return base64.b64encode(hashlib.sha256(password.encode()).digest())


def hash_password(password: str, rounds: int = DEFAULT_PASSWORD_BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_prepare_password(password), password_hash.encode())
    except ValueError:
        return False
