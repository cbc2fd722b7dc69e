"""KeyShield error taxonomy.

Every error raised by the store, gate or lifecycle manager derives from
KeyShieldError. The application factory installs a single exception handler
that turns them into ``{"error": message}`` with ``status_code``.

HTTP mapping:
  ValidationError      → 400
  AuthenticationError  → 401
  AuthorizationError   → 403
  NotFoundError        → 404
  IntegrityError       → 500
"""

from __future__ import annotations


class KeyShieldError(Exception):
    """Base class for all KeyShield domain errors."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message


# ─── 400 ──────────────────────────────────────────────────────────────────────


class ValidationError(KeyShieldError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class MissingKeyError(ValidationError):
    code = "missing_key"
    default_message = "Missing x-api-key header"


# ─── 401 ──────────────────────────────────────────────────────────────────────


class AuthenticationError(KeyShieldError):
    status_code = 401
    code = "authentication_failed"
    default_message = "Authentication failed"


class InvalidCredentialsError(AuthenticationError):
    """Unknown username or wrong password. Never says which."""

    code = "invalid_credentials"
    default_message = "Invalid credentials"


class InvalidOrExpiredTokenError(AuthenticationError):
    code = "invalid_token"
    default_message = "Invalid or expired token"


class InvalidKeyError(AuthenticationError):
    """No active key matches the presented secret, or the secret is stale."""

    code = "invalid_key"
    default_message = "Invalid key"


# ─── 403 ──────────────────────────────────────────────────────────────────────


class AuthorizationError(KeyShieldError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class KeyNotActiveError(AuthorizationError):
    code = "key_not_active"
    default_message = "Key not active"

    def __init__(self, status: str | None = None) -> None:
        super().__init__(f"Key not active ({status})" if status else None)
        self.key_status = status


# ─── 404 ──────────────────────────────────────────────────────────────────────


class NotFoundError(KeyShieldError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class KeyNotFoundError(NotFoundError):
    code = "key_not_found"
    default_message = "Key not found"


# ─── 500 ──────────────────────────────────────────────────────────────────────


class IntegrityError(KeyShieldError):
    """A store invariant was violated. Not retried."""

    status_code = 500
    code = "integrity_error"
    default_message = "Store integrity violation"


class FingerprintCollisionError(IntegrityError):
    """Two raw keys produced the same fingerprint.

    Either the random source is broken or an astronomically unlikely
    collision happened. Surfaced as a hard failure.
    """

    code = "fingerprint_collision"
    default_message = "Key fingerprint collision"
