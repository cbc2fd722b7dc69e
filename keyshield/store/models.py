"""Row types owned by the credential store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from keyshield.constants import STATUS_ACTIVE


@dataclass
class User:
    """Operator account. Only the seeded admin exists in practice."""

    id: int
    username: str
    password_hash: str
    created_at: str


@dataclass
class ApiKey:
    """An API key row.

    ``key_hash``, ``key_fingerprint`` and ``key_last4`` always describe the
    same raw secret: the most recently issued one. Rotation replaces all
    three in a single UPDATE.
    """

    id: int
    label: str
    status: str
    key_hash: str
    key_fingerprint: str
    key_last4: str
    rotation_count: int
    created_at: str
    last_used_at: Optional[str] = None
    last_rotated_at: Optional[str] = None
    revoked_at: Optional[str] = None
    revocation_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def to_public(self) -> dict[str, Any]:
        """Metadata only. Never includes key_hash or key_fingerprint."""
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status,
            "key_last4": self.key_last4,
            "rotation_count": self.rotation_count,
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
            "last_rotated_at": self.last_rotated_at,
            "revoked_at": self.revoked_at,
            "revocation_reason": self.revocation_reason,
        }


@dataclass(frozen=True)
class KeyMaterial:
    """A freshly generated raw key with everything derived from it.

    ``raw_key`` is handed to the caller once and never persisted.
    """

    raw_key: str
    fingerprint: str
    key_hash: str
    last4: str

    def __repr__(self) -> str:
        return f"KeyMaterial(last4={self.last4!r})"


@dataclass(frozen=True)
class KeyStats:
    """Aggregates read on every metrics scrape."""

    active: int
    revoked: int
    rotation_sum: int
