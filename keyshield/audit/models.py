"""Audit record types for KeyShield.

Only key-related transitions are audited: CREATE_KEY, KEY_USED,
KEY_ROTATED and REVOKE_KEY. Logins are not.

Each action has its own frozen meta dataclass so the shape of what an
action records is fixed in one place. The action name travels on the meta
class (``ACTION``), which lets AuditSink.record() derive the action from the
meta it is given. Meta is stored as a JSON object and decoded back to a
plain dict on read.

Audit rows are append-only: never updated, never deleted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Literal, Optional, Union

# ─── Type Aliases ─────────────────────────────────────────────────────────────

AuditAction = Literal["CREATE_KEY", "KEY_USED", "KEY_ROTATED", "REVOKE_KEY"]


# ─── Per-action meta ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CreateKeyMeta:
    ACTION: ClassVar[AuditAction] = "CREATE_KEY"

    label: str


@dataclass(frozen=True)
class KeyUsedMeta:
    ACTION: ClassVar[AuditAction] = "KEY_USED"


@dataclass(frozen=True)
class KeyRotatedMeta:
    ACTION: ClassVar[AuditAction] = "KEY_ROTATED"

    rotation_count: int
    key_last4: str


@dataclass(frozen=True)
class RevokeKeyMeta:
    ACTION: ClassVar[AuditAction] = "REVOKE_KEY"

    reason: str


AuditMeta = Union[CreateKeyMeta, KeyUsedMeta, KeyRotatedMeta, RevokeKeyMeta]


def meta_to_dict(meta: AuditMeta) -> dict[str, Any]:
    """Serialise a meta dataclass to the JSON-ready dict stored in audit_logs.meta."""
    return asdict(meta)


# ─── AuditEntry ───────────────────────────────────────────────────────────────


@dataclass
class AuditEntry:
    """One row of the audit log.

    ``id`` and ``created_at`` are assigned by the store; entries built for
    insertion leave ``id`` as None.
    """

    actor: str
    """Operator username, or 'client' for the machine-access path."""
    action: AuditAction
    created_at: str
    """ISO 8601 UTC timestamp."""
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    ip: Optional[str] = None
    meta: dict[str, Any] = None  # type: ignore[assignment]
    id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.meta is None:
            self.meta = {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor": self.actor,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "ip": self.ip,
            "meta": self.meta,
            "created_at": self.created_at,
        }
