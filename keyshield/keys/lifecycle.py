"""API key lifecycle — create, list, revoke, and rotate-on-use.

State machine per key:
    ACTIVE ──(successful access)──▶ ACTIVE   new secret, rotation_count + 1
    ACTIVE ──(operator revoke)────▶ REVOKED  terminal

Every successful machine access consumes the presented secret and returns
its successor in the same response; the previous value never
authenticates again.

Concurrency: two requests presenting the same secret may both pass
authenticate_key(). Only one can win SQLiteCredentialStore.rotate_key_secret(),
whose UPDATE is conditioned on the presented fingerprint. The loser receives
InvalidKeyError (or KeyNotActiveError if the key was revoked in between).

Audit entries:
    create_key         → CREATE_KEY
    revoke_key         → REVOKE_KEY
    access_and_rotate  → KEY_USED, then KEY_ROTATED
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from keyshield.audit.models import CreateKeyMeta, KeyRotatedMeta, KeyUsedMeta, RevokeKeyMeta
from keyshield.audit.sink import AuditSink
from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.hashing import KeyHasher
from keyshield.constants import (
    CLIENT_ACTOR,
    DEFAULT_KEY_LABEL,
    MANUAL_REVOKE_REASON,
    MAX_LABEL_LENGTH,
    PROTECTED_ASSET,
    STATUS_ACTIVE,
)
from keyshield.errors import (
    InvalidKeyError,
    KeyNotActiveError,
    KeyNotFoundError,
    ValidationError,
)
from keyshield.store.models import ApiKey
from keyshield.store.sqlite_store import SQLiteCredentialStore
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreatedKey:
    """Result of create_key(). raw_key_once is never retrievable again."""

    id: int
    label: str
    status: str
    key_last4: str
    raw_key_once: str

    def to_response(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status,
            "key_last4": self.key_last4,
            "raw_key_once": self.raw_key_once,
        }

    def __repr__(self) -> str:
        return f"CreatedKey(id={self.id}, label={self.label!r}, key_last4={self.key_last4!r})"


@dataclass(frozen=True)
class AccessGrant:
    """Result of access_and_rotate(). rotated_raw_key is the only copy of the new secret."""

    api_key: ApiKey
    rotated_raw_key: str
    asset: dict[str, Any] = field(default_factory=lambda: dict(PROTECTED_ASSET))

    def to_response(self) -> dict[str, Any]:
        return {
            "access": "granted",
            "asset": self.asset,
            "rotated_key_once": self.rotated_raw_key,
        }

    def __repr__(self) -> str:
        return f"AccessGrant(key_id={self.api_key.id}, rotation_count={self.api_key.rotation_count})"


def normalize_label(label: Optional[str]) -> str:
    """Blank or missing labels become 'default'.

    Raises:
        ValidationError: label longer than MAX_LABEL_LENGTH.
    """
    label = (label or "").strip()
    if not label:
        return DEFAULT_KEY_LABEL
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"label must be at most {MAX_LABEL_LENGTH} characters")
    return label


class KeyLifecycleManager:
    def __init__(
        self,
        store: SQLiteCredentialStore,
        hasher: KeyHasher,
        gate: AuthenticationGate,
        audit: AuditSink,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._gate = gate
        self._audit = audit

    # ── Operator operations ───────────────────────────────────────────────────

    async def create_key(
        self,
        label: Optional[str],
        actor: str,
        ip: Optional[str] = None,
    ) -> CreatedKey:
        """Issue a new ACTIVE key.

        Raises:
            ValidationError: label too long.
            FingerprintCollisionError: the new fingerprint already exists.
        """
        label = normalize_label(label)
        material = await self._hasher.new_material()
        api_key = await self._store.insert_api_key(label, material)

        logger.info(
            "api_key_created",
            key_id=api_key.id,
            label=label,
            key_last4=api_key.key_last4,
            actor=actor,
        )
        await self._audit.record(actor, CreateKeyMeta(label=label), target_id=api_key.id, ip=ip)

        return CreatedKey(
            id=api_key.id,
            label=api_key.label,
            status=api_key.status,
            key_last4=api_key.key_last4,
            raw_key_once=material.raw_key,
        )

    async def list_keys(self) -> list[ApiKey]:
        """All keys, newest id first. Callers expose only ApiKey.to_public()."""
        return await self._store.list_api_keys()

    async def revoke_key(
        self,
        key_id: int,
        actor: str,
        ip: Optional[str] = None,
    ) -> ApiKey:
        """Revoke a key. Revoking an already REVOKED key is a no-op success.

        A no-op keeps the first revoked_at / revocation_reason and writes
        no audit entry.

        Raises:
            KeyNotFoundError: no key with this id.
        """
        api_key = await self._store.get_api_key(key_id)
        if api_key is None:
            raise KeyNotFoundError()

        if api_key.status != STATUS_ACTIVE:
            logger.info("api_key_revoke_noop", key_id=key_id, status=api_key.status, actor=actor)
            return api_key

        changed = await self._store.revoke_api_key(key_id, reason=MANUAL_REVOKE_REASON)
        if changed:
            logger.info("api_key_revoked", key_id=key_id, actor=actor)
            await self._audit.record(
                actor,
                RevokeKeyMeta(reason=MANUAL_REVOKE_REASON),
                target_id=key_id,
                ip=ip,
            )
        else:
            logger.info("api_key_revoke_noop", key_id=key_id, actor=actor, reason="concurrent_revoke")

        revoked = await self._store.get_api_key(key_id)
        return revoked if revoked is not None else api_key

    # ── Machine access ────────────────────────────────────────────────────────

    async def access_and_rotate(
        self,
        raw_key: Optional[str],
        ip: Optional[str] = None,
    ) -> AccessGrant:
        """Authenticate the presented key, grant the asset, and rotate the secret.

        Raises:
            MissingKeyError: no key presented.
            InvalidKeyError: unknown or stale secret, including losing a
                concurrent rotation race.
            KeyNotActiveError: key is revoked.
            FingerprintCollisionError: the new fingerprint already exists.
        """
        api_key = await self._gate.authenticate_key(raw_key)

        material = await self._hasher.new_material()
        rotated = await self._store.rotate_key_secret(
            api_key.id,
            presented_fingerprint=api_key.key_fingerprint,
            material=material,
        )

        if rotated is None:
            current = await self._store.get_api_key(api_key.id)
            logger.warning(
                "api_key_rotation_lost_race",
                key_id=api_key.id,
                status=current.status if current is not None else None,
            )
            if current is not None and not current.is_active:
                raise KeyNotActiveError(current.status)
            raise InvalidKeyError()

        logger.info(
            "api_key_rotated",
            key_id=rotated.id,
            rotation_count=rotated.rotation_count,
            key_last4=rotated.key_last4,
        )
        await self._audit.record(CLIENT_ACTOR, KeyUsedMeta(), target_id=rotated.id, ip=ip)
        await self._audit.record(
            CLIENT_ACTOR,
            KeyRotatedMeta(rotation_count=rotated.rotation_count, key_last4=rotated.key_last4),
            target_id=rotated.id,
            ip=ip,
        )

        return AccessGrant(api_key=rotated, rotated_raw_key=material.raw_key)
