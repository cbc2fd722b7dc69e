"""Unit tests for keyshield/keys/lifecycle.py.

Covers:
  - create_key: label normalisation, raw key returned once, CREATE_KEY audit
  - list_keys: newest first, metadata only
  - revoke_key: not found, ACTIVE → REVOKED, repeat revoke is a no-op
  - access_and_rotate: single-use secrets, rotation bookkeeping,
    KEY_USED then KEY_ROTATED, revoked keys refused
  - concurrent use of one secret: exactly one winner
  - audit write failure never fails the operation
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from keyshield.audit.sink import AuditSink
from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.hashing import KeyHasher
from keyshield.constants import MAX_LABEL_LENGTH
from keyshield.errors import (
    InvalidKeyError,
    KeyNotActiveError,
    KeyNotFoundError,
    MissingKeyError,
    ValidationError,
)
from keyshield.keys.lifecycle import AccessGrant, KeyLifecycleManager, normalize_label
from keyshield.store.sqlite_store import SQLiteCredentialStore


async def _actions(store: SQLiteCredentialStore) -> list[str]:
    """Audit actions, oldest first."""
    entries = await store.recent_audit_entries(500)
    return [e.action for e in reversed(entries)]


# ─── create / list ────────────────────────────────────────────────────────────


class TestCreateKey:
    async def test_returns_raw_key_once(
        self, lifecycle: KeyLifecycleManager, hasher: KeyHasher
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin", ip="10.0.0.1")

        assert created.status == "ACTIVE"
        assert created.label == "svc"
        assert len(created.raw_key_once) == 64
        assert created.key_last4 == created.raw_key_once[-4:]
        assert created.raw_key_once not in repr(created)

    @pytest.mark.parametrize("label", [None, "", "   "])
    async def test_blank_label_becomes_default(
        self, lifecycle: KeyLifecycleManager, label: str
    ) -> None:
        created = await lifecycle.create_key(label, actor="admin")
        assert created.label == "default"

    async def test_label_trimmed(self, lifecycle: KeyLifecycleManager) -> None:
        created = await lifecycle.create_key("  billing  ", actor="admin")
        assert created.label == "billing"

    async def test_label_too_long(self, lifecycle: KeyLifecycleManager) -> None:
        with pytest.raises(ValidationError):
            await lifecycle.create_key("x" * (MAX_LABEL_LENGTH + 1), actor="admin")

    async def test_audit_entry(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin", ip="10.0.0.1")
        [entry] = await store.recent_audit_entries(10)
        assert entry.action == "CREATE_KEY"
        assert entry.actor == "admin"
        assert entry.target_type == "api_key"
        assert entry.target_id == created.id
        assert entry.ip == "10.0.0.1"
        assert entry.meta == {"label": "svc"}

    async def test_raw_key_authenticates(
        self, lifecycle: KeyLifecycleManager, gate: AuthenticationGate
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        key = await gate.authenticate_key(created.raw_key_once)
        assert key.id == created.id


class TestListKeys:
    async def test_newest_first(self, lifecycle: KeyLifecycleManager) -> None:
        first = await lifecycle.create_key("one", actor="admin")
        second = await lifecycle.create_key("two", actor="admin")
        keys = await lifecycle.list_keys()
        assert [k.id for k in keys] == [second.id, first.id]


def test_normalize_label_keeps_inner_text() -> None:
    assert normalize_label(" a b ") == "a b"


# ─── revoke ───────────────────────────────────────────────────────────────────


class TestRevokeKey:
    async def test_missing_key(self, lifecycle: KeyLifecycleManager) -> None:
        with pytest.raises(KeyNotFoundError):
            await lifecycle.revoke_key(4242, actor="admin")

    async def test_revoke_active(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        revoked = await lifecycle.revoke_key(created.id, actor="admin", ip="10.0.0.2")

        assert revoked.status == "REVOKED"
        assert revoked.revocation_reason == "MANUAL_REVOKE"
        assert revoked.revoked_at is not None

        entries = await store.recent_audit_entries(10)
        assert entries[0].action == "REVOKE_KEY"
        assert entries[0].meta == {"reason": "MANUAL_REVOKE"}
        assert entries[0].target_id == created.id

    async def test_repeat_revoke_is_noop(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        first = await lifecycle.revoke_key(created.id, actor="admin")
        second = await lifecycle.revoke_key(created.id, actor="admin")

        assert second.revoked_at == first.revoked_at
        assert second.revocation_reason == first.revocation_reason
        assert (await _actions(store)).count("REVOKE_KEY") == 1

    async def test_revoked_key_refused(self, lifecycle: KeyLifecycleManager) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        await lifecycle.revoke_key(created.id, actor="admin")
        with pytest.raises(KeyNotActiveError):
            await lifecycle.access_and_rotate(created.raw_key_once)


# ─── access + rotate ──────────────────────────────────────────────────────────


class TestAccessAndRotate:
    async def test_grant_and_new_secret(self, lifecycle: KeyLifecycleManager) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        grant = await lifecycle.access_and_rotate(created.raw_key_once, ip="10.0.0.3")

        assert isinstance(grant, AccessGrant)
        assert grant.asset == {
            "id": "asset-001",
            "message": "Sensitive asset accessed successfully.",
        }
        assert grant.rotated_raw_key != created.raw_key_once
        assert grant.api_key.rotation_count == 1
        assert grant.api_key.key_last4 == grant.rotated_raw_key[-4:]
        assert grant.api_key.last_used_at == grant.api_key.last_rotated_at
        assert grant.rotated_raw_key not in repr(grant)

    async def test_previous_secret_is_dead(self, lifecycle: KeyLifecycleManager) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        await lifecycle.access_and_rotate(created.raw_key_once)
        with pytest.raises(InvalidKeyError):
            await lifecycle.access_and_rotate(created.raw_key_once)

    async def test_chain_of_rotations(self, lifecycle: KeyLifecycleManager) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        raw = created.raw_key_once
        seen = {raw}
        for expected in range(1, 4):
            grant = await lifecycle.access_and_rotate(raw)
            assert grant.api_key.rotation_count == expected
            raw = grant.rotated_raw_key
            assert raw not in seen
            seen.add(raw)

    async def test_audit_order(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        grant = await lifecycle.access_and_rotate(created.raw_key_once, ip="10.0.0.3")

        entries = await store.recent_audit_entries(10)
        rotated, used = entries[0], entries[1]
        assert used.action == "KEY_USED"
        assert rotated.action == "KEY_ROTATED"
        assert used.id < rotated.id
        assert used.actor == rotated.actor == "client"
        assert rotated.meta == {
            "rotation_count": 1,
            "key_last4": grant.rotated_raw_key[-4:],
        }

    async def test_failures_write_no_audit(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore, hasher: KeyHasher
    ) -> None:
        with pytest.raises(MissingKeyError):
            await lifecycle.access_and_rotate(None)
        with pytest.raises(InvalidKeyError):
            await lifecycle.access_and_rotate(hasher.generate_raw_key())
        assert await store.recent_audit_entries(10) == []

    async def test_concurrent_use_single_winner(
        self, lifecycle: KeyLifecycleManager, store: SQLiteCredentialStore
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")

        results = await asyncio.gather(
            lifecycle.access_and_rotate(created.raw_key_once),
            lifecycle.access_and_rotate(created.raw_key_once),
            return_exceptions=True,
        )

        grants = [r for r in results if isinstance(r, AccessGrant)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(grants) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidKeyError)

        key = await store.get_api_key(created.id)
        assert key is not None and key.rotation_count == 1
        assert (await _actions(store)).count("KEY_ROTATED") == 1

    async def test_lost_race_is_invalid_key(
        self,
        store: SQLiteCredentialStore,
        hasher: KeyHasher,
        gate: AuthenticationGate,
        audit: AuditSink,
        lifecycle: KeyLifecycleManager,
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        snapshot = await gate.authenticate_key(created.raw_key_once)
        await lifecycle.access_and_rotate(created.raw_key_once)

        # A second caller that authenticated before the first one rotated.
        stale_gate = AsyncMock(spec=AuthenticationGate)
        stale_gate.authenticate_key.return_value = snapshot
        racer = KeyLifecycleManager(store, hasher, stale_gate, audit)

        with pytest.raises(InvalidKeyError):
            await racer.access_and_rotate(created.raw_key_once)

    async def test_lost_race_to_revoke_is_not_active(
        self,
        store: SQLiteCredentialStore,
        hasher: KeyHasher,
        gate: AuthenticationGate,
        audit: AuditSink,
        lifecycle: KeyLifecycleManager,
    ) -> None:
        created = await lifecycle.create_key("svc", actor="admin")
        snapshot = await gate.authenticate_key(created.raw_key_once)
        await lifecycle.revoke_key(created.id, actor="admin")

        stale_gate = AsyncMock(spec=AuthenticationGate)
        stale_gate.authenticate_key.return_value = snapshot
        racer = KeyLifecycleManager(store, hasher, stale_gate, audit)

        with pytest.raises(KeyNotActiveError):
            await racer.access_and_rotate(created.raw_key_once)
        key = await store.get_api_key(created.id)
        assert key is not None and key.rotation_count == 0


class TestAuditFailure:
    async def test_operations_survive_audit_failure(
        self,
        store: SQLiteCredentialStore,
        hasher: KeyHasher,
        gate: AuthenticationGate,
    ) -> None:
        failures: list[int] = []
        sink = AuditSink(store, on_failure=lambda: failures.append(1))
        sink._store = AsyncMock(spec=SQLiteCredentialStore)
        sink._store.insert_audit_entry.side_effect = RuntimeError("disk full")
        manager = KeyLifecycleManager(store, hasher, gate, sink)

        created = await manager.create_key("svc", actor="admin")
        grant = await manager.access_and_rotate(created.raw_key_once)

        assert grant.api_key.rotation_count == 1
        assert sink.failure_count == 3
        assert sink.degraded is True
        assert len(failures) == 3
