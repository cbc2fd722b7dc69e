"""Unit tests for keyshield/metrics.py — gauges recomputed on every scrape."""

from __future__ import annotations

from keyshield.auth.hashing import KeyHasher
from keyshield.metrics import KeyMetrics
from keyshield.store.sqlite_store import SQLiteCredentialStore


def _sample(metrics: KeyMetrics, name: str) -> float:
    value = metrics.registry.get_sample_value(name)
    assert value is not None, f"metric {name} not exported"
    return value


class TestKeyMetrics:
    async def test_empty_store(self, store: SQLiteCredentialStore) -> None:
        metrics = KeyMetrics(store)
        await metrics.refresh()
        assert _sample(metrics, "active_keys_total") == 0
        assert _sample(metrics, "revoked_keys_total") == 0
        assert _sample(metrics, "key_rotations_sum") == 0
        assert _sample(metrics, "audit_write_failures_total") == 0

    async def test_reflects_store(self, store: SQLiteCredentialStore, hasher: KeyHasher) -> None:
        a = await hasher.new_material()
        key_a = await store.insert_api_key("a", a)
        key_b = await store.insert_api_key("b", await hasher.new_material())
        await store.rotate_key_secret(key_a.id, a.fingerprint, await hasher.new_material())
        await store.revoke_api_key(key_b.id)

        metrics = KeyMetrics(store)
        body = (await metrics.render()).decode()

        assert _sample(metrics, "active_keys_total") == 1
        assert _sample(metrics, "revoked_keys_total") == 1
        assert _sample(metrics, "key_rotations_sum") == 1
        assert "active_keys_total 1.0" in body

    async def test_audit_failure_counter(self, store: SQLiteCredentialStore) -> None:
        metrics = KeyMetrics(store)
        metrics.record_audit_failure()
        metrics.record_audit_failure()
        assert _sample(metrics, "audit_write_failures_total") == 2

    async def test_registries_are_independent(self, store: SQLiteCredentialStore) -> None:
        first = KeyMetrics(store)
        second = KeyMetrics(store)
        first.record_audit_failure()
        assert _sample(second, "audit_write_failures_total") == 0

    async def test_default_collectors_present(self, store: SQLiteCredentialStore) -> None:
        body = (await KeyMetrics(store).render()).decode()
        assert "python_info" in body
