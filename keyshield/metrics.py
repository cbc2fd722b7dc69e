"""Prometheus metrics for KeyShield.

Pull model: GET /metrics renders the app's own CollectorRegistry. The key
gauges are recomputed from the store on every scrape, so they always match
the table rather than an in-process counter that drifts across restarts.

    active_keys_total            gauge    keys with status ACTIVE
    revoked_keys_total           gauge    keys with status REVOKED
    key_rotations_sum            gauge    sum of rotation_count over all keys
    audit_write_failures_total   counter  audit writes that failed since start
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from keyshield.store.sqlite_store import SQLiteCredentialStore
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["metrics"])


class KeyMetrics:
    """Metric families bound to a private registry (one per app instance)."""

    def __init__(self, store: SQLiteCredentialStore) -> None:
        self._store = store
        self.registry = CollectorRegistry()

        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)

        self.active_keys = Gauge(
            "active_keys_total", "API keys currently ACTIVE", registry=self.registry
        )
        self.revoked_keys = Gauge(
            "revoked_keys_total", "API keys currently REVOKED", registry=self.registry
        )
        self.rotations = Gauge(
            "key_rotations_sum", "Sum of rotation_count over all API keys", registry=self.registry
        )
        self.audit_write_failures = Counter(
            "audit_write_failures",
            "Audit log writes that failed",
            registry=self.registry,
        )

    def record_audit_failure(self) -> None:
        self.audit_write_failures.inc()

    async def refresh(self) -> None:
        stats = await self._store.key_stats()
        self.active_keys.set(stats.active)
        self.revoked_keys.set(stats.revoked)
        self.rotations.set(stats.rotation_sum)

    async def render(self) -> bytes:
        await self.refresh()
        return generate_latest(self.registry)


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    key_metrics: KeyMetrics = request.app.state.metrics
    data = await key_metrics.render()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
