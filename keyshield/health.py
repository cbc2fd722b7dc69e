"""Health endpoint for KeyShield.

  GET /health — 503 before startup completes, 200 afterwards.

Response body (200):
    {
      "status": "ok" | "degraded",
      "service": "KeyShield Vault API",
      "time": "<ISO-8601 UTC>",
      "store": "ok" | "error",
      "audit": "ok" | "degraded",
      "audit_write_failures": 0
    }

"degraded" means the store health check failed or at least one audit write
has failed since startup.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from keyshield.audit.sink import AuditSink
from keyshield.constants import SERVICE_NAME
from keyshield.store.sqlite_store import SQLiteCredentialStore
from keyshield.utils.datetime import utc_now

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="KeyShield is starting up")

    store: SQLiteCredentialStore = request.app.state.store
    audit: AuditSink = request.app.state.audit

    store_ok = await store.health_check()
    healthy = store_ok and not audit.degraded

    return {
        "status": "ok" if healthy else "degraded",
        "service": SERVICE_NAME,
        "time": utc_now(),
        "store": "ok" if store_ok else "error",
        "audit": "degraded" if audit.degraded else "ok",
        "audit_write_failures": audit.failure_count,
    }
