"""Operator endpoints for key management and audit review.

  POST   /admin/keys            — issue a key (raw value shown once)
  GET    /admin/keys            — list key metadata, newest first
  DELETE /admin/keys/{key_id}   — revoke a key
  GET    /admin/audit?limit=50  — newest audit entries

Every route depends on require_session(). The acting operator recorded in
the audit log is always the session subject, never a body field.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from keyshield.audit.sink import AuditSink
from keyshield.auth.dependencies import client_ip, get_lifecycle, require_session
from keyshield.auth.sessions import Identity
from keyshield.constants import DEFAULT_AUDIT_LIMIT
from keyshield.keys.lifecycle import KeyLifecycleManager
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_session)],
)


class CreateKeyRequest(BaseModel):
    label: Optional[str] = None


@router.post("/keys")
async def create_key(
    request: Request,
    body: Optional[CreateKeyRequest] = None,
    identity: Identity = Depends(require_session),
    lifecycle: KeyLifecycleManager = Depends(get_lifecycle),
) -> dict:
    """Returns {id, label, status, key_last4, raw_key_once}."""
    label = body.label if body is not None else None
    created = await lifecycle.create_key(label, actor=identity.username, ip=client_ip(request))
    return created.to_response()


@router.get("/keys")
async def list_keys(
    lifecycle: KeyLifecycleManager = Depends(get_lifecycle),
) -> list[dict]:
    keys = await lifecycle.list_keys()
    return [k.to_public() for k in keys]


@router.delete("/keys/{key_id}")
async def revoke_key(
    key_id: int,
    request: Request,
    identity: Identity = Depends(require_session),
    lifecycle: KeyLifecycleManager = Depends(get_lifecycle),
) -> dict:
    await lifecycle.revoke_key(key_id, actor=identity.username, ip=client_ip(request))
    return {"ok": True}


@router.get("/audit")
async def list_audit(
    request: Request,
    limit: int = Query(DEFAULT_AUDIT_LIMIT),
) -> list[dict]:
    audit: AuditSink = request.app.state.audit
    entries = await audit.recent(limit)
    return [e.to_dict() for e in entries]
