"""Machine access endpoint.

  POST /client/access  (x-api-key: <raw key>)
    → {access: "granted", asset, rotated_key_once}

The presented key is consumed: the response carries its replacement and the
presented value never authenticates again.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from keyshield.auth.dependencies import client_ip, get_lifecycle
from keyshield.constants import API_KEY_HEADER
from keyshield.keys.lifecycle import KeyLifecycleManager

router = APIRouter(prefix="/client", tags=["client"])


@router.post("/access")
async def access(
    request: Request,
    lifecycle: KeyLifecycleManager = Depends(get_lifecycle),
) -> dict:
    raw_key = request.headers.get(API_KEY_HEADER)
    grant = await lifecycle.access_and_rotate(raw_key, ip=client_ip(request))
    return grant.to_response()
