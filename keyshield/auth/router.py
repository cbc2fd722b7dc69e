"""Operator login endpoint.

  POST /auth/login  {username, password} → {token, expires_in}
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from keyshield.auth.dependencies import get_gate
from keyshield.auth.gate import AuthenticationGate

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    """Both fields are optional at the schema level so a missing field is
    reported by the gate as a 400 ``{"error": ...}`` rather than a 422."""

    username: Optional[str] = None
    password: Optional[str] = None


@router.post("/login")
async def login(
    body: LoginRequest,
    gate: AuthenticationGate = Depends(get_gate),
) -> dict:
    session = await gate.login(body.username, body.password)
    return {"token": session.token, "expires_in": session.expires_in}
