"""KeyShield API key lifecycle package.

Public API:
  - KeyLifecycleManager.create_key()         — issue a key, raw value returned once
  - KeyLifecycleManager.list_keys()          — metadata, newest first
  - KeyLifecycleManager.revoke_key()         — ACTIVE → REVOKED (no-op if already revoked)
  - KeyLifecycleManager.access_and_rotate()  — machine access + rotate-on-use
"""

from keyshield.keys.lifecycle import AccessGrant, CreatedKey, KeyLifecycleManager

__all__ = ["AccessGrant", "CreatedKey", "KeyLifecycleManager"]
