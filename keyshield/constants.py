"""Shared constants for KeyShield.

Numeric limits and fixed identifiers used across modules live here.
"""

# ─── Key material ────────────────────────────────────────────────────────────

# Random bytes per raw API key. 32 bytes = 256 bits, hex encoded to 64 chars.
RAW_KEY_BYTES: int = 32

# bcrypt cost for API key hashes. Each successful access re-hashes once.
DEFAULT_KEY_BCRYPT_ROUNDS: int = 12

# bcrypt cost for operator passwords.
DEFAULT_PASSWORD_BCRYPT_ROUNDS: int = 10

# Valid bcrypt cost range (bcrypt library limits).
MIN_BCRYPT_ROUNDS: int = 4
MAX_BCRYPT_ROUNDS: int = 31

# ─── Sessions ────────────────────────────────────────────────────────────────

SESSION_TTL_SECONDS: int = 2 * 60 * 60
SESSION_ALGORITHM: str = "HS256"
SESSION_TOKEN_TYPE: str = "session"

# ─── API key lifecycle ───────────────────────────────────────────────────────

STATUS_ACTIVE: str = "ACTIVE"
STATUS_REVOKED: str = "REVOKED"

DEFAULT_KEY_LABEL: str = "default"
MAX_LABEL_LENGTH: int = 200

MANUAL_REVOKE_REASON: str = "MANUAL_REVOKE"

# Header carrying the raw key on the machine-access path.
API_KEY_HEADER: str = "x-api-key"

# Resource handed out on a successful machine access.
PROTECTED_ASSET: dict[str, str] = {
    "id": "asset-001",
    "message": "Sensitive asset accessed successfully.",
}

# ─── Audit ───────────────────────────────────────────────────────────────────

CLIENT_ACTOR: str = "client"
AUDIT_TARGET_API_KEY: str = "api_key"

DEFAULT_AUDIT_LIMIT: int = 50
MAX_AUDIT_LIMIT: int = 500

SERVICE_NAME: str = "KeyShield Vault API"
