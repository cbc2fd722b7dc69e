"""KeyShield authentication package.

Public API:
  - KeyHasher              — fingerprint / bcrypt hash / raw key generation
  - hash_password()        — operator password hashing
  - SessionManager         — HS256 session tokens
  - AuthenticationGate     — login, verify_session, authenticate_key

FastAPI dependencies live in keyshield.auth.dependencies.
"""

from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.hashing import KeyHasher, hash_password, verify_password
from keyshield.auth.sessions import Identity, SessionManager, SessionToken

__all__ = [
    "AuthenticationGate",
    "Identity",
    "KeyHasher",
    "SessionManager",
    "SessionToken",
    "hash_password",
    "verify_password",
]
