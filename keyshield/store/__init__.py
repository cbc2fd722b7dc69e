"""KeyShield credential store package.

    from keyshield.store import SQLiteCredentialStore, ApiKey, KeyMaterial

Layout:
    models.py        — User, ApiKey, KeyMaterial, KeyStats
    sqlite_store.py  — SQLiteCredentialStore (aiosqlite, WAL mode, version guard)
"""

from keyshield.store.models import ApiKey, KeyMaterial, KeyStats, User
from keyshield.store.sqlite_store import SQLiteCredentialStore

__all__ = [
    "ApiKey",
    "KeyMaterial",
    "KeyStats",
    "User",
    "SQLiteCredentialStore",
]
