"""SQLiteCredentialStore — aiosqlite-backed persistence for users, API keys and audit.

The store is the only component that reads or writes the three tables.
Everything else goes through the methods below.

Features:
  - Long-lived connection: opened in initialize(), closed in close()
  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version=1; RuntimeError on mismatch
  - File permissions 0600 on every initialize()
  - Writes serialised by an asyncio.Lock, each committed before the lock is released
  - Rotation is one conditional UPDATE keyed on the presented fingerprint,
    so two callers presenting the same secret cannot both rotate it
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Optional

import aiosqlite

from keyshield.audit.models import AuditEntry
from keyshield.constants import MANUAL_REVOKE_REASON, STATUS_ACTIVE, STATUS_REVOKED
from keyshield.errors import FingerprintCollisionError
from keyshield.store.models import ApiKey, KeyMaterial, KeyStats, User
from keyshield.utils.datetime import utc_now
from keyshield.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    username        TEXT UNIQUE NOT NULL,
    password_hash   TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS api_keys (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    label               TEXT NOT NULL,
    status              TEXT NOT NULL CHECK(status IN ('ACTIVE', 'REVOKED')),
    key_hash            TEXT NOT NULL,
    key_fingerprint     TEXT NOT NULL UNIQUE,
    key_last4           TEXT NOT NULL,
    rotation_count      INTEGER NOT NULL DEFAULT 0 CHECK(rotation_count >= 0),
    created_at          TEXT NOT NULL,
    last_used_at        TEXT,
    last_rotated_at     TEXT,
    revoked_at          TEXT,
    revocation_reason   TEXT
);

CREATE INDEX IF NOT EXISTS idx_api_keys_status
    ON api_keys(status);

CREATE TABLE IF NOT EXISTS audit_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    actor           TEXT NOT NULL,
    action          TEXT NOT NULL,
    target_type     TEXT,
    target_id       INTEGER,
    ip              TEXT,
    meta            TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_logs_created_at
    ON audit_logs(created_at DESC);
"""

_SCHEMA_VERSION = 1

_API_KEY_COLUMNS = (
    "id, label, status, key_hash, key_fingerprint, key_last4, rotation_count, "
    "created_at, last_used_at, last_rotated_at, revoked_at, revocation_reason"
)


# ─── Row deserialisers ────────────────────────────────────────────────────────


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password_hash"],
        created_at=row["created_at"],
    )


def _row_to_api_key(row: aiosqlite.Row) -> ApiKey:
    return ApiKey(
        id=row["id"],
        label=row["label"],
        status=row["status"],
        key_hash=row["key_hash"],
        key_fingerprint=row["key_fingerprint"],
        key_last4=row["key_last4"],
        rotation_count=row["rotation_count"],
        created_at=row["created_at"],
        last_used_at=row["last_used_at"],
        last_rotated_at=row["last_rotated_at"],
        revoked_at=row["revoked_at"],
        revocation_reason=row["revocation_reason"],
    )


def _row_to_audit_entry(row: aiosqlite.Row) -> AuditEntry:
    """meta: JSON string → dict. A row with unreadable meta yields {}."""
    meta_raw: Optional[str] = row["meta"]
    try:
        meta: dict[str, Any] = json.loads(meta_raw) if meta_raw else {}
    except ValueError:
        meta = {}
    return AuditEntry(
        id=row["id"],
        actor=row["actor"],
        action=row["action"],
        target_type=row["target_type"],
        target_id=row["target_id"],
        ip=row["ip"],
        meta=meta,
        created_at=row["created_at"],
    )


# ─── SQLiteCredentialStore ────────────────────────────────────────────────────


class SQLiteCredentialStore:
    """Async SQLite credential store.

    Usage:
        store = SQLiteCredentialStore("~/.keyshield/keyshield.db")
        await store.initialize()   # RuntimeError on schema version mismatch
        key = await store.insert_api_key("demo", material)
        await store.close()
    """

    def __init__(self, db_path: str = "~/.keyshield/keyshield.db") -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL, and create or verify the schema.

        PRAGMA user_version:
          0     → fresh database, schema created, version set to 1
          1     → compatible, nothing to do
          other → RuntimeError; the lifespan refuses startup

        Raises:
            RuntimeError: On an incompatible schema version.
        """
        parent_dir = os.path.dirname(self._db_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._db.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._db.executescript(_CREATE_SCHEMA_SQL)
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._db.commit()
            logger.info(
                "credential_store_schema_created",
                db_path=self._db_path,
                schema_version=_SCHEMA_VERSION,
            )
        elif current_version == _SCHEMA_VERSION:
            logger.info(
                "credential_store_schema_ok",
                db_path=self._db_path,
                schema_version=current_version,
            )
        else:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported credential store schema version: {current_version}. "
                f"Expected {_SCHEMA_VERSION}; move {self._db_path} aside to start fresh."
            )

        os.chmod(self._db_path, 0o600)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("credential_store_closed", db_path=self._db_path)

    async def health_check(self) -> bool:
        """True if the connection is open and answers a trivial query."""
        if self._db is None:
            return False
        try:
            await self._db.execute("SELECT 1")
            return True
        except Exception as exc:
            logger.warning("credential_store_health_check_failed", error=str(exc))
            return False

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Credential store not initialized — call initialize() first")
        return self._db

    # ── Users ─────────────────────────────────────────────────────────────────

    async def get_user_by_username(self, username: str) -> Optional[User]:
        cursor = await self._conn().execute(
            "SELECT id, username, password_hash, created_at FROM users WHERE username = ?",
            (username,),
        )
        row = await cursor.fetchone()
        return _row_to_user(row) if row is not None else None

    async def insert_user(self, username: str, password_hash: str) -> User:
        """Insert an operator account.

        Raises:
            aiosqlite.IntegrityError: If the username already exists.
        """
        now = utc_now()
        async with self._write_lock:
            db = self._conn()
            cursor = await db.execute(
                "INSERT INTO users (username, password_hash, created_at) VALUES (?, ?, ?)",
                (username, password_hash, now),
            )
            await db.commit()
        return User(
            id=cursor.lastrowid,  # type: ignore[arg-type]
            username=username,
            password_hash=password_hash,
            created_at=now,
        )

    async def seed_admin(self, username: str, password_hash: str) -> bool:
        """Create the built-in operator account if it does not exist.

        Returns:
            True if the account was created, False if it was already present.
        """
        if await self.get_user_by_username(username) is not None:
            return False
        await self.insert_user(username, password_hash)
        logger.info("admin_user_seeded", username=username)
        return True

    # ── API keys ──────────────────────────────────────────────────────────────

    async def insert_api_key(self, label: str, material: KeyMaterial) -> ApiKey:
        """Insert a new ACTIVE key with rotation_count=0.

        Raises:
            FingerprintCollisionError: key_fingerprint already present.
        """
        now = utc_now()
        async with self._write_lock:
            db = self._conn()
            try:
                cursor = await db.execute(
                    "INSERT INTO api_keys "
                    "(label, status, key_hash, key_fingerprint, key_last4, rotation_count, created_at) "
                    "VALUES (?, ?, ?, ?, ?, 0, ?)",
                    (label, STATUS_ACTIVE, material.key_hash, material.fingerprint, material.last4, now),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                await db.rollback()
                logger.error("api_key_fingerprint_collision", operation="insert", error=str(exc))
                raise FingerprintCollisionError() from exc

        return ApiKey(
            id=cursor.lastrowid,  # type: ignore[arg-type]
            label=label,
            status=STATUS_ACTIVE,
            key_hash=material.key_hash,
            key_fingerprint=material.fingerprint,
            key_last4=material.last4,
            rotation_count=0,
            created_at=now,
        )

    async def get_api_key(self, key_id: int) -> Optional[ApiKey]:
        cursor = await self._conn().execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE id = ?",
            (key_id,),
        )
        row = await cursor.fetchone()
        return _row_to_api_key(row) if row is not None else None

    async def get_api_key_by_fingerprint(self, fingerprint: str) -> Optional[ApiKey]:
        """Indexed lookup on the UNIQUE key_fingerprint column. Any status."""
        cursor = await self._conn().execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE key_fingerprint = ?",
            (fingerprint,),
        )
        row = await cursor.fetchone()
        return _row_to_api_key(row) if row is not None else None

    async def list_api_keys(self) -> list[ApiKey]:
        """All keys, newest id first."""
        cursor = await self._conn().execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys ORDER BY id DESC"
        )
        rows = await cursor.fetchall()
        return [_row_to_api_key(row) for row in rows]

    async def rotate_key_secret(
        self,
        key_id: int,
        presented_fingerprint: str,
        material: KeyMaterial,
    ) -> Optional[ApiKey]:
        """Claim a use of the key and install new secret material, atomically.

        The UPDATE only matches while the row is ACTIVE and still carries the
        fingerprint the caller authenticated with. A concurrent caller that
        already rotated (or revoked) the key leaves zero rows to match.

        Sets last_used_at and last_rotated_at to the same instant and
        increments rotation_count by exactly one.

        Returns:
            The updated ApiKey, or None when no row matched.

        Raises:
            FingerprintCollisionError: The new fingerprint is already in use.
        """
        now = utc_now()
        async with self._write_lock:
            db = self._conn()
            try:
                cursor = await db.execute(
                    "UPDATE api_keys SET "
                    "key_hash = ?, key_fingerprint = ?, key_last4 = ?, "
                    "rotation_count = rotation_count + 1, "
                    "last_used_at = ?, last_rotated_at = ? "
                    "WHERE id = ? AND key_fingerprint = ? AND status = ?",
                    (
                        material.key_hash,
                        material.fingerprint,
                        material.last4,
                        now,
                        now,
                        key_id,
                        presented_fingerprint,
                        STATUS_ACTIVE,
                    ),
                )
                await db.commit()
            except aiosqlite.IntegrityError as exc:
                await db.rollback()
                logger.error(
                    "api_key_fingerprint_collision",
                    operation="rotate",
                    key_id=key_id,
                    error=str(exc),
                )
                raise FingerprintCollisionError() from exc

            if cursor.rowcount == 0:
                return None

        return await self.get_api_key(key_id)

    async def revoke_api_key(
        self,
        key_id: int,
        reason: str = MANUAL_REVOKE_REASON,
    ) -> bool:
        """Move an ACTIVE key to REVOKED.

        Returns:
            True if a row changed; False if the key is absent or already revoked.
        """
        async with self._write_lock:
            db = self._conn()
            cursor = await db.execute(
                "UPDATE api_keys SET status = ?, revoked_at = ?, revocation_reason = ? "
                "WHERE id = ? AND status = ?",
                (STATUS_REVOKED, utc_now(), reason, key_id, STATUS_ACTIVE),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def key_stats(self) -> KeyStats:
        cursor = await self._conn().execute(
            "SELECT "
            "COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0), "
            "COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0), "
            "COALESCE(SUM(rotation_count), 0) "
            "FROM api_keys",
            (STATUS_ACTIVE, STATUS_REVOKED),
        )
        row = await cursor.fetchone()
        return KeyStats(active=row[0], revoked=row[1], rotation_sum=row[2])

    # ── Audit log ─────────────────────────────────────────────────────────────

    async def insert_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        """Append one audit row. The returned entry carries its id."""
        async with self._write_lock:
            db = self._conn()
            cursor = await db.execute(
                "INSERT INTO audit_logs "
                "(actor, action, target_type, target_id, ip, meta, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.actor,
                    entry.action,
                    entry.target_type,
                    entry.target_id,
                    entry.ip or "",
                    json.dumps(entry.meta or {}),
                    entry.created_at,
                ),
            )
            await db.commit()
        entry.id = cursor.lastrowid
        return entry

    async def recent_audit_entries(self, limit: int) -> list[AuditEntry]:
        """Newest first."""
        cursor = await self._conn().execute(
            "SELECT id, actor, action, target_type, target_id, ip, meta, created_at "
            "FROM audit_logs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [_row_to_audit_entry(row) for row in rows]
