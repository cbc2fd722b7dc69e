"""AuditSink — best-effort writer and reader for the audit log.

record() never raises. A failed write is logged as ``audit_write_failed``,
counted in ``failure_count`` (surfaced by /health as "degraded") and
reported through the optional ``on_failure`` callback (wired to the
``audit_write_failures_total`` metric). The operation that triggered the
audit entry is never rolled back.

record() is awaited inline rather than scheduled with create_task so
KEY_USED is always persisted before KEY_ROTATED.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from keyshield.audit.models import AuditEntry, AuditMeta, meta_to_dict
from keyshield.constants import AUDIT_TARGET_API_KEY, DEFAULT_AUDIT_LIMIT, MAX_AUDIT_LIMIT
from keyshield.utils.datetime import utc_now
from keyshield.utils.logger import get_logger

if TYPE_CHECKING:
    from keyshield.store.sqlite_store import SQLiteCredentialStore

logger = get_logger(__name__)


class AuditSink:
    def __init__(
        self,
        store: SQLiteCredentialStore,
        on_failure: Optional[Callable[[], None]] = None,
    ) -> None:
        self._store = store
        self._on_failure = on_failure
        self.failure_count: int = 0

    @property
    def degraded(self) -> bool:
        return self.failure_count > 0

    async def record(
        self,
        actor: str,
        meta: AuditMeta,
        target_id: Optional[int] = None,
        ip: Optional[str] = None,
        target_type: Optional[str] = AUDIT_TARGET_API_KEY,
    ) -> Optional[AuditEntry]:
        """Append one entry; the action comes from the meta type.

        Returns:
            The stored entry, or None if the write failed.
        """
        entry = AuditEntry(
            actor=actor,
            action=meta.ACTION,
            created_at=utc_now(),
            target_type=target_type,
            target_id=target_id,
            ip=ip,
            meta=meta_to_dict(meta),
        )
        try:
            return await self._store.insert_audit_entry(entry)
        except Exception as exc:
            self.failure_count += 1
            logger.error(
                "audit_write_failed",
                action=entry.action,
                actor=actor,
                target_id=target_id,
                error=str(exc),
                error_type=type(exc).__name__,
                failure_count=self.failure_count,
            )
            if self._on_failure is not None:
                self._on_failure()
            return None

    async def recent(self, limit: int = DEFAULT_AUDIT_LIMIT) -> list[AuditEntry]:
        """Newest first. limit is clamped to 1..MAX_AUDIT_LIMIT."""
        limit = max(1, min(limit, MAX_AUDIT_LIMIT))
        return await self._store.recent_audit_entries(limit)
