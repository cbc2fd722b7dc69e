"""KeyShield audit package.

    from keyshield.audit import AuditSink, AuditEntry, CreateKeyMeta

Layout:
    models.py — AuditAction, per-action meta dataclasses, AuditEntry
    sink.py   — AuditSink (best-effort writes, newest-first reads)
"""

from keyshield.audit.models import (
    AuditAction,
    AuditEntry,
    AuditMeta,
    CreateKeyMeta,
    KeyRotatedMeta,
    KeyUsedMeta,
    RevokeKeyMeta,
)
from keyshield.audit.sink import AuditSink

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditMeta",
    "CreateKeyMeta",
    "KeyRotatedMeta",
    "KeyUsedMeta",
    "RevokeKeyMeta",
    "AuditSink",
]
