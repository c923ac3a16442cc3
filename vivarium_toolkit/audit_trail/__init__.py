"""
Audit Trail Module - append-only audit logging.

Records every create, update, delete, restore, purge and QR workflow action
and serves role-gated reads of the log.
"""

from .logger import AuditLogger
from .models import AuditAction, AuditLogEntry, AuditQuery
from .storage import AuditLogRecord, AuditStorage, SQLAuditStorage

__all__ = [
    # Logger
    "AuditLogger",
    # Models
    "AuditAction",
    "AuditLogEntry",
    "AuditQuery",
    # Storage
    "AuditLogRecord",
    "AuditStorage",
    "SQLAuditStorage",
]
