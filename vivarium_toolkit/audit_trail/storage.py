"""
Storage backends for audit log data.

Audit rows are append-only: the ORM refuses to update or delete them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Index, String, asc, desc, event, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..database import Base, new_id, utcnow
from .models import AuditLogEntry, AuditQuery


class AuditLogRecord(Base):
    """SQLAlchemy model for audit log entries."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True
    )
    changes: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_target", "table_name", "record_id"),
        Index("idx_audit_company_timestamp", "company_id", "timestamp"),
    )


def prevent_audit_mutation(mapper: Any, connection: Any, target: Any) -> None:
    """Reject updates and deletes of audit rows."""
    raise RuntimeError(
        f"Audit log entry {target.id} is immutable and cannot be changed or removed"
    )


event.listen(AuditLogRecord, "before_update", prevent_audit_mutation)
event.listen(AuditLogRecord, "before_delete", prevent_audit_mutation)


class AuditStorage(ABC):
    """Abstract base class for audit log storage backends."""

    @abstractmethod
    def store(self, entry: AuditLogEntry) -> None:
        """
        Store an audit entry.

        Args:
            entry: Audit entry to store
        """

    @abstractmethod
    def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        """
        Query audit entries.

        Args:
            query: Query parameters

        Returns:
            List of matching audit entries
        """


class SQLAuditStorage(AuditStorage):
    """SQL database storage backend sharing the request's session."""

    def __init__(self, session: Session):
        self.session = session

    def _entry_to_db(self, entry: AuditLogEntry) -> AuditLogRecord:
        return AuditLogRecord(
            id=entry.id,
            timestamp=entry.timestamp,
            user_id=entry.user_id,
            action=entry.action,
            table_name=entry.table_name,
            record_id=entry.record_id,
            company_id=entry.company_id,
            changes=entry.changes,
        )

    def _db_to_entry(self, record: AuditLogRecord) -> AuditLogEntry:
        return AuditLogEntry(
            id=record.id,
            timestamp=record.timestamp,
            user_id=record.user_id,
            action=record.action,
            table_name=record.table_name,
            record_id=record.record_id,
            company_id=record.company_id,
            changes=record.changes,
        )

    def store(self, entry: AuditLogEntry) -> None:
        """Insert an entry and commit it on its own."""
        self.session.add(self._entry_to_db(entry))
        self.session.commit()

    def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        """Query audit entries with filters."""
        stmt = select(AuditLogRecord)

        if query.start_date:
            stmt = stmt.where(AuditLogRecord.timestamp >= query.start_date)
        if query.end_date:
            stmt = stmt.where(AuditLogRecord.timestamp <= query.end_date)
        if query.table_name:
            stmt = stmt.where(AuditLogRecord.table_name == query.table_name)
        if query.record_id:
            stmt = stmt.where(AuditLogRecord.record_id == query.record_id)
        if query.company_id:
            stmt = stmt.where(AuditLogRecord.company_id == query.company_id)
        if query.user_ids:
            stmt = stmt.where(AuditLogRecord.user_id.in_(query.user_ids))
        if query.actions:
            stmt = stmt.where(AuditLogRecord.action.in_(query.actions))

        order = desc if query.sort_desc else asc
        stmt = stmt.order_by(order(AuditLogRecord.timestamp), order(AuditLogRecord.id))
        stmt = stmt.limit(query.limit).offset(query.offset)

        return [self._db_to_entry(r) for r in self.session.scalars(stmt).all()]
