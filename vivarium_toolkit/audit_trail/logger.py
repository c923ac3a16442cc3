"""
Core audit logger implementation.

Provides the AuditLogger class that appends one entry per successful
mutation and serves role-gated reads of the log.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from ..access_control import UNSCOPED, Action, Actor, EntityType, authorize, resolve_scope
from ..config import VivariumConfig, get_config
from ..database import new_id, utcnow
from .models import AuditAction, AuditLogEntry, AuditQuery, to_json_safe
from .storage import AuditStorage

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only audit log writer.

    Entries are written after the entity mutation they describe has been
    committed. A failing audit write is logged and swallowed: the already
    committed mutation is never rolled back because of it, and callers get
    ``None`` instead of an entry.

    Example:
        >>> audit = AuditLogger(SQLAuditStorage(session))
        >>> audit.record(
        ...     actor_id=user.id,
        ...     action=AuditAction.SOFT_DELETE,
        ...     table_name="cages",
        ...     record_id=cage.id,
        ...     changes={"deleted_at": "2024-05-01T10:00:00"},
        ... )
    """

    def __init__(self, storage: AuditStorage, config: Optional[VivariumConfig] = None):
        """
        Initialize the audit logger.

        Args:
            storage: Storage backend for audit entries
            config: Toolkit configuration, defaults to the global one
        """
        self.storage = storage
        self.config = config or get_config()

    def record(
        self,
        actor_id: Optional[str],
        action: Union[str, AuditAction],
        table_name: str,
        record_id: str,
        changes: Optional[Dict[str, Any]] = None,
        company_id: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Append an audit log entry.

        Args:
            actor_id: User who performed the action
            action: Action performed
            table_name: Table of the affected record
            record_id: ID of the affected record
            changes: Snapshot or diff payload
            company_id: Tenant that owns the affected record

        Returns:
            The stored entry, or None when auditing is disabled or failed
        """
        if not self.config.audit_enabled:
            return None

        try:
            entry = AuditLogEntry(
                id=new_id(),
                timestamp=utcnow(),
                user_id=actor_id,
                action=AuditAction(action),
                table_name=table_name,
                record_id=record_id,
                company_id=company_id,
                changes=to_json_safe(changes),
            )
            self.storage.store(entry)
        except (SQLAlchemyError, ValueError, TypeError) as e:
            # Fail open: the primary operation has already been committed
            logger.exception(
                f"Failed to write audit entry {action} for {table_name}:{record_id}: {e}"
            )
            session = getattr(self.storage, "session", None)
            if session is not None:
                session.rollback()
            return None

        logger.debug(entry.to_log_format())
        return entry

    def list_logs(
        self,
        actor: Actor,
        query: Optional[AuditQuery] = None,
        company_override: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        """
        Read the audit log.

        Admins see every company (or the one they have entered); Success
        Managers only see entries belonging to their own company.

        Args:
            actor: User requesting the log
            query: Optional filters
            company_override: Company an Admin has chosen to view

        Returns:
            Matching entries, newest first by default

        Raises:
            ForbiddenError: Actor may not read the audit log
            NoCompanyAssignedError: Success Manager without a company
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW_AUDIT, EntityType.AUDIT_LOG)
        query = query or AuditQuery(limit=self.config.audit_query_limit)

        if scope is not UNSCOPED:
            query = query.model_copy(update={"company_id": scope})

        return self.storage.query(query)

    def entity_history(self, table_name: str, record_id: str) -> List[AuditLogEntry]:
        """
        Get the chronological history of one record.

        Visibility of the record itself must be checked by the caller.
        """
        query = AuditQuery(
            table_name=table_name,
            record_id=record_id,
            sort_desc=False,
            limit=1000,
        )
        return self.storage.query(query)
