"""
Retention sweeper: purges records that have outlived the trash window.

Run from the CLI or a scheduler as the system actor. A sweep started by a
user goes through :meth:`RetentionSweeper.trigger`, which requires the
cleanup capability.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..access_control import (
    SOFT_DELETABLE,
    SYSTEM_ACTOR,
    UNSCOPED,
    Action,
    Actor,
    EntityType,
    require_permission,
)
from ..audit_trail import AuditAction, AuditLogger
from ..config import VivariumConfig, get_config
from ..database import new_id, utcnow
from ..exceptions import NotFoundError
from .exceptions import SoftDeleteError
from .models import CleanupReport, RetentionPolicy
from .repository import ScopedRepository

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """
    Permanently delete soft-deleted rows older than the retention window.

    Each expired row goes through the same conditional delete as a manual
    purge, gets its own PERMANENT_DELETE audit entry, and the sweep ends
    with one CLEANUP summary entry. A row restored or purged between the
    scan and its delete is skipped, so a rerun is always safe.
    """

    def __init__(
        self,
        session: Session,
        audit_logger: AuditLogger,
        repositories: Mapping[EntityType, ScopedRepository[Any]],
        config: Optional[VivariumConfig] = None,
    ):
        self.session = session
        self.audit_logger = audit_logger
        self.repositories = repositories
        self.config = config or get_config()
        self.policy = RetentionPolicy(retention_days=self.config.retention_days)

    def _repositories(self) -> List[ScopedRepository[Any]]:
        return [
            self.repositories[entity_type]
            for entity_type in SOFT_DELETABLE
            if entity_type in self.repositories
        ]

    def find_expired(self, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """IDs eligible for purge per entity type, without deleting them."""
        cutoff = self.policy.cutoff(now)
        return {
            repo.entity_type.value: repo.list_expired(cutoff)
            for repo in self._repositories()
        }

    def cleanup(
        self, now: Optional[datetime] = None, actor: Actor = SYSTEM_ACTOR
    ) -> Dict[str, int]:
        """
        Purge every expired row.

        Args:
            now: Reference time, defaults to the current UTC time
            actor: Who triggered the sweep, recorded in the audit log

        Returns:
            Purged row count per entity type
        """
        return self.run(now, actor).purged

    @require_permission(Action.CLEANUP, EntityType.TRASH)
    def trigger(self, actor: Actor, now: Optional[datetime] = None) -> CleanupReport:
        """Run the sweep on behalf of an Admin or Success Manager."""
        return self.run(now, actor)

    def run(
        self, now: Optional[datetime] = None, actor: Actor = SYSTEM_ACTOR
    ) -> CleanupReport:
        """Purge every expired row and return the full report."""
        now = now or utcnow()
        report = CleanupReport(started_at=now, cutoff=self.policy.cutoff(now))

        for repo in self._repositories():
            table = repo.entity_type.value
            report.purged[table] = 0
            for entity_id in repo.list_expired(report.cutoff):
                if self._purge_one(repo, entity_id, report.cutoff, actor):
                    report.add(table)

        logger.info(
            f"Retention sweep removed {report.total} records older than "
            f"{report.cutoff.isoformat()}"
        )
        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.CLEANUP,
            table_name=EntityType.TRASH.value,
            record_id=new_id(),
            changes={
                "cutoff": report.cutoff,
                "retention_days": self.policy.retention_days,
                "purged": report.purged,
                "total": report.total,
            },
        )
        return report

    def _purge_one(
        self,
        repo: ScopedRepository[Any],
        entity_id: str,
        cutoff: datetime,
        actor: Actor,
    ) -> bool:
        table = repo.entity_type.value
        try:
            snapshot = repo.permanent_delete(entity_id, UNSCOPED, deleted_before=cutoff)
        except (NotFoundError, SoftDeleteError) as e:
            # Restored or purged since the scan
            self.session.rollback()
            logger.debug(f"Skipping {table} {entity_id}: {e.message}")
            return False
        self.session.commit()

        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.PERMANENT_DELETE,
            table_name=table,
            record_id=entity_id,
            changes=snapshot,
            company_id=snapshot.get("company_id"),
        )
        return True
