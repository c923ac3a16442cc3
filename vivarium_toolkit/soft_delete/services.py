"""
Service layer for soft delete operations.

Provides the trash policy: who may delete, restore and purge which entity
types, and the read model of the trash with purge countdowns.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..access_control import (
    Action,
    Actor,
    EntityType,
    authorize,
    resolve_scope,
)
from ..audit_trail import AuditAction, AuditLogger
from ..config import VivariumConfig, get_config
from ..exceptions import ForbiddenError, NotFoundError, RequestValidationError
from .exceptions import SoftDeleteError
from .models import BatchDeleteRequest, BatchDeleteResult, RetentionPolicy, TrashItem
from .repository import ScopedRepository

logger = logging.getLogger(__name__)


class SoftDeleteService:
    """
    Service for moving records in and out of the trash.

    Each operation resolves the caller's company scope, checks the capability
    table, performs one conditional statement through the entity's
    repository, commits, and only then writes the audit entry.
    """

    def __init__(
        self,
        session: Session,
        audit_logger: AuditLogger,
        repositories: Mapping[EntityType, ScopedRepository[Any]],
        config: Optional[VivariumConfig] = None,
    ):
        """
        Initialize the soft delete service.

        Args:
            session: Request-scoped database session
            audit_logger: Audit log writer
            repositories: Repository per soft-deletable entity type
            config: Toolkit configuration, defaults to the global one
        """
        self.session = session
        self.audit_logger = audit_logger
        self.repositories = repositories
        self.config = config or get_config()
        self.policy = RetentionPolicy(retention_days=self.config.retention_days)

    def repository(self, entity_type: EntityType) -> ScopedRepository[Any]:
        try:
            return self.repositories[entity_type]
        except KeyError:
            raise NotFoundError(entity_type.label) from None

    def soft_delete(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move a record to the trash.

        Args:
            actor: User performing the deletion
            entity_type: Type of the record
            entity_id: Record to delete
            company_override: Company an Admin has entered

        Returns:
            The deleted record

        Raises:
            ForbiddenError: Role may not delete this type, or a user is
                deleting their own account
            NotFoundError: Record missing or out of scope
            AlreadyDeletedException: Record is already in the trash
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.SOFT_DELETE, entity_type)
        if entity_type == EntityType.USER and entity_id == actor.id:
            raise ForbiddenError("You cannot delete your own account")

        instance = self.repository(entity_type).soft_delete(entity_id, actor.id, scope)
        self.session.commit()

        logger.info(f"{entity_type.label} {entity_id} moved to trash by {actor.id}")
        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.SOFT_DELETE,
            table_name=entity_type.value,
            record_id=entity_id,
            changes={
                "deleted_at": instance.deleted_at,
                "deleted_by": instance.deleted_by,
            },
            company_id=instance.company_id,
        )
        return instance.to_dict()

    def restore(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Bring a record back from the trash.

        Raises:
            ForbiddenError: Role may not restore this type
            NotFoundError: Record missing or out of scope
            NotDeletedException: Record is not in the trash
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.RESTORE, entity_type)

        instance = self.repository(entity_type).restore(entity_id, scope)
        self.session.commit()

        logger.info(f"{entity_type.label} {entity_id} restored by {actor.id}")
        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.RESTORE,
            table_name=entity_type.value,
            record_id=entity_id,
            changes={"deleted_at": None, "deleted_by": None},
            company_id=instance.company_id,
        )
        return instance.to_dict()

    def permanent_delete(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Irreversibly purge a record that is already in the trash.

        Returns:
            Snapshot of the purged record

        Raises:
            ForbiddenError: Role may not purge this type
            NotFoundError: Record missing or out of scope
            NotDeletedException: Record is active
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.PERMANENT_DELETE, entity_type)
        return self._purge(actor, entity_type, entity_id, scope)

    def _purge(
        self, actor: Actor, entity_type: EntityType, entity_id: str, scope: Any
    ) -> Dict[str, Any]:
        snapshot = self.repository(entity_type).permanent_delete(entity_id, scope)
        self.session.commit()

        logger.warning(
            f"{entity_type.label} {entity_id} permanently deleted by {actor.id}"
        )
        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.PERMANENT_DELETE,
            table_name=entity_type.value,
            record_id=entity_id,
            changes=snapshot,
            company_id=snapshot.get("company_id"),
        )
        return snapshot

    def batch_permanent_delete(
        self,
        actor: Actor,
        entity_type: EntityType,
        ids: Iterable[str],
        company_override: Optional[str] = None,
    ) -> BatchDeleteResult:
        """
        Purge several trashed records, each independently.

        The role gate applies to the whole request. After that every id is
        checked on its own (in scope and currently in the trash); a failure
        never undoes or aborts the other purges.

        Args:
            actor: User performing the purge
            entity_type: Type of the records
            ids: Records to purge
            company_override: Company an Admin has entered

        Returns:
            IDs that were purged and IDs that were not

        Raises:
            ForbiddenError: Role may not purge this type
            RequestValidationError: Empty id list
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.PERMANENT_DELETE, entity_type)
        try:
            request = BatchDeleteRequest(ids=list(ids))
        except ValidationError as e:
            raise RequestValidationError.from_pydantic(e) from e

        result = BatchDeleteResult()
        for entity_id in request.ids:
            try:
                self._purge(actor, entity_type, entity_id, scope)
            except (NotFoundError, SoftDeleteError) as e:
                self.session.rollback()
                result.failed.append(entity_id)
                result.errors[entity_id] = e.message
                continue
            result.success.append(entity_id)

        logger.info(
            f"Batch purge of {entity_type.value} by {actor.id}: "
            f"{len(result.success)} purged, {len(result.failed)} failed"
        )
        return result

    def list_trash(
        self,
        actor: Actor,
        entity_type: EntityType,
        company_override: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[TrashItem]:
        """
        List trashed records with their purge countdown.

        Args:
            actor: User viewing the trash
            entity_type: Type of records to list
            company_override: Company an Admin has entered
            now: Reference time for the countdown

        Returns:
            Trash items, most recently deleted first
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW_TRASH, entity_type)

        return [
            self.to_trash_item(entity_type, instance, now)
            for instance in self.repository(entity_type).list_deleted(scope)
        ]

    def to_trash_item(
        self, entity_type: EntityType, instance: Any, now: Optional[datetime] = None
    ) -> TrashItem:
        days_left = self.policy.days_until_purge(instance.deleted_at, now)
        return TrashItem(
            entity_type=entity_type.value,
            record=instance.to_dict(),
            deleted_at=instance.deleted_at,
            deleted_by=instance.deleted_by,
            purge_date=self.policy.purge_date(instance.deleted_at),
            days_left=days_left,
            expiring_soon=days_left <= self.config.expiring_soon_days,
        )
