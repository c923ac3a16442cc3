"""
Inventory service: scoped CRUD with authorization and audit logging.

Every public method takes the acting user explicitly, resolves the company
scope, checks the capability table, does its work through the repositories,
commits, and then writes the audit entry.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..access_control import (
    UNSCOPED,
    Action,
    Actor,
    EntityType,
    Role,
    Scope,
    authorize,
    can,
    resolve_scope,
)
from ..audit_trail import AuditAction, AuditLogEntry, AuditLogger
from ..config import VivariumConfig, get_config
from ..exceptions import ForbiddenError, RequestValidationError
from ..soft_delete.repository import ScopedRepository
from .models import ALERT_STATUSES, Animal, Cage
from .qr_codes import QrCodeWorkflow
from .repositories import (
    AnimalRepository,
    CageRepository,
    CompanyRepository,
    StrainRepository,
    UserRepository,
)
from .schemas import UserPatch, parse_request

logger = logging.getLogger(__name__)

SEARCHABLE = (
    EntityType.ANIMAL,
    EntityType.CAGE,
    EntityType.STRAIN,
    EntityType.GENOTYPE,
    EntityType.QR_CODE,
    EntityType.USER,
)


def diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Field-level changes between two snapshots, ``updated_at`` excluded."""
    return {
        key: {"old": before.get(key), "new": value}
        for key, value in after.items()
        if key != "updated_at" and before.get(key) != value
    }


class InventoryService:
    """
    Entity CRUD for the inventory.

    Example:
        >>> repos = build_repositories(session)
        >>> service = InventoryService(session, audit, repos)
        >>> cage = service.create(actor, EntityType.CAGE, {"cageNumber": "C-1", ...})
        >>> service.list(actor, EntityType.CAGE)
    """

    def __init__(
        self,
        session: Session,
        audit_logger: AuditLogger,
        repositories: Mapping[EntityType, ScopedRepository[Any]],
        config: Optional[VivariumConfig] = None,
    ):
        """
        Initialize the inventory service.

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
        self.companies = CompanyRepository(session)
        self.qr_workflow = QrCodeWorkflow(session, audit_logger, repositories, self.config)

    @property
    def animals(self) -> AnimalRepository:
        return self.repositories[EntityType.ANIMAL]  # type: ignore[return-value]

    @property
    def cages(self) -> CageRepository:
        return self.repositories[EntityType.CAGE]  # type: ignore[return-value]

    @property
    def strains(self) -> StrainRepository:
        return self.repositories[EntityType.STRAIN]  # type: ignore[return-value]

    @property
    def users(self) -> UserRepository:
        return self.repositories[EntityType.USER]  # type: ignore[return-value]

    def repository(self, entity_type: EntityType) -> ScopedRepository[Any]:
        if entity_type not in self.repositories:
            raise RequestValidationError.for_field(
                "entity", f"Unsupported entity type: {entity_type.value}"
            )
        return self.repositories[entity_type]

    # Reads

    def list(
        self,
        actor: Actor,
        entity_type: EntityType,
        company_override: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        List one page of active records visible to the actor.

        ``limit`` defaults to the configured ``default_page_size``. Callers
        read further pages with ``offset``; a page shorter than the limit is
        the last one.
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, entity_type)

        if entity_type == EntityType.COMPANY:
            return [c.to_dict() for c in self.companies.list(scope)]

        rows = self.repository(entity_type).list(
            scope,
            limit=limit or self.config.default_page_size,
            offset=offset,
            filters=filters,
        )
        return [self._present(entity_type, row, scope) for row in rows]

    def get(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one active record.

        Raises:
            NotFoundError: Missing, out of scope or soft-deleted
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, entity_type)

        if entity_type == EntityType.COMPANY:
            return self.companies.get(entity_id, scope).to_dict()

        row = self.repository(entity_type).get(entity_id, scope)
        return self._present(entity_type, row, scope)

    def _present(self, entity_type: EntityType, row: Any, scope: Scope) -> Dict[str, Any]:
        """Serialize a row, resolving weak references for display."""
        data = row.to_dict()
        if entity_type == EntityType.ANIMAL:
            data["cage_number"] = (
                self.cages.resolve_cage_number(row.cage_id, scope) if row.cage_id else None
            )
        elif entity_type == EntityType.CAGE:
            data["strain_name"] = (
                self.strains.resolve_strain_name(row.strain_id, scope)
                if row.strain_id
                else None
            )
        return data

    # Writes

    def create(
        self,
        actor: Actor,
        entity_type: EntityType,
        body: Any,
        company_override: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a record in the actor's company.

        Admins outside a company view must name the target ``company_id``.

        Raises:
            ForbiddenError: Role may not create this type
            RequestValidationError: Invalid body or unresolvable reference
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.CREATE, entity_type)

        if entity_type == EntityType.COMPANY:
            return self._create_company(actor, body)
        if entity_type == EntityType.QR_CODE:
            cage_id = parse_request(self.repository(entity_type).create_schema, body).cage_id
            return self.qr_workflow.create_for_cage(actor, cage_id, company_override)

        repo = self.repository(entity_type)
        data = repo.validate_create(body)
        if entity_type == EntityType.USER:
            self._check_role_grant(actor, data.role)

        if scope is UNSCOPED:
            authorize(actor, Action.ASSIGN_COMPANY, entity_type)
            self._check_references(entity_type, data.model_dump(), company_id)
            row = repo.create_in_company(data, company_id)
        else:
            if company_id and company_id != scope:
                raise ForbiddenError("Records can only be created in your own company")
            if actor.is_admin:
                repo.ensure_company(scope)  # type: ignore[attr-defined]
            self._check_references(entity_type, data.model_dump(), scope)
            row = repo.create(data, scope)
        self.session.commit()

        logger.info(f"{entity_type.label} {row.id} created by {actor.id}")
        self._audit(actor, AuditAction.CREATE, entity_type, row.id, row.to_dict(), row.company_id)
        return self._present(entity_type, row, scope)

    def _create_company(self, actor: Actor, body: Any) -> Dict[str, Any]:
        company = self.companies.create(body)
        self.session.commit()
        self._audit(
            actor,
            AuditAction.CREATE,
            EntityType.COMPANY,
            company.id,
            company.to_dict(),
            company.id,
        )
        return company.to_dict()

    def update(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        body: Any,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply a partial update.

        For users, ``role`` and ``isBlocked`` need their own permissions on
        top of ``update``; every check runs before anything is written, and
        the whole patch is committed and audited as one change.

        Raises:
            NotFoundError: Missing, out of scope or soft-deleted
            RequestValidationError: Unknown or immutable field in the body
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.UPDATE, entity_type)

        if entity_type == EntityType.COMPANY:
            before = self.companies.get(entity_id, scope).to_dict()
            company = self.companies.update(entity_id, body, scope)
            self.session.commit()
            after = company.to_dict()
            self._audit(
                actor, AuditAction.UPDATE, entity_type, entity_id, diff(before, after), entity_id
            )
            return after

        if entity_type == EntityType.USER:
            return self._update_user(actor, entity_id, body, company_override)

        repo = self.repository(entity_type)
        patch = repo.validate_patch(body)
        row = repo.get(entity_id, scope)
        before = row.to_dict()
        self._check_references(entity_type, patch.model_dump(exclude_unset=True), row.company_id)

        row = repo.update(entity_id, patch, scope)
        self.session.commit()
        after = row.to_dict()

        self._audit(
            actor, AuditAction.UPDATE, entity_type, entity_id, diff(before, after), row.company_id
        )
        return self._present(entity_type, row, scope)

    def _update_user(
        self,
        actor: Actor,
        user_id: str,
        body: Any,
        company_override: Optional[str],
    ) -> Dict[str, Any]:
        """Profile, role and block changes applied together or not at all."""
        scope = resolve_scope(actor, company_override)
        patch: UserPatch = self.users.validate_patch(body)  # type: ignore[assignment]
        fields = patch.model_dump(exclude_unset=True)
        if "is_blocked" in fields:
            authorize(actor, Action.BLOCK, EntityType.USER)
            if user_id == actor.id:
                raise ForbiddenError("You cannot block your own account")
        user = self.users.get(user_id, scope)
        if "role" in fields:
            self._check_role_change(actor, user, Role(fields["role"]))

        before = user.to_dict()
        row = self.users.update(user_id, fields, scope)
        self.session.commit()
        after = row.to_dict()
        changes = diff(before, after)

        if "role" in changes or "is_blocked" in changes:
            logger.info(f"User {user_id} access changed by {actor.id}: {sorted(changes)}")
        self._audit(actor, AuditAction.UPDATE, EntityType.USER, user_id, changes, row.company_id)
        return after

    # Users

    def set_role(
        self,
        actor: Actor,
        user_id: str,
        role: Role,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Change a user's role. Only Admins may grant or revoke Admin.

        Raises:
            ForbiddenError: Role may not assign roles, or Admin involved
        """
        return self.update(
            actor, EntityType.USER, user_id, {"role": role.value}, company_override
        )

    def set_blocked(
        self,
        actor: Actor,
        user_id: str,
        blocked: bool,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Block or unblock a user. Blocking is independent of soft delete."""
        return self.update(
            actor, EntityType.USER, user_id, {"is_blocked": blocked}, company_override
        )

    def reassign_company(
        self, actor: Actor, user_id: str, company_id: Optional[str]
    ) -> Dict[str, Any]:
        """
        Move a user to another company (Admin only).

        Raises:
            ForbiddenError: Actor is not an Admin
            RequestValidationError: Unknown company, or a non-admin user
                left without one
        """
        resolve_scope(actor)
        authorize(actor, Action.ASSIGN_COMPANY, EntityType.USER)

        old_company = self.users.get(user_id, UNSCOPED).company_id
        user = self.users.reassign_company(user_id, company_id)
        self.session.commit()

        logger.warning(
            f"User {user_id} moved from company {old_company} to {company_id} by {actor.id}"
        )
        self._audit(
            actor,
            AuditAction.UPDATE,
            EntityType.USER,
            user_id,
            {"company_id": {"old": old_company, "new": company_id}},
            company_id,
        )
        return user.to_dict()

    def _check_role_grant(self, actor: Actor, role: Any) -> None:
        if Role(role) == Role.ADMIN and not actor.is_admin:
            raise ForbiddenError("Only administrators can grant the Admin role")

    def _check_role_change(self, actor: Actor, user: Any, role: Role) -> None:
        authorize(actor, Action.ASSIGN_ROLE, EntityType.USER)
        self._check_role_grant(actor, role)
        if user.role == Role.ADMIN.value and not actor.is_admin:
            raise ForbiddenError("Only administrators can change an administrator's role")

    def _check_references(
        self, entity_type: EntityType, values: Dict[str, Any], company_id: Optional[str]
    ) -> None:
        """Referenced cages and strains must be active rows of the same company."""
        scope: Scope = company_id if company_id else UNSCOPED
        if entity_type == EntityType.ANIMAL and values.get("cage_id"):
            if self.cages.find(values["cage_id"], scope) is None:
                raise RequestValidationError.for_field("cage_id", "Cage not found")
        if entity_type == EntityType.CAGE and values.get("strain_id"):
            if self.strains.find(values["strain_id"], scope) is None:
                raise RequestValidationError.for_field("strain_id", "Strain not found")

    # Supplementary reads

    def search(
        self, actor: Actor, query: str, company_override: Optional[str] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Global search over every entity type, keyed by table name.

        Types the actor may not view, such as users for Employees, come
        back as empty lists.
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, EntityType.ANIMAL)
        query = (query or "").strip()

        results: Dict[str, List[Dict[str, Any]]] = {}
        for entity_type in SEARCHABLE:
            rows = (
                self.repository(entity_type).search(query, scope)
                if query and can(actor, Action.VIEW, entity_type)
                else []
            )
            results[entity_type.value] = [
                self._present(entity_type, row, scope) for row in rows
            ]
        return results

    def health_alerts(
        self, actor: Actor, company_override: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Animals whose health status is Sick or Quarantine."""
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, EntityType.ANIMAL)
        return [
            self._present(EntityType.ANIMAL, a, scope)
            for a in self.animals.list_health_alerts(scope)
        ]

    def animals_in_cage(
        self, actor: Actor, cage_id: str, company_override: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, EntityType.ANIMAL)
        cage = self.cages.get(cage_id, scope)
        return [
            self._present(EntityType.ANIMAL, a, scope)
            for a in self.animals.list_animals_in_cage(cage.id, scope)
        ]

    def dashboard_stats(
        self, actor: Actor, company_override: Optional[str] = None
    ) -> Dict[str, int]:
        """Headline counts for the dashboard."""
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, EntityType.ANIMAL)

        qr_codes = self.repositories[EntityType.QR_CODE]
        return {
            "total_animals": self.animals.count(scope),
            "active_cages": self.cages.count(scope, Cage.is_active.is_(True)),
            "qr_codes": qr_codes.count(scope),
            "health_alerts": self.animals.count(
                scope, Animal.health_status.in_(ALERT_STATUSES)
            ),
        }

    def entity_history(
        self,
        actor: Actor,
        entity_type: EntityType,
        entity_id: str,
        company_override: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        """
        Audit history of one record, oldest first.

        Visible to anyone who can view the record itself.
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, entity_type)
        if entity_type == EntityType.COMPANY:
            self.companies.get(entity_id, scope)
        else:
            self.repository(entity_type).get(entity_id, scope)
        return self.audit_logger.entity_history(entity_type.value, entity_id)

    def _audit(
        self,
        actor: Actor,
        action: AuditAction,
        entity_type: EntityType,
        record_id: str,
        changes: Dict[str, Any],
        company_id: Optional[str],
    ) -> None:
        self.audit_logger.record(
            actor_id=actor.id,
            action=action,
            table_name=entity_type.value,
            record_id=record_id,
            changes=changes,
            company_id=company_id,
        )
