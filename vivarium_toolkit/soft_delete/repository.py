"""
Generic tenant-scoped repository for soft-deletable models.

Every read and write is filtered by the caller's company scope. State
transitions (soft delete, restore, permanent delete) are single conditional
statements whose affected row count decides the outcome, so a concurrent
request can never observe or cause a half-applied transition.

Repositories flush but never commit; the calling service owns the
transaction boundary.
"""

import logging
from datetime import datetime
from typing import (
    Any,
    ClassVar,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ValidationError
from sqlalchemy import ColumnElement, Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..access_control import UNSCOPED, EntityType, Scope
from ..database import Base, new_id, utcnow
from ..exceptions import NotFoundError, RequestValidationError
from .exceptions import AlreadyDeletedException, NotDeletedException

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)

Payload = Union[BaseModel, Dict[str, Any]]


class ScopedRepository(Generic[ModelType]):
    """Generic CRUD repository for a soft-deletable, company-owned model.

    Subclasses bind the model, its entity type and its request schemas.

    Usage:
        class CageRepository(ScopedRepository[Cage]):
            model = Cage
            entity_type = EntityType.CAGE
            create_schema = CageCreate
            patch_schema = CagePatch
            unique_fields = ("cage_number",)
            search_fields = ("cage_number", "room_number", "location")
    """

    model: ClassVar[Type[Any]]
    entity_type: ClassVar[EntityType]
    create_schema: ClassVar[Type[BaseModel]]
    patch_schema: ClassVar[Type[BaseModel]]
    unique_fields: ClassVar[Tuple[str, ...]] = ()
    search_fields: ClassVar[Tuple[str, ...]] = ()
    default_order: ClassVar[str] = "created_at"

    def __init__(self, session: Session):
        self.session = session

    @property
    def label(self) -> str:
        return self.entity_type.label

    # Query building

    def _scoped(self, stmt: Any, scope: Scope) -> Any:
        """Restrict a statement to the caller's company."""
        if scope is UNSCOPED:
            return stmt
        return stmt.where(self.model.company_id == scope)

    def _identity(self, entity_id: str, scope: Scope) -> List[ColumnElement[bool]]:
        criteria = [self.model.id == entity_id]
        if scope is not UNSCOPED:
            criteria.append(self.model.company_id == scope)
        return criteria

    def select_visible(self, scope: Scope, include_deleted: bool = False) -> Select[Any]:
        """Base select for rows the caller may see."""
        stmt = self._scoped(select(self.model), scope)
        if not include_deleted:
            stmt = stmt.where(self.model.active_clause())
        return stmt

    # Read

    def list(
        self,
        scope: Scope,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[ModelType]:
        """
        List records visible in a scope.

        Args:
            scope: Company id or ``UNSCOPED``
            include_deleted: Also return soft-deleted rows
            limit: Maximum rows to return
            offset: Rows to skip
            filters: Column equality filters, list values match with IN

        Returns:
            Records ordered newest first
        """
        stmt = self.select_visible(scope, include_deleted)

        for field, value in (filters or {}).items():
            column = getattr(self.model, field, None)
            if column is None:
                raise RequestValidationError.for_field(field, "Unknown filter field")
            if isinstance(value, (list, tuple, set)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)

        order_column = getattr(self.model, self.default_order)
        stmt = stmt.order_by(order_column.desc(), self.model.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        return list(self.session.scalars(stmt).all())

    def search(self, query: str, scope: Scope, limit: int = 50) -> List[ModelType]:
        """Case-insensitive substring match on the ``search_fields`` columns."""
        if not self.search_fields or not query.strip():
            return []
        term = f"%{query.strip()}%"
        columns = [getattr(self.model, field) for field in self.search_fields]
        stmt = self.select_visible(scope).where(or_(*(c.ilike(term) for c in columns)))
        stmt = stmt.order_by(columns[0], self.model.id).limit(limit)
        return list(self.session.scalars(stmt).all())

    def count(self, scope: Scope, *criteria: ColumnElement[bool]) -> int:
        """Count active rows in a scope matching extra criteria."""
        stmt = self._scoped(
            select(func.count()).select_from(self.model), scope
        ).where(self.model.active_clause(), *criteria)
        return self.session.scalar(stmt) or 0

    def list_deleted(self, scope: Scope) -> List[ModelType]:
        """Trash listing, most recently deleted first."""
        stmt = self._scoped(select(self.model), scope).where(
            self.model.deleted_clause()
        )
        stmt = stmt.order_by(self.model.deleted_at.desc(), self.model.id)
        return list(self.session.scalars(stmt).all())

    def list_expired(self, cutoff: datetime) -> List[str]:
        """IDs of rows soft-deleted at or before ``cutoff`` across all tenants."""
        stmt = (
            select(self.model.id)
            .where(self.model.deleted_clause(), self.model.deleted_at <= cutoff)
            .order_by(self.model.deleted_at)
        )
        return list(self.session.scalars(stmt).all())

    def find(
        self, entity_id: str, scope: Scope, include_deleted: bool = False
    ) -> Optional[ModelType]:
        """Fetch a row by id within a scope, or None."""
        stmt = select(self.model).where(*self._identity(entity_id, scope))
        if not include_deleted:
            stmt = stmt.where(self.model.active_clause())
        return self.session.scalars(stmt).first()

    def get(self, entity_id: str, scope: Scope) -> ModelType:
        """
        Fetch an active row by id within a scope.

        Raises:
            NotFoundError: Row is missing, out of scope or soft-deleted
        """
        instance = self.find(entity_id, scope)
        if instance is None:
            raise NotFoundError(self.label, entity_id)
        return instance

    def get_deleted(self, entity_id: str, scope: Scope) -> ModelType:
        """
        Fetch a soft-deleted row by id within a scope.

        Raises:
            NotFoundError: Row is missing or out of scope
            NotDeletedException: Row is active
        """
        instance = self.find(entity_id, scope, include_deleted=True)
        if instance is None:
            raise NotFoundError(self.label, entity_id)
        if not instance.is_deleted:
            raise NotDeletedException(entity_id)
        return instance

    # Create / update

    def validate_create(self, payload: Payload) -> BaseModel:
        return self._validate(self.create_schema, payload)

    def validate_patch(self, payload: Payload) -> BaseModel:
        return self._validate(self.patch_schema, payload)

    def _validate(self, schema: Type[BaseModel], payload: Payload) -> BaseModel:
        if isinstance(payload, schema):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationError.from_pydantic(e) from e

    def create(self, payload: Payload, scope: Scope) -> ModelType:
        """
        Create a record owned by the caller's company.

        Args:
            payload: Create schema instance or raw body
            scope: Company id; ``UNSCOPED`` callers must use
                :meth:`create_in_company`

        Raises:
            RequestValidationError: Invalid payload, duplicate unique value,
                or no company to own the record
        """
        data = self.validate_create(payload)
        if scope is UNSCOPED:
            raise RequestValidationError.for_field(
                "company_id", "Select a company before creating records"
            )
        return self._insert(data.model_dump(), company_id=scope)

    def create_in_company(self, payload: Payload, company_id: Optional[str]) -> ModelType:
        """Create a record in an explicitly named company (Admin path)."""
        data = self.validate_create(payload)
        if not company_id:
            raise RequestValidationError.for_field("company_id", "Field required")
        return self._insert(data.model_dump(), company_id=company_id)

    def _insert(self, values: Dict[str, Any], company_id: Optional[str]) -> ModelType:
        now = utcnow()
        values = dict(values)
        values.setdefault("id", new_id())
        values.update(company_id=company_id, created_at=now, updated_at=now)

        self._check_unique(values)
        instance = self.model(**values)
        self.session.add(instance)
        self._flush()

        logger.debug(f"Created {self.entity_type.value} {instance.id}")
        return instance

    def update(self, entity_id: str, patch: Payload, scope: Scope) -> ModelType:
        """
        Apply a partial update to an active row.

        Only fields present in the patch are written; the patch schema
        rejects ``id``, ``company_id`` and ``created_at``.
        """
        changes = self.validate_patch(patch).model_dump(exclude_unset=True)
        instance = self.get(entity_id, scope)

        self._check_unique(changes, exclude_id=entity_id)
        for field, value in changes.items():
            setattr(instance, field, value)
        instance.updated_at = utcnow()
        self._flush()
        return instance

    def _check_unique(
        self, values: Dict[str, Any], exclude_id: Optional[str] = None
    ) -> None:
        """Reject values that collide with any row, deleted rows included."""
        for field in self.unique_fields:
            value = values.get(field)
            if value is None:
                continue
            stmt = select(self.model.id).where(getattr(self.model, field) == value)
            if exclude_id:
                stmt = stmt.where(self.model.id != exclude_id)
            if self.session.scalars(stmt.limit(1)).first() is not None:
                raise RequestValidationError.for_field(
                    field, f"{self.label} with this {field} already exists"
                )

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Integrity error on {self.entity_type.value}: {e.orig}")
            raise RequestValidationError(
                f"{self.label} violates a uniqueness or integrity constraint"
            ) from e

    # State transitions

    def soft_delete(self, entity_id: str, actor_id: str, scope: Scope) -> ModelType:
        """
        Move an active row to the trash.

        Raises:
            NotFoundError: Row is missing or out of scope
            AlreadyDeletedException: Row is already in the trash
        """
        now = utcnow()
        stmt = (
            update(self.model)
            .where(*self._identity(entity_id, scope), self.model.active_clause())
            .values(deleted_at=now, deleted_by=actor_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            self._diagnose(entity_id, scope, expect_deleted=False)
        return self._reload(entity_id)

    def restore(self, entity_id: str, scope: Scope) -> ModelType:
        """
        Bring a row back from the trash.

        Raises:
            NotFoundError: Row is missing or out of scope
            NotDeletedException: Row is not in the trash
        """
        stmt = (
            update(self.model)
            .where(*self._identity(entity_id, scope), self.model.deleted_clause())
            .values(deleted_at=None, deleted_by=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            self._diagnose(entity_id, scope, expect_deleted=True)
        return self._reload(entity_id)

    def permanent_delete(
        self,
        entity_id: str,
        scope: Scope,
        deleted_before: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Irreversibly remove a soft-deleted row.

        Args:
            entity_id: Row to purge
            scope: Company id or ``UNSCOPED``
            deleted_before: Only purge if deleted at or before this time

        Returns:
            Snapshot of the purged row

        Raises:
            NotFoundError: Row is missing or out of scope
            NotDeletedException: Row is active, or was deleted after
                ``deleted_before``
        """
        instance = self.get_deleted(entity_id, scope)
        snapshot = self.snapshot(instance)

        criteria = [*self._identity(entity_id, scope), self.model.deleted_clause()]
        if deleted_before is not None:
            criteria.append(self.model.deleted_at <= deleted_before)
        stmt = (
            delete(self.model)
            .where(*criteria)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            self.session.expunge(instance)
            self._diagnose(entity_id, scope, expect_deleted=True)
            # Still in the trash but newer than the cutoff
            raise NotDeletedException(entity_id)

        self.session.expunge(instance)
        return snapshot

    def _diagnose(self, entity_id: str, scope: Scope, expect_deleted: bool) -> None:
        """Explain why a conditional statement touched no rows."""
        stmt = select(self.model.deleted_at).where(*self._identity(entity_id, scope))
        row = self.session.execute(stmt).first()
        if row is None:
            raise NotFoundError(self.label, entity_id)
        is_deleted = row[0] is not None
        if expect_deleted and not is_deleted:
            raise NotDeletedException(entity_id)
        if not expect_deleted and is_deleted:
            raise AlreadyDeletedException(entity_id)

    def _reload(self, entity_id: str) -> ModelType:
        instance = self.session.get(self.model, entity_id, populate_existing=True)
        if instance is None:
            raise NotFoundError(self.label, entity_id)
        return instance

    @staticmethod
    def snapshot(instance: Any) -> Dict[str, Any]:
        """Serializable copy of a row for audit payloads."""
        return instance.to_dict()

