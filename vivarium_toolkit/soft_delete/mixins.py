"""
SQLAlchemy mixins for soft delete functionality.

A row is in the trash when ``deleted_at`` is set. ``deleted_by`` is always
set and cleared together with it, which a table-level check constraint
enforces.
"""

from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy import CheckConstraint, ColumnElement, DateTime, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column


class SoftDeleteMixin:
    """
    Mixin to add soft delete columns to SQLAlchemy models.

    Provides:
    - ``deleted_at`` / ``deleted_by`` columns
    - A consistency check constraint on the pair
    - WHERE clauses for active and deleted rows

    Models may declare ``__extra_constraints__`` for further table-level
    constraints; they are merged into ``__table_args__``.

    Usage:
        class Cage(Base, SoftDeleteMixin):
            __tablename__ = 'cages'
            id: Mapped[str] = mapped_column(String(36), primary_key=True)
    """

    __extra_constraints__: Tuple[Any, ...] = ()

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> Tuple[Any, ...]:
        """Add the deletion consistency constraint."""
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        constraint = CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL) OR "
            "(deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
            name=f"ck_{table_name}_deletion_consistency",
        )
        return (constraint, *cls.__extra_constraints__)

    @property
    def is_deleted(self) -> bool:
        """Whether the row is currently in the trash."""
        return self.deleted_at is not None

    @classmethod
    def active_clause(cls) -> ColumnElement[bool]:
        """WHERE clause matching rows that are not soft-deleted."""
        return cls.deleted_at.is_(None)

    @classmethod
    def deleted_clause(cls) -> ColumnElement[bool]:
        """WHERE clause matching soft-deleted rows."""
        return cls.deleted_at.is_not(None)
