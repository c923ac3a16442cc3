"""Exceptions for soft delete operations."""

from typing import Optional

from ..exceptions import VivariumError


class SoftDeleteError(VivariumError):
    """Base exception for soft delete state mismatches."""

    status_code = 409

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)


class AlreadyDeletedException(SoftDeleteError):
    """Raised when attempting to delete an already deleted entity."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Entity {entity_id} is already deleted and cannot be deleted again",
            entity_id=entity_id,
        )


class NotDeletedException(SoftDeleteError):
    """Raised when restoring or purging an entity that is not in the trash."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Entity {entity_id} is not deleted and cannot be restored or purged",
            entity_id=entity_id,
        )
