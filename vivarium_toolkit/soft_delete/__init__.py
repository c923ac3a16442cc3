"""
Soft Delete Module - trash, restore and timed purge.

Records are never removed directly: they are moved to the trash, can be
restored, and are purged either manually or by the retention sweeper once
the retention window has passed.
"""

from .exceptions import (
    AlreadyDeletedException,
    NotDeletedException,
    SoftDeleteError,
)
from .mixins import SoftDeleteMixin
from .models import (
    BatchDeleteRequest,
    BatchDeleteResult,
    CleanupReport,
    RetentionPolicy,
    TrashItem,
)
from .repository import ScopedRepository
from .services import SoftDeleteService
from .sweeper import RetentionSweeper

# Short aliases
AlreadyDeleted = AlreadyDeletedException
NotDeleted = NotDeletedException

__all__ = [
    # Mixins
    "SoftDeleteMixin",
    # Models
    "RetentionPolicy",
    "TrashItem",
    "BatchDeleteRequest",
    "BatchDeleteResult",
    "CleanupReport",
    # Repository and services
    "ScopedRepository",
    "SoftDeleteService",
    "RetentionSweeper",
    # Exceptions
    "SoftDeleteError",
    "AlreadyDeletedException",
    "NotDeletedException",
    "AlreadyDeleted",
    "NotDeleted",
]
