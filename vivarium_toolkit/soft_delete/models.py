"""
Data models for trash and retention.

The number of days left before a soft-deleted record is purged is derived
from ``deleted_at`` and the current time on every read; it is never stored.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..database import utcnow

SECONDS_PER_DAY = 86400


class RetentionPolicy(BaseModel):
    """How long soft-deleted records stay in the trash."""

    model_config = ConfigDict(frozen=True)

    retention_days: int = Field(
        10, description="Days to keep a record in the trash before purging", gt=0
    )

    def purge_date(self, deleted_at: datetime) -> datetime:
        """When a record deleted at ``deleted_at`` becomes eligible for purge."""
        return deleted_at + timedelta(days=self.retention_days)

    def days_until_purge(
        self, deleted_at: datetime, now: Optional[datetime] = None
    ) -> int:
        """
        Whole days left before the record is purged, rounded up.

        Args:
            deleted_at: When the record was soft deleted
            now: Reference time, defaults to the current UTC time

        Returns:
            Days left; zero or less means the next sweep will purge it
        """
        now = now or utcnow()
        remaining = (self.purge_date(deleted_at) - now).total_seconds()
        return math.ceil(remaining / SECONDS_PER_DAY)

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Rows deleted at or before this instant are eligible for purge."""
        return (now or utcnow()) - timedelta(days=self.retention_days)


class TrashItem(BaseModel):
    """A soft-deleted record as shown in the trash listing."""

    entity_type: str = Field(..., description="Table of the record")
    record: Dict[str, Any] = Field(..., description="Serialized record")
    deleted_at: datetime = Field(..., description="When the record was deleted")
    deleted_by: str = Field(..., description="Who deleted the record")
    purge_date: datetime = Field(..., description="When the sweeper may purge it")
    days_left: int = Field(..., description="Days until purge, rounded up")
    expiring_soon: bool = Field(False, description="Purge is close")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class BatchDeleteRequest(BaseModel):
    """Body of a batch permanent delete request."""

    model_config = ConfigDict(extra="forbid")

    ids: List[str] = Field(..., description="IDs to purge", min_length=1)

    @field_validator("ids")
    @classmethod
    def validate_ids(cls, v: List[str]) -> List[str]:
        """Drop blanks and duplicates while keeping request order."""
        seen: Dict[str, None] = {}
        for item in v:
            item = item.strip()
            if item:
                seen.setdefault(item, None)
        if not seen:
            raise ValueError("At least one id is required")
        return list(seen)


class BatchDeleteResult(BaseModel):
    """Outcome of a batch permanent delete; partial success is normal."""

    success: List[str] = Field(default_factory=list, description="Purged IDs")
    failed: List[str] = Field(default_factory=list, description="IDs not purged")
    errors: Dict[str, str] = Field(
        default_factory=dict, description="Failure reason per ID"
    )

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "failed": self.failed}


class CleanupReport(BaseModel):
    """Outcome of a retention sweep."""

    started_at: datetime = Field(..., description="Sweep reference time")
    cutoff: datetime = Field(..., description="Rows deleted at or before this go")
    purged: Dict[str, int] = Field(
        default_factory=dict, description="Purged row count per entity type"
    )

    @property
    def total(self) -> int:
        return sum(self.purged.values())

    def add(self, entity_type: str, count: int = 1) -> None:
        """Add purged rows to the per-type counts."""
        self.purged[entity_type] = self.purged.get(entity_type, 0) + count
