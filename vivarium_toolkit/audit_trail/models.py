"""
Data models for audit trail functionality.

These models define the structure of audit log entries and the parameters
used to search them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SOFT_DELETE = "SOFT_DELETE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    PERMANENT_DELETE = "PERMANENT_DELETE"
    CLAIM_QR = "CLAIM_QR"
    GENERATE_BLANK_QR = "GENERATE_BLANK_QR"
    CLEANUP = "CLEANUP"


def to_json_safe(value: Any) -> Any:
    """Normalize a changes payload so it can be stored in a JSON column."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class AuditLogEntry(BaseModel):
    """
    Immutable audit log entry.

    ``table_name`` and ``record_id`` identify the target; ``changes`` is an
    opaque snapshot or diff of what the action did.
    """

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    id: str = Field(..., description="Unique identifier for the audit entry")
    timestamp: datetime = Field(..., description="UTC timestamp of the action")
    user_id: Optional[str] = Field(None, description="Actor who performed the action")
    action: AuditAction = Field(..., description="Type of action performed")
    table_name: str = Field(..., description="Table of the affected record")
    record_id: str = Field(..., description="ID of the affected record")
    company_id: Optional[str] = Field(
        None, description="Tenant that owns the affected record"
    )
    changes: Optional[Dict[str, Any]] = Field(
        None, description="Snapshot or diff of the change"
    )

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        return (
            f"[{self.timestamp.isoformat()}] USER={self.user_id} "
            f"ACTION={self.action} ENTITY={self.table_name}:{self.record_id}"
        )


class AuditQuery(BaseModel):
    """Query parameters for searching audit logs."""

    # Time range
    start_date: Optional[datetime] = Field(None, description="Start of time range")
    end_date: Optional[datetime] = Field(None, description="End of time range")

    # Target filters
    table_name: Optional[str] = Field(None, description="Filter by table name")
    record_id: Optional[str] = Field(None, description="Filter by record ID")
    company_id: Optional[str] = Field(None, description="Filter by owning company")

    # Actor and action filters
    user_ids: Optional[List[str]] = Field(None, description="Filter by user IDs")
    actions: Optional[List[AuditAction]] = Field(
        None, description="Filter by action types"
    )

    # Pagination
    limit: int = Field(100, description="Maximum results to return", gt=0, le=1000)
    offset: int = Field(0, description="Result offset for pagination", ge=0)

    # Sorting
    sort_desc: bool = Field(True, description="Newest entries first")

    @field_validator("end_date")
    @classmethod
    def validate_date_range(
        cls, v: Optional[datetime], info: ValidationInfo
    ) -> Optional[datetime]:
        """Ensure end date is after start date."""
        if v and info.data.get("start_date"):
            if v < info.data["start_date"]:
                raise ValueError("End date must be after start date")
        return v
