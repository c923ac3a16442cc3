"""
Error taxonomy shared by every layer of the toolkit.

Repository and service code raises these typed failures; the API layer maps
them to an HTTP status and a client-safe message.
"""

from typing import Any, Dict, List, Optional


class VivariumError(Exception):
    """Base exception for all inventory and policy failures."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing representation of the error."""
        return {"message": self.message}


class NoCompanyAssignedError(VivariumError):
    """Raised when a non-admin user has no company to scope requests to."""

    status_code = 403

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("User is not assigned to a company")


class ForbiddenError(VivariumError, PermissionError):
    """Raised when a role is not allowed to perform an action."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(VivariumError):
    """
    Raised for missing records.

    Out-of-scope and soft-deleted records raise the same error so callers
    cannot tell them apart from records that never existed.
    """

    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class AlreadyClaimedError(VivariumError):
    """Raised when a QR code is already bound to a cage."""

    status_code = 409

    def __init__(self, qr_id: str):
        self.qr_id = qr_id
        super().__init__(f"QR code {qr_id} has already been claimed")


class RequestValidationError(VivariumError):
    """Raised for schema or shape violations in a request payload."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> "RequestValidationError":
        """Build an error describing a single violated field."""
        return cls(f"{field}: {message}", errors=[{"field": field, "message": message}])

    @classmethod
    def from_pydantic(cls, exc: Any) -> "RequestValidationError":
        """Convert a pydantic ``ValidationError`` into the toolkit taxonomy."""
        errors = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ())) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        return cls(summary or "Invalid request", errors=errors)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "errors": self.errors}
