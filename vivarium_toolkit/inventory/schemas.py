"""
Request schemas for inventory entities.

Create schemas list the fields a client may set when creating a record;
Patch schemas list the fields a client may change afterwards. Both forbid
unknown keys, so ``id``, ``company_id``, ``created_at`` and the deletion
columns can never be written through a request body. Clients may send
camelCase or snake_case keys.
"""

from datetime import datetime
from typing import Any, ClassVar, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..access_control import Role
from ..exceptions import RequestValidationError
from .models import AnimalStatus, CageStatus, Gender, HealthStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RequestSchema(BaseModel):
    """Base for all request bodies."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


class PatchSchema(RequestSchema):
    """Partial update; fields listed in ``non_nullable`` may not be cleared."""

    non_nullable: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_null(self) -> "PatchSchema":
        for field in self.non_nullable:
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


# Companies


class CompanyCreate(RequestSchema):
    name: str = Field(..., min_length=1, max_length=255)


class CompanyPatch(PatchSchema):
    non_nullable = ("name",)

    name: Optional[str] = Field(None, min_length=1, max_length=255)


# Users


class UserCreate(RequestSchema):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Role = Role.EMPLOYEE


class UserPatch(PatchSchema):
    """Profile fields plus the role and block flags.

    ``role`` and ``is_blocked`` are accepted here but applied through their
    own permission checks.
    """

    non_nullable = ("email", "role", "is_blocked")

    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Optional[Role] = None
    is_blocked: Optional[bool] = None


# Strains and genotypes


class StrainCreate(RequestSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: bool = True


class StrainPatch(PatchSchema):
    non_nullable = ("name", "is_active")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class GenotypeCreate(StrainCreate):
    pass


class GenotypePatch(StrainPatch):
    pass


# Cages


class CageCreate(RequestSchema):
    cage_number: str = Field(..., min_length=1, max_length=64)
    room_number: str = Field(..., min_length=1, max_length=64)
    location: str = Field(..., min_length=1, max_length=255)
    capacity: int = Field(5, ge=1)
    status: CageStatus = CageStatus.ACTIVE
    is_active: bool = True
    strain_id: Optional[str] = None
    notes: Optional[str] = None


class CagePatch(PatchSchema):
    non_nullable = (
        "cage_number",
        "room_number",
        "location",
        "capacity",
        "status",
        "is_active",
    )

    cage_number: Optional[str] = Field(None, min_length=1, max_length=64)
    room_number: Optional[str] = Field(None, min_length=1, max_length=64)
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    capacity: Optional[int] = Field(None, ge=1)
    status: Optional[CageStatus] = None
    is_active: Optional[bool] = None
    strain_id: Optional[str] = None
    notes: Optional[str] = None


# Animals


class AnimalCreate(RequestSchema):
    animal_number: str = Field(..., min_length=1, max_length=64)
    cage_id: Optional[str] = None
    breed: str = Field(..., min_length=1, max_length=255)
    genotype: Optional[str] = None
    gender: Optional[Gender] = None
    date_of_birth: Optional[datetime] = None
    weight: Optional[float] = Field(None, gt=0, description="Weight in grams")
    color: Optional[str] = None
    generation: Optional[int] = Field(None, ge=0)
    protocol: Optional[str] = None
    health_status: HealthStatus = HealthStatus.HEALTHY
    status: AnimalStatus = AnimalStatus.ACTIVE
    diseases: Optional[str] = None
    notes: Optional[str] = None


class AnimalPatch(PatchSchema):
    non_nullable = ("animal_number", "breed", "health_status", "status")

    animal_number: Optional[str] = Field(None, min_length=1, max_length=64)
    cage_id: Optional[str] = None
    breed: Optional[str] = Field(None, min_length=1, max_length=255)
    genotype: Optional[str] = None
    gender: Optional[Gender] = None
    date_of_birth: Optional[datetime] = None
    weight: Optional[float] = Field(None, gt=0)
    color: Optional[str] = None
    generation: Optional[int] = Field(None, ge=0)
    protocol: Optional[str] = None
    health_status: Optional[HealthStatus] = None
    status: Optional[AnimalStatus] = None
    diseases: Optional[str] = None
    notes: Optional[str] = None


# QR codes


class QrCodeCreate(RequestSchema):
    """A QR code printed for an existing cage."""

    cage_id: str = Field(..., min_length=1)


class QrCodePatch(PatchSchema):
    """QR codes have no client-editable fields; claims go through the workflow."""


class ClaimQrRequest(RequestSchema):
    cage_id: str = Field(..., min_length=1)


class GenerateBlankRequest(RequestSchema):
    count: int = Field(..., ge=1)


def parse_request(schema: Type[BaseModel], body: Any) -> Any:
    """Validate a request body, raising the toolkit's validation error."""
    try:
        return schema.model_validate(body or {})
    except ValidationError as e:
        raise RequestValidationError.from_pydantic(e) from e
