"""
SQLAlchemy models for the vivarium inventory.

References between inventory rows (``cage_id``, ``strain_id``) are weak:
they carry no foreign key, so a referenced row may be soft-deleted or purged
and readers must tolerate the dangling id.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from ..access_control import Role
from ..database import Base, new_id, utcnow
from ..soft_delete.mixins import SoftDeleteMixin


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    MONITORING = "Monitoring"
    SICK = "Sick"
    QUARANTINE = "Quarantine"


# Statuses reported as health alerts
ALERT_STATUSES = (HealthStatus.SICK.value, HealthStatus.QUARANTINE.value)


class AnimalStatus(str, Enum):
    ACTIVE = "Active"
    RESERVED = "Reserved"
    TRANSFERRED = "Transferred"
    SACRIFICED = "Sacrificed"
    BREEDING = "Breeding"
    REPLACED = "Replaced"


class CageStatus(str, Enum):
    ACTIVE = "Active"
    BREEDING = "Breeding"
    HOLDING = "Holding"


class Company(Base):
    """A tenant. Every inventory row belongs to exactly one company."""

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CompanyOwnedMixin(SoftDeleteMixin):
    """Primary key, tenant owner and timestamps shared by inventory tables."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @declared_attr
    def company_id(cls) -> Mapped[Optional[str]]:
        return mapped_column(
            String(36), ForeignKey("companies.id"), nullable=True, index=True
        )


class User(Base, CompanyOwnedMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(
        String(32), nullable=False, default=Role.EMPLOYEE.value
    )
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __extra_constraints__ = (
        CheckConstraint(
            "company_id IS NOT NULL OR role = 'Admin'",
            name="ck_users_company_required",
        ),
    )

    @property
    def full_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email


class Strain(Base, CompanyOwnedMixin):
    __tablename__ = "strains"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Genotype(Base, CompanyOwnedMixin):
    __tablename__ = "genotypes"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Cage(Base, CompanyOwnedMixin):
    __tablename__ = "cages"

    cage_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    room_number: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    # Advisory only, not enforced against the animal count
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=CageStatus.ACTIVE.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    strain_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class Animal(Base, CompanyOwnedMixin):
    __tablename__ = "animals"

    animal_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    cage_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    breed: Mapped[str] = mapped_column(String(255), nullable=False)
    genotype: Mapped[Optional[str]] = mapped_column(String(255))
    gender: Mapped[Optional[str]] = mapped_column(String(16))
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime)
    weight: Mapped[Optional[float]] = mapped_column(Float)
    color: Mapped[Optional[str]] = mapped_column(String(64))
    generation: Mapped[Optional[int]] = mapped_column(Integer)
    protocol: Mapped[Optional[str]] = mapped_column(String(255))
    health_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=HealthStatus.HEALTHY.value, index=True
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AnimalStatus.ACTIVE.value
    )
    diseases: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class QrCode(Base, CompanyOwnedMixin):
    __tablename__ = "qr_codes"

    cage_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    qr_data: Mapped[str] = mapped_column(Text, nullable=False)
    is_blank: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(36))
    generated_by: Mapped[Optional[str]] = mapped_column(String(36))

    __extra_constraints__ = (
        CheckConstraint(
            "(cage_id IS NULL AND claimed_at IS NULL AND claimed_by IS NULL) OR "
            "(cage_id IS NOT NULL AND claimed_at IS NOT NULL "
            "AND claimed_by IS NOT NULL)",
            name="ck_qr_codes_claim_consistency",
        ),
    )

    @property
    def is_claimed(self) -> bool:
        return self.cage_id is not None
