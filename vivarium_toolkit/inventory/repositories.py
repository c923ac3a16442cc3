"""
Repositories for each inventory entity type.

All of them inherit tenant scoping and the conditional state transitions
from :class:`~vivarium_toolkit.soft_delete.ScopedRepository`; this module
adds the per-entity lookups.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..access_control import UNSCOPED, EntityType, Role, Scope
from ..database import utcnow
from ..exceptions import AlreadyClaimedError, NotFoundError, RequestValidationError
from ..soft_delete.repository import ModelType, Payload, ScopedRepository
from .models import ALERT_STATUSES, Animal, Cage, Company, Genotype, QrCode, Strain, User
from .schemas import (
    AnimalCreate,
    AnimalPatch,
    CageCreate,
    CagePatch,
    CompanyCreate,
    CompanyPatch,
    GenotypeCreate,
    GenotypePatch,
    QrCodeCreate,
    QrCodePatch,
    StrainCreate,
    StrainPatch,
    UserCreate,
    UserPatch,
    parse_request,
)

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


class InventoryRepository(ScopedRepository[ModelType]):
    """Scoped repository whose rows must belong to an existing company."""

    def ensure_company(self, company_id: str) -> None:
        if self.session.get(Company, company_id) is None:
            raise RequestValidationError.for_field("company_id", "Company not found")

    def create_in_company(self, payload: Payload, company_id: Optional[str]) -> ModelType:
        if company_id:
            self.ensure_company(company_id)
        return super().create_in_company(payload, company_id)


class AnimalRepository(InventoryRepository[Animal]):
    model = Animal
    entity_type = EntityType.ANIMAL
    create_schema = AnimalCreate
    patch_schema = AnimalPatch
    unique_fields = ("animal_number",)
    search_fields = ("animal_number", "breed", "genotype", "notes")

    def list_health_alerts(self, scope: Scope) -> List[Animal]:
        """Active animals that are sick or quarantined."""
        stmt = self.select_visible(scope).where(
            Animal.health_status.in_(ALERT_STATUSES)
        )
        stmt = stmt.order_by(Animal.updated_at.desc())
        return list(self.session.scalars(stmt).all())

    def list_animals_in_cage(self, cage_id: str, scope: Scope) -> List[Animal]:
        stmt = self.select_visible(scope).where(Animal.cage_id == cage_id)
        stmt = stmt.order_by(Animal.animal_number)
        return list(self.session.scalars(stmt).all())


class CageRepository(InventoryRepository[Cage]):
    model = Cage
    entity_type = EntityType.CAGE
    create_schema = CageCreate
    patch_schema = CagePatch
    unique_fields = ("cage_number",)
    search_fields = ("cage_number", "room_number", "location", "notes")

    def resolve_cage_number(self, cage_id: Optional[str], scope: Scope) -> str:
        """Display value for a weak cage reference."""
        if not cage_id:
            return UNKNOWN
        cage = self.find(cage_id, scope)
        return cage.cage_number if cage else UNKNOWN


class StrainRepository(InventoryRepository[Strain]):
    model = Strain
    entity_type = EntityType.STRAIN
    create_schema = StrainCreate
    patch_schema = StrainPatch
    unique_fields = ("name",)
    search_fields = ("name", "description")

    def resolve_strain_name(self, strain_id: Optional[str], scope: Scope) -> str:
        """Display value for a weak strain reference."""
        if not strain_id:
            return UNKNOWN
        strain = self.find(strain_id, scope)
        return strain.name if strain else UNKNOWN


class GenotypeRepository(InventoryRepository[Genotype]):
    model = Genotype
    entity_type = EntityType.GENOTYPE
    create_schema = GenotypeCreate
    patch_schema = GenotypePatch
    unique_fields = ("name",)
    search_fields = ("name", "description")


class QrCodeRepository(InventoryRepository[QrCode]):
    model = QrCode
    entity_type = EntityType.QR_CODE
    create_schema = QrCodeCreate
    patch_schema = QrCodePatch
    search_fields = ("qr_data",)

    def add_row(self, values: Dict[str, Any], company_id: Optional[str]) -> QrCode:
        """Insert a QR row from already validated values."""
        return self._insert(values, company_id=company_id)

    def find_by_data(self, qr_data: str, scope: Scope) -> Optional[QrCode]:
        stmt = self.select_visible(scope).where(QrCode.qr_data == qr_data)
        return self.session.scalars(stmt).first()

    def claim(
        self, qr_id: str, cage_id: str, actor_id: str, scope: Scope
    ) -> QrCode:
        """
        Bind an unclaimed QR code to a cage.

        The claim fields are written by one UPDATE guarded on ``cage_id IS
        NULL``, so of two concurrent claims exactly one succeeds.

        Raises:
            NotFoundError: QR code missing, out of scope or soft-deleted
            AlreadyClaimedError: QR code is already bound to a cage
        """
        now = utcnow()
        stmt = (
            update(QrCode)
            .where(
                *self._identity(qr_id, scope),
                QrCode.cage_id.is_(None),
                QrCode.active_clause(),
            )
            .values(cage_id=cage_id, claimed_at=now, claimed_by=actor_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            if self.find(qr_id, scope) is None:
                raise NotFoundError(self.label, qr_id)
            raise AlreadyClaimedError(qr_id)
        return self._reload(qr_id)


class UserRepository(InventoryRepository[User]):
    model = User
    entity_type = EntityType.USER
    create_schema = UserCreate
    patch_schema = UserPatch
    unique_fields = ("email",)
    search_fields = ("email", "first_name", "last_name")

    def create_in_company(self, payload: Payload, company_id: Optional[str]) -> User:
        """
        Admin flow: create a user in any company.

        Only Admin users may be created without a company.
        """
        data = self.validate_create(payload)
        if company_id is None:
            if data.role != Role.ADMIN.value:
                raise RequestValidationError.for_field(
                    "company_id", "Only administrators may have no company"
                )
            return self._insert(data.model_dump(), company_id=None)
        return super().create_in_company(data, company_id)

    def update(self, entity_id: str, patch: Payload, scope: Scope) -> User:
        """Profile, role and block flag in one statement."""
        changes = self.validate_patch(patch).model_dump(exclude_unset=True)
        user = self.get(entity_id, scope)
        if user.company_id is None and changes.get("role", user.role) != Role.ADMIN.value:
            raise RequestValidationError.for_field(
                "role", "Assign a company before removing the Admin role"
            )
        return super().update(entity_id, changes, scope)

    def reassign_company(self, user_id: str, company_id: Optional[str]) -> User:
        """Move a user to another company; Admin-only at the service layer."""
        user = self.get(user_id, UNSCOPED)
        if company_id is None:
            if user.role != Role.ADMIN.value:
                raise RequestValidationError.for_field(
                    "company_id", "Only administrators may have no company"
                )
        else:
            self.ensure_company(company_id)
        return self._set(user_id, UNSCOPED, company_id=company_id)

    def _set(self, user_id: str, scope: Scope, **values: Any) -> User:
        stmt = (
            update(User)
            .where(*self._identity(user_id, scope), User.active_clause())
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            raise NotFoundError(self.label, user_id)
        return self._reload(user_id)


class CompanyRepository:
    """Companies are not soft-deletable; only Admins create or rename them."""

    label = EntityType.COMPANY.label

    def __init__(self, session: Session):
        self.session = session

    def list(self, scope: Scope) -> List[Company]:
        stmt = select(Company).order_by(Company.name)
        if scope is not UNSCOPED:
            stmt = stmt.where(Company.id == scope)
        return list(self.session.scalars(stmt).all())

    def get(self, company_id: str, scope: Scope) -> Company:
        if scope is not UNSCOPED and company_id != scope:
            raise NotFoundError(self.label, company_id)
        company = self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError(self.label, company_id)
        return company

    def create(self, payload: Payload) -> Company:
        data = parse_request(CompanyCreate, payload)
        self._check_name(data.name)
        now = utcnow()
        company = Company(name=data.name, created_at=now, updated_at=now)
        self.session.add(company)
        self.session.flush()
        return company

    def update(self, company_id: str, patch: Payload, scope: Scope) -> Company:
        changes = parse_request(CompanyPatch, patch).model_dump(exclude_unset=True)
        company = self.get(company_id, scope)
        if "name" in changes:
            self._check_name(changes["name"], exclude_id=company_id)
            company.name = changes["name"]
        company.updated_at = utcnow()
        self.session.flush()
        return company

    def _check_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        stmt = select(Company.id).where(Company.name == name)
        if exclude_id:
            stmt = stmt.where(Company.id != exclude_id)
        if self.session.scalars(stmt.limit(1)).first() is not None:
            raise RequestValidationError.for_field(
                "name", "Company with this name already exists"
            )


def build_repositories(session: Session) -> Dict[EntityType, ScopedRepository[Any]]:
    """Create one repository per soft-deletable entity type for a session."""
    return {
        EntityType.ANIMAL: AnimalRepository(session),
        EntityType.CAGE: CageRepository(session),
        EntityType.STRAIN: StrainRepository(session),
        EntityType.GENOTYPE: GenotypeRepository(session),
        EntityType.QR_CODE: QrCodeRepository(session),
        EntityType.USER: UserRepository(session),
    }


__all__ = [
    "UNKNOWN",
    "InventoryRepository",
    "AnimalRepository",
    "CageRepository",
    "StrainRepository",
    "GenotypeRepository",
    "QrCodeRepository",
    "UserRepository",
    "CompanyRepository",
    "build_repositories",
]
