"""
Inventory Module - animals, cages, strains, genotypes, QR codes and users.

Models, request schemas and tenant-scoped repositories for each entity type,
the QR code workflow, and the service that ties them to authorization and
the audit log.
"""

from .models import (
    Animal,
    AnimalStatus,
    Cage,
    CageStatus,
    Company,
    Gender,
    Genotype,
    HealthStatus,
    QrCode,
    Strain,
    User,
)
from .repositories import (
    UNKNOWN,
    AnimalRepository,
    CageRepository,
    CompanyRepository,
    GenotypeRepository,
    QrCodeRepository,
    StrainRepository,
    UserRepository,
    build_repositories,
)
from .qr_codes import QrCodeWorkflow
from .services import InventoryService

__all__ = [
    # Models
    "Company",
    "User",
    "Animal",
    "Cage",
    "Strain",
    "Genotype",
    "QrCode",
    "Gender",
    "HealthStatus",
    "AnimalStatus",
    "CageStatus",
    # Repositories
    "UNKNOWN",
    "AnimalRepository",
    "CageRepository",
    "CompanyRepository",
    "GenotypeRepository",
    "QrCodeRepository",
    "StrainRepository",
    "UserRepository",
    "build_repositories",
    # Services
    "InventoryService",
    "QrCodeWorkflow",
]
