"""
Vivarium Python Toolkit - multi-tenant laboratory animal and cage inventory.

This toolkit is the policy core of a vivarium inventory: it keeps every
company's animals, cages, strains, genotypes, QR codes and users apart, and
decides who may see, change, delete, restore and purge them.

Key Features
------------
* **Tenant Scoping**: Every read and write is confined to the caller's company
* **Access Control**: One capability table per role and entity type
* **Soft Delete**: Trash with restore, manual purge and a timed retention sweep
* **Audit Trail**: Append-only log of every mutation
* **QR Codes**: Blank label generation and a race-free claim workflow

Quick Start
-----------
>>> from vivarium_toolkit import Actor, InventoryAPI, Role, create_session_factory
>>>
>>> api = InventoryAPI(create_session_factory())
>>> actor = Actor(id=user.id, role=Role.EMPLOYEE, company_id=user.company_id)
>>>
>>> response = api.create_entity(actor, "cages", {
...     "cageNumber": "C-101", "roomNumber": "BB00028", "location": "Rack 3",
... })
>>> response.status_code
201

Documentation
-------------
See README.md for configuration and the command-line interface.
"""

__version__ = "1.0.0"

from .access_control import (
    UNSCOPED,
    Action,
    Actor,
    EntityType,
    Role,
    authorize,
    resolve_scope,
)
from .api import ApiResponse, InventoryAPI
from .audit_trail import AuditAction, AuditLogger, SQLAuditStorage
from .config import VivariumConfig, configure, get_config, set_config
from .database import Base, create_db_engine, create_session_factory, init_db
from .exceptions import (
    AlreadyClaimedError,
    ForbiddenError,
    NoCompanyAssignedError,
    NotFoundError,
    RequestValidationError,
    VivariumError,
)
from .inventory import InventoryService, QrCodeWorkflow, build_repositories
from .soft_delete import (
    AlreadyDeletedException,
    NotDeletedException,
    RetentionSweeper,
    SoftDeleteService,
)

__all__ = [
    # Access control
    "Actor",
    "Role",
    "Action",
    "EntityType",
    "UNSCOPED",
    "authorize",
    "resolve_scope",
    # API
    "InventoryAPI",
    "ApiResponse",
    # Services
    "InventoryService",
    "QrCodeWorkflow",
    "SoftDeleteService",
    "RetentionSweeper",
    "build_repositories",
    # Audit Trail
    "AuditLogger",
    "AuditAction",
    "SQLAuditStorage",
    # Configuration
    "VivariumConfig",
    "get_config",
    "set_config",
    "configure",
    # Database
    "Base",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    # Exceptions
    "VivariumError",
    "NoCompanyAssignedError",
    "ForbiddenError",
    "NotFoundError",
    "AlreadyClaimedError",
    "RequestValidationError",
    "AlreadyDeletedException",
    "NotDeletedException",
]
