"""
Access control module: roles, capability table and tenant scoping.

Every entity operation starts by resolving the caller's company scope and
checking the capability table. The authenticated user is always passed in
explicitly as an ``Actor``; nothing here reads a process-wide current user.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Tuple, TypeVar, Union

from .exceptions import ForbiddenError, NoCompanyAssignedError

logger = logging.getLogger(__name__)

# Type variable for decorators
F = TypeVar("F", bound=Callable[..., Any])


class Role(str, Enum):
    """User roles."""

    ADMIN = "Admin"
    DIRECTOR = "Director"
    SUCCESS_MANAGER = "Success Manager"
    EMPLOYEE = "Employee"


class Action(str, Enum):
    """Actions checked against the capability table."""

    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    PERMANENT_DELETE = "permanent_delete"
    VIEW_TRASH = "view_trash"
    CLAIM_QR = "claim_qr"
    GENERATE_BLANK_QR = "generate_blank_qr"
    ASSIGN_ROLE = "assign_role"
    ASSIGN_COMPANY = "assign_company"
    BLOCK = "block"
    CLEANUP = "cleanup"
    VIEW_AUDIT = "view_audit"


class EntityType(str, Enum):
    """Entity types; values are the table names."""

    ANIMAL = "animals"
    CAGE = "cages"
    STRAIN = "strains"
    GENOTYPE = "genotypes"
    QR_CODE = "qr_codes"
    USER = "users"
    COMPANY = "companies"
    AUDIT_LOG = "audit_logs"
    TRASH = "trash"

    @property
    def label(self) -> str:
        """Human readable singular name."""
        return _LABELS[self]

    @classmethod
    def from_path(cls, segment: str) -> "EntityType":
        """Resolve a URL segment such as ``qr-codes`` to an entity type."""
        try:
            return cls(segment.replace("-", "_"))
        except ValueError:
            raise ValueError(f"Unknown entity type: {segment}") from None


_LABELS = {
    EntityType.ANIMAL: "Animal",
    EntityType.CAGE: "Cage",
    EntityType.STRAIN: "Strain",
    EntityType.GENOTYPE: "Genotype",
    EntityType.QR_CODE: "QR code",
    EntityType.USER: "User",
    EntityType.COMPANY: "Company",
    EntityType.AUDIT_LOG: "Audit log",
    EntityType.TRASH: "Trash",
}

# Soft-deletable entity types, in sweep order
SOFT_DELETABLE: Tuple[EntityType, ...] = (
    EntityType.ANIMAL,
    EntityType.CAGE,
    EntityType.STRAIN,
    EntityType.GENOTYPE,
    EntityType.QR_CODE,
    EntityType.USER,
)


class ScopeSentinel(Enum):
    """Marker for requests that are not confined to a company."""

    UNSCOPED = "unscoped"


UNSCOPED = ScopeSentinel.UNSCOPED

Scope = Union[str, ScopeSentinel]


@dataclass(frozen=True)
class Actor:
    """The authenticated user on whose behalf an operation runs."""

    id: str
    role: Role
    company_id: Optional[str] = None
    is_blocked: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_user(cls, user: Any) -> "Actor":
        """Build an actor from a stored user row."""
        return cls(
            id=user.id,
            role=Role(user.role),
            company_id=user.company_id,
            is_blocked=bool(user.is_blocked),
        )


SYSTEM_ACTOR = Actor(id="system", role=Role.ADMIN)


_INVENTORY_BASE = frozenset(
    {
        Action.VIEW,
        Action.CREATE,
        Action.UPDATE,
        Action.SOFT_DELETE,
        Action.RESTORE,
        Action.VIEW_TRASH,
    }
)
_QR_BASE = frozenset(
    {
        Action.VIEW,
        Action.CREATE,
        Action.SOFT_DELETE,
        Action.RESTORE,
        Action.VIEW_TRASH,
        Action.CLAIM_QR,
        Action.GENERATE_BLANK_QR,
    }
)
_USER_MANAGE = frozenset(
    {
        Action.VIEW,
        Action.CREATE,
        Action.UPDATE,
        Action.SOFT_DELETE,
        Action.RESTORE,
        Action.VIEW_TRASH,
        Action.ASSIGN_ROLE,
        Action.BLOCK,
    }
)


def _build_capabilities() -> Dict[Tuple[Role, EntityType], FrozenSet[Action]]:
    """Build the (role, entity) -> allowed actions table."""
    table: Dict[Tuple[Role, EntityType], FrozenSet[Action]] = {}

    for role in Role:
        for entity in (
            EntityType.ANIMAL,
            EntityType.CAGE,
            EntityType.STRAIN,
            EntityType.GENOTYPE,
        ):
            actions = set(_INVENTORY_BASE)
            if role in (Role.ADMIN, Role.DIRECTOR):
                actions.add(Action.PERMANENT_DELETE)
            table[(role, entity)] = frozenset(actions)

        qr_actions = set(_QR_BASE)
        if role == Role.ADMIN:
            qr_actions.add(Action.PERMANENT_DELETE)
        table[(role, EntityType.QR_CODE)] = frozenset(qr_actions)

    table[(Role.ADMIN, EntityType.USER)] = _USER_MANAGE | {
        Action.PERMANENT_DELETE,
        Action.ASSIGN_COMPANY,
    }
    table[(Role.SUCCESS_MANAGER, EntityType.USER)] = _USER_MANAGE
    table[(Role.DIRECTOR, EntityType.USER)] = frozenset({Action.VIEW})
    table[(Role.EMPLOYEE, EntityType.USER)] = frozenset()

    table[(Role.ADMIN, EntityType.COMPANY)] = frozenset(
        {Action.VIEW, Action.CREATE, Action.UPDATE}
    )
    for role in (Role.DIRECTOR, Role.SUCCESS_MANAGER, Role.EMPLOYEE):
        table[(role, EntityType.COMPANY)] = frozenset({Action.VIEW})

    for role in (Role.ADMIN, Role.SUCCESS_MANAGER):
        table[(role, EntityType.AUDIT_LOG)] = frozenset({Action.VIEW_AUDIT})
        table[(role, EntityType.TRASH)] = frozenset({Action.CLEANUP})

    # Creating a record in another tenant is an Admin-only path
    for entity in SOFT_DELETABLE:
        if entity != EntityType.USER:
            table[(Role.ADMIN, entity)] = table[(Role.ADMIN, entity)] | {
                Action.ASSIGN_COMPANY
            }

    return table


CAPABILITIES: Dict[Tuple[Role, EntityType], FrozenSet[Action]] = _build_capabilities()


def allowed_actions(role: Role, entity_type: EntityType) -> FrozenSet[Action]:
    """Return every action a role may perform on an entity type."""
    return CAPABILITIES.get((role, entity_type), frozenset())


def can(actor: Actor, action: Action, entity_type: EntityType) -> bool:
    """Check whether an actor may perform an action on an entity type."""
    if actor.is_blocked:
        return False
    return action in allowed_actions(actor.role, entity_type)


def authorize(actor: Actor, action: Action, entity_type: EntityType) -> None:
    """
    Enforce the capability table.

    Args:
        actor: The user performing the operation
        action: Action being attempted
        entity_type: Entity type the action targets

    Raises:
        ForbiddenError: If the actor's role lacks the capability
    """
    if can(actor, action, entity_type):
        return

    logger.warning(
        f"Denied {action.value} on {entity_type.value} "
        f"for user {actor.id} ({actor.role.value})"
    )
    if actor.is_blocked:
        raise ForbiddenError("User account is blocked")
    raise ForbiddenError(
        f"Role {actor.role.value} may not {action.value.replace('_', ' ')} "
        f"{entity_type.label.lower()} records"
    )


def resolve_scope(actor: Actor, company_override: Optional[str] = None) -> Scope:
    """
    Determine the company scope for all reads and writes of a request.

    Admins see every tenant unless they have entered a single company's view.
    Everyone else is confined to their own company.

    Args:
        actor: The user performing the request
        company_override: Company an Admin has chosen to view

    Returns:
        A company id, or ``UNSCOPED`` for an Admin without an override

    Raises:
        ForbiddenError: Blocked user, or a non-admin naming another company
        NoCompanyAssignedError: Non-admin user without a company
    """
    if actor.is_blocked:
        raise ForbiddenError("User account is blocked")

    if actor.role == Role.ADMIN:
        return company_override if company_override else UNSCOPED

    if not actor.company_id:
        raise NoCompanyAssignedError(actor.id)

    if company_override and company_override != actor.company_id:
        raise ForbiddenError("Only administrators can view other companies")

    return actor.company_id


def require_permission(action: Action, entity_type: EntityType) -> Callable[[F], F]:
    """
    Decorator enforcing a capability on a function taking an ``actor``.

    The actor is looked up as the ``actor`` keyword argument or the first
    positional ``Actor`` argument.

    Usage:
        @require_permission(Action.CLEANUP, EntityType.TRASH)
        def run_cleanup(self, actor: Actor) -> ...:
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            actor = kwargs.get("actor") or _first_actor(args)
            if actor is None:
                raise ForbiddenError("Authentication required")
            authorize(actor, action, entity_type)
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def _first_actor(args: Iterable[Any]) -> Optional[Actor]:
    return next((arg for arg in args if isinstance(arg, Actor)), None)


__all__ = [
    "Role",
    "Action",
    "EntityType",
    "SOFT_DELETABLE",
    "ScopeSentinel",
    "UNSCOPED",
    "Scope",
    "Actor",
    "SYSTEM_ACTOR",
    "CAPABILITIES",
    "allowed_actions",
    "can",
    "authorize",
    "resolve_scope",
    "require_permission",
]
