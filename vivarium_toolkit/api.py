"""
Framework-agnostic request handlers.

Each method maps one HTTP endpoint onto the services, using a fresh session
per call, and returns an :class:`ApiResponse`. Typed failures become their
status code and message; anything else becomes a generic 500 so that no
stack trace or SQL reaches the client. A web framework only has to
authenticate the user, build an :class:`Actor` and serialize the response.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from .access_control import Actor, EntityType
from .audit_trail import AuditLogger, AuditQuery, SQLAuditStorage
from .config import VivariumConfig, get_config
from .exceptions import NotFoundError, RequestValidationError, VivariumError
from .inventory import InventoryService, build_repositories
from .soft_delete import RetentionSweeper, SoftDeleteService

logger = logging.getLogger(__name__)

EntityRef = Union[str, EntityType]


@dataclass
class ApiResponse:
    """Status code and JSON-ready body of a handled request."""

    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class Services:
    """Everything a request needs, bound to one session."""

    session: Session
    audit: AuditLogger
    inventory: InventoryService
    trash: SoftDeleteService
    sweeper: RetentionSweeper


def _entity(entity: EntityRef) -> EntityType:
    if isinstance(entity, EntityType):
        return entity
    try:
        return EntityType.from_path(entity)
    except ValueError:
        raise NotFoundError("Resource") from None


class InventoryAPI:
    """
    Endpoint handlers for the inventory.

    ``company_id`` on every handler is the company an Admin has entered;
    for other roles it must be omitted or equal their own company.

    Example:
        >>> api = InventoryAPI(create_session_factory())
        >>> response = api.list_entities(actor, "cages")
        >>> response.status_code, response.body
    """

    def __init__(
        self,
        session_factory: sessionmaker,  # type: ignore[type-arg]
        config: Optional[VivariumConfig] = None,
    ):
        self.session_factory = session_factory
        self.config = config or get_config()

    @contextmanager
    def services(self) -> Iterator[Services]:
        """Build request-scoped services on a new session."""
        with self.session_factory() as session:
            repositories = build_repositories(session)
            audit = AuditLogger(SQLAuditStorage(session), self.config)
            yield Services(
                session=session,
                audit=audit,
                inventory=InventoryService(session, audit, repositories, self.config),
                trash=SoftDeleteService(session, audit, repositories, self.config),
                sweeper=RetentionSweeper(session, audit, repositories, self.config),
            )

    def _handle(self, status_code: int, handler: Callable[[Services], Any]) -> ApiResponse:
        try:
            with self.services() as services:
                result = handler(services)
        except VivariumError as e:
            return ApiResponse(e.status_code, e.to_dict())
        except ValidationError as e:
            error = RequestValidationError.from_pydantic(e)
            return ApiResponse(error.status_code, error.to_dict())
        except Exception:
            logger.exception("Unhandled error while processing request")
            return ApiResponse(500, {"message": "Internal server error"})

        if status_code == 204:
            return ApiResponse(204)
        return ApiResponse(status_code, result)

    # Entity CRUD

    def list_entities(
        self,
        actor: Actor,
        entity: EntityRef,
        company_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        filters: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """GET /api/{entity}, paged by ``limit`` and ``offset``"""
        return self._handle(
            200,
            lambda s: s.inventory.list(
                actor, _entity(entity), company_id, limit=limit, offset=offset, filters=filters
            ),
        )

    def get_entity(
        self, actor: Actor, entity: EntityRef, entity_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """GET /api/{entity}/:id"""
        return self._handle(
            200, lambda s: s.inventory.get(actor, _entity(entity), entity_id, company_id)
        )

    def create_entity(
        self, actor: Actor, entity: EntityRef, body: Any, company_id: Optional[str] = None
    ) -> ApiResponse:
        """POST /api/{entity}"""
        return self._handle(
            201, lambda s: s.inventory.create(actor, _entity(entity), body, company_id)
        )

    def update_entity(
        self,
        actor: Actor,
        entity: EntityRef,
        entity_id: str,
        body: Any,
        company_id: Optional[str] = None,
    ) -> ApiResponse:
        """PATCH /api/{entity}/:id"""
        return self._handle(
            200,
            lambda s: s.inventory.update(actor, _entity(entity), entity_id, body, company_id),
        )

    # Trash

    def soft_delete_entity(
        self, actor: Actor, entity: EntityRef, entity_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """DELETE /api/{entity}/:id"""
        return self._handle(
            204, lambda s: s.trash.soft_delete(actor, _entity(entity), entity_id, company_id)
        )

    def list_trash(
        self, actor: Actor, entity: EntityRef, company_id: Optional[str] = None
    ) -> ApiResponse:
        """GET /api/{entity}/trash"""
        return self._handle(
            200,
            lambda s: [
                item.to_dict()
                for item in s.trash.list_trash(actor, _entity(entity), company_id)
            ],
        )

    def restore_entity(
        self, actor: Actor, entity: EntityRef, entity_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """POST /api/{entity}/:id/restore"""
        return self._handle(
            200, lambda s: s.trash.restore(actor, _entity(entity), entity_id, company_id)
        )

    def permanent_delete_entity(
        self, actor: Actor, entity: EntityRef, entity_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """DELETE /api/{entity}/:id/permanent"""
        return self._handle(
            204,
            lambda s: s.trash.permanent_delete(actor, _entity(entity), entity_id, company_id),
        )

    def batch_delete(
        self, actor: Actor, entity: EntityRef, body: Any, company_id: Optional[str] = None
    ) -> ApiResponse:
        """POST /api/{entity}/batch-delete with ``{"ids": [...]}``"""

        def handler(s: Services) -> Dict[str, List[str]]:
            ids = body.get("ids") if isinstance(body, dict) else body
            if not isinstance(ids, list):
                raise RequestValidationError.for_field("ids", "Must be a list of ids")
            result = s.trash.batch_permanent_delete(actor, _entity(entity), ids, company_id)
            return result.to_dict()

        return self._handle(200, handler)

    def cleanup(self, actor: Actor) -> ApiResponse:
        """POST /api/trash/cleanup"""

        def handler(s: Services) -> Dict[str, Any]:
            report = s.sweeper.trigger(actor)
            return {"purged": report.purged, "total": report.total}

        return self._handle(200, handler)

    # QR codes

    def claim_qr(
        self, actor: Actor, qr_id: str, body: Any, company_id: Optional[str] = None
    ) -> ApiResponse:
        """POST /api/qr-codes/:id/claim with ``{"cageId": ...}``"""
        return self._handle(
            200, lambda s: s.inventory.qr_workflow.claim(actor, qr_id, body, company_id)
        )

    def generate_blank_qr(
        self, actor: Actor, body: Any, company_id: Optional[str] = None
    ) -> ApiResponse:
        """POST /api/qr-codes/generate-blank with ``{"count": n}``"""
        return self._handle(
            201, lambda s: s.inventory.qr_workflow.generate_blank(actor, body, company_id)
        )

    def lookup_qr(
        self, actor: Actor, qr_data: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """GET /api/qr-codes/lookup?data=..."""
        return self._handle(
            200, lambda s: s.inventory.qr_workflow.lookup_by_data(actor, qr_data, company_id)
        )

    # Audit log

    def list_audit_logs(
        self,
        actor: Actor,
        company_id: Optional[str] = None,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ApiResponse:
        """GET /api/audit-logs"""

        def handler(s: Services) -> List[Dict[str, Any]]:
            query = AuditQuery(
                table_name=table_name,
                record_id=record_id,
                actions=[action.upper()] if action else None,
                limit=limit or self.config.audit_query_limit,
                offset=offset,
            )
            return [e.model_dump(mode="json") for e in s.audit.list_logs(actor, query, company_id)]

        return self._handle(200, handler)

    def entity_history(
        self, actor: Actor, entity: EntityRef, entity_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """GET /api/{entity}/:id/history"""
        return self._handle(
            200,
            lambda s: [
                e.model_dump(mode="json")
                for e in s.inventory.entity_history(actor, _entity(entity), entity_id, company_id)
            ],
        )

    # Dashboard and search

    def dashboard_stats(self, actor: Actor, company_id: Optional[str] = None) -> ApiResponse:
        """GET /api/dashboard/stats"""
        return self._handle(200, lambda s: s.inventory.dashboard_stats(actor, company_id))

    def search(self, actor: Actor, query: str, company_id: Optional[str] = None) -> ApiResponse:
        """GET /api/search?q=..."""
        return self._handle(200, lambda s: s.inventory.search(actor, query, company_id))

    def health_alerts(self, actor: Actor, company_id: Optional[str] = None) -> ApiResponse:
        """GET /api/animals/health-alerts"""
        return self._handle(200, lambda s: s.inventory.health_alerts(actor, company_id))

    def animals_in_cage(
        self, actor: Actor, cage_id: str, company_id: Optional[str] = None
    ) -> ApiResponse:
        """GET /api/cages/:id/animals"""
        return self._handle(
            200, lambda s: s.inventory.animals_in_cage(actor, cage_id, company_id)
        )
