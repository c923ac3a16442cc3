"""
QR code workflow: blank generation, claiming and cage labels.

A blank QR code is printed before the cage it will label exists. Its data is
a URL containing the code's own id, so it is created in two steps: insert a
row with placeholder data to obtain the id, then write the final URL. Both
steps share one transaction; if the second fails the rollback discards the
placeholder row. A QR
code moves from unclaimed to claimed exactly once and is never unclaimed.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..access_control import (
    UNSCOPED,
    Action,
    Actor,
    EntityType,
    Scope,
    authorize,
    resolve_scope,
)
from ..audit_trail import AuditAction, AuditLogger
from ..config import VivariumConfig, get_config
from ..database import utcnow
from ..exceptions import NotFoundError, RequestValidationError
from ..soft_delete.repository import ScopedRepository
from .repositories import CageRepository, QrCodeRepository
from .schemas import ClaimQrRequest, GenerateBlankRequest, parse_request

logger = logging.getLogger(__name__)

PLACEHOLDER_DATA = "pending"


def blank_qr_data(base_url: str, qr_id: str) -> str:
    return f"{base_url}/qr/blank/{qr_id}"


def cage_qr_data(base_url: str, cage_id: str) -> str:
    return f"{base_url}/qr/cage/{cage_id}"


class QrCodeWorkflow:
    """
    Blank QR generation and the unclaimed -> claimed transition.

    Example:
        >>> workflow = QrCodeWorkflow(session, audit, build_repositories(session))
        >>> codes = workflow.generate_blank(actor, 3)
        >>> workflow.claim(actor, codes[0]["id"], {"cageId": cage.id})
    """

    def __init__(
        self,
        session: Session,
        audit_logger: AuditLogger,
        repositories: Mapping[EntityType, ScopedRepository[Any]],
        config: Optional[VivariumConfig] = None,
    ):
        self.session = session
        self.audit_logger = audit_logger
        self.qr_codes: QrCodeRepository = repositories[EntityType.QR_CODE]  # type: ignore[assignment]
        self.cages: CageRepository = repositories[EntityType.CAGE]  # type: ignore[assignment]
        self.config = config or get_config()

    def claim(
        self,
        actor: Actor,
        qr_id: str,
        body: Any,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Bind an unclaimed QR code to a cage.

        Args:
            actor: User scanning the code
            qr_id: QR code to claim
            body: ``{"cageId": ...}`` or a cage id string
            company_override: Company an Admin has entered

        Returns:
            The claimed QR code

        Raises:
            NotFoundError: QR code or cage not visible to the actor
            AlreadyClaimedError: Code is already bound to a cage
            RequestValidationError: Missing cage id, or the cage belongs to
                another company than the code
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.CLAIM_QR, EntityType.QR_CODE)
        if isinstance(body, str):
            body = {"cage_id": body}
        request = parse_request(ClaimQrRequest, body)

        qr = self.qr_codes.get(qr_id, scope)
        cage = self.cages.get(request.cage_id, scope)
        if cage.company_id != qr.company_id:
            raise RequestValidationError.for_field(
                "cage_id", "Cage belongs to a different company than the QR code"
            )

        qr = self.qr_codes.claim(qr_id, cage.id, actor.id, scope)
        self.session.commit()

        logger.info(f"QR code {qr_id} claimed for cage {cage.cage_number} by {actor.id}")
        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.CLAIM_QR,
            table_name=EntityType.QR_CODE.value,
            record_id=qr_id,
            changes={
                "cage_id": qr.cage_id,
                "claimed_at": qr.claimed_at,
                "claimed_by": qr.claimed_by,
            },
            company_id=qr.company_id,
        )
        return qr.to_dict()

    def generate_blank(
        self,
        actor: Actor,
        count: Any,
        company_override: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Create ``count`` unclaimed QR codes.

        Each code is committed on its own. A failure stops the loop and
        propagates, leaving the codes created before it in place.

        Args:
            actor: User generating the codes
            count: Number of codes, between 1 and the configured maximum
            company_override: Company an Admin has entered
            company_id: Target company for an Admin outside any company view

        Returns:
            The created QR codes
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.GENERATE_BLANK_QR, EntityType.QR_CODE)
        if not isinstance(count, dict):
            count = {"count": count}
        request = parse_request(GenerateBlankRequest, count)
        if request.count > self.config.blank_qr_max_batch:
            raise RequestValidationError.for_field(
                "count", f"Must be between 1 and {self.config.blank_qr_max_batch}"
            )
        owner = self._owner(actor, scope, company_id)

        created = [self._create_blank(actor, owner) for _ in range(request.count)]

        logger.info(f"Generated {len(created)} blank QR codes for company {owner}")
        return created

    def _create_blank(self, actor: Actor, company_id: str) -> Dict[str, Any]:
        try:
            qr = self.qr_codes.add_row(
                {
                    "qr_data": PLACEHOLDER_DATA,
                    "is_blank": True,
                    "generated_by": actor.id,
                },
                company_id=company_id,
            )
            qr.qr_data = blank_qr_data(self.config.qr_base_url, qr.id)
            self.session.commit()
        except Exception:
            # Drop the placeholder row of this item only
            self.session.rollback()
            logger.error("Blank QR generation failed, placeholder discarded")
            raise

        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.GENERATE_BLANK_QR,
            table_name=EntityType.QR_CODE.value,
            record_id=qr.id,
            changes={"qr_data": qr.qr_data, "is_blank": True},
            company_id=company_id,
        )
        return qr.to_dict()

    def create_for_cage(
        self,
        actor: Actor,
        cage_id: str,
        company_override: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a QR code already bound to an existing cage.

        Raises:
            NotFoundError: Cage not visible to the actor
        """
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.CREATE, EntityType.QR_CODE)
        cage = self.cages.get(cage_id, scope)

        now = utcnow()
        qr = self.qr_codes.add_row(
            {
                "qr_data": cage_qr_data(self.config.qr_base_url, cage.id),
                "is_blank": False,
                "generated_by": actor.id,
                "cage_id": cage.id,
                "claimed_at": now,
                "claimed_by": actor.id,
            },
            company_id=cage.company_id,
        )
        self.session.commit()

        self.audit_logger.record(
            actor_id=actor.id,
            action=AuditAction.CREATE,
            table_name=EntityType.QR_CODE.value,
            record_id=qr.id,
            changes=qr.to_dict(),
            company_id=qr.company_id,
        )
        return qr.to_dict()

    def lookup_by_data(
        self, actor: Actor, qr_data: str, company_override: Optional[str] = None
    ) -> Dict[str, Any]:
        """Resolve scanned QR data to its code and, once claimed, its cage."""
        scope = resolve_scope(actor, company_override)
        authorize(actor, Action.VIEW, EntityType.QR_CODE)

        qr = self.qr_codes.find_by_data(qr_data.strip(), scope)
        if qr is None:
            raise NotFoundError(EntityType.QR_CODE.label)

        result = qr.to_dict()
        cage = self.cages.find(qr.cage_id, scope) if qr.cage_id else None
        result["cage"] = cage.to_dict() if cage else None
        return result

    def _owner(self, actor: Actor, scope: Scope, company_id: Optional[str]) -> str:
        """Company that will own newly generated codes."""
        if scope is not UNSCOPED:
            return scope  # type: ignore[return-value]
        authorize(actor, Action.ASSIGN_COMPANY, EntityType.QR_CODE)
        if not company_id:
            raise RequestValidationError.for_field(
                "company_id", "Select a company before generating QR codes"
            )
        self.qr_codes.ensure_company(company_id)
        return company_id

