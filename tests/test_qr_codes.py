"""
Tests for the QR code workflow.

Tests cover blank generation, the one-time claim, cage labels and lookup
by scanned data, including two sessions racing for the same code.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from vivarium_toolkit.access_control import Actor, EntityType, Role
from vivarium_toolkit.audit_trail import AuditQuery
from vivarium_toolkit.database import create_db_engine, create_session_factory, init_db
from vivarium_toolkit.exceptions import (
    AlreadyClaimedError,
    ForbiddenError,
    NotFoundError,
    RequestValidationError,
)
from vivarium_toolkit.inventory import Cage, Company, QrCode, build_repositories
from vivarium_toolkit.inventory import qr_codes as qr_module
from vivarium_toolkit.inventory.qr_codes import PLACEHOLDER_DATA

BASE_URL = "https://cages.example.org"


@pytest.fixture
def workflow(inventory):
    return inventory.qr_workflow


class TestGenerateBlank:
    """Test blank QR code generation."""

    def test_generates_self_referencing_codes(self, workflow, actors, db_session, companies):
        codes = workflow.generate_blank(actors.employee, 3)

        assert len(codes) == 3
        for code in codes:
            assert code["is_blank"] is True
            assert code["cage_id"] is None
            assert code["claimed_at"] is None
            assert code["company_id"] == companies.a
            assert code["generated_by"] == actors.employee.id
            assert code["qr_data"] == f"{BASE_URL}/qr/blank/{code['id']}"
        assert len({code["qr_data"] for code in codes}) == 3

        stored = db_session.scalars(select(QrCode.qr_data)).all()
        assert PLACEHOLDER_DATA not in stored

    def test_accepts_request_body(self, workflow, actors):
        assert len(workflow.generate_blank(actors.employee, {"count": 2})) == 2

    @pytest.mark.parametrize("count", [0, -1, 21, "many"])
    def test_count_bounds(self, workflow, actors, db_session, count):
        with pytest.raises(RequestValidationError):
            workflow.generate_blank(actors.employee, count)
        assert db_session.scalar(select(func.count()).select_from(QrCode)) == 0

    def test_each_code_audited(self, workflow, audit, actors):
        codes = workflow.generate_blank(actors.employee, 2)
        entries = audit.list_logs(actors.admin, AuditQuery(actions=["GENERATE_BLANK_QR"]))
        assert {e.record_id for e in entries} == {c["id"] for c in codes}

    def test_admin_must_pick_company(self, workflow, actors, companies):
        with pytest.raises(RequestValidationError):
            workflow.generate_blank(actors.admin, 1)

        [code] = workflow.generate_blank(actors.admin, 1, company_id=companies.b)
        assert code["company_id"] == companies.b

        [code] = workflow.generate_blank(actors.admin, 1, company_override=companies.a)
        assert code["company_id"] == companies.a

    def test_admin_unknown_company(self, workflow, actors, companies):
        with pytest.raises(RequestValidationError):
            workflow.generate_blank(actors.admin, 1, company_id="no-such-company")

    def test_failure_keeps_earlier_codes(self, workflow, actors, db_session):
        """A failing item rolls back its own placeholder only."""
        calls = []
        real = qr_module.blank_qr_data

        def flaky(base_url, qr_id):
            calls.append(qr_id)
            if len(calls) == 3:
                raise RuntimeError("printer queue unavailable")
            return real(base_url, qr_id)

        with patch.object(qr_module, "blank_qr_data", side_effect=flaky):
            with pytest.raises(RuntimeError):
                workflow.generate_blank(actors.employee, 5)

        stored = db_session.scalars(select(QrCode)).all()
        assert len(stored) == 2
        assert all(qr.qr_data != PLACEHOLDER_DATA for qr in stored)

    def test_failed_commit_leaves_no_placeholder(self, workflow, actors, db_session):
        with patch.object(db_session, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(SQLAlchemyError):
                workflow.generate_blank(actors.employee, 2)

        assert db_session.scalars(select(QrCode)).all() == []


class TestClaim:
    """Test the unclaimed to claimed transition."""

    @pytest.fixture
    def blank(self, workflow, actors):
        return workflow.generate_blank(actors.employee, 1)[0]

    def test_claim(self, workflow, blank, make_cage, actors, audit):
        cage = make_cage("C-1")

        claimed = workflow.claim(actors.employee, blank["id"], {"cageId": cage["id"]})

        assert claimed["cage_id"] == cage["id"]
        assert claimed["claimed_by"] == actors.employee.id
        assert claimed["claimed_at"] is not None
        assert claimed["is_blank"] is True
        assert claimed["qr_data"] == blank["qr_data"]

        [entry] = audit.list_logs(actors.admin, AuditQuery(actions=["CLAIM_QR"]))
        assert entry.record_id == blank["id"]
        assert entry.changes["cage_id"] == cage["id"]

    def test_claim_twice(self, workflow, blank, make_cage, actors):
        first = make_cage("C-1")
        second = make_cage("C-2")
        workflow.claim(actors.employee, blank["id"], first["id"])

        with pytest.raises(AlreadyClaimedError) as exc_info:
            workflow.claim(actors.director, blank["id"], {"cageId": second["id"]})
        assert exc_info.value.status_code == 409

    def test_claim_requires_cage_id(self, workflow, blank, actors):
        with pytest.raises(RequestValidationError):
            workflow.claim(actors.employee, blank["id"], {})

    def test_claim_unknown_cage(self, workflow, blank, actors):
        with pytest.raises(NotFoundError):
            workflow.claim(actors.employee, blank["id"], {"cageId": "missing"})

    def test_claim_other_company_code(self, workflow, blank, make_cage, actors):
        cage = make_cage("B-1", actor=actors.employee_b)
        with pytest.raises(NotFoundError):
            workflow.claim(actors.employee_b, blank["id"], {"cageId": cage["id"]})

    def test_admin_cannot_cross_companies(self, workflow, blank, make_cage, actors):
        cage = make_cage("B-1", actor=actors.employee_b)
        with pytest.raises(RequestValidationError):
            workflow.claim(actors.admin, blank["id"], {"cageId": cage["id"]})

    def test_claim_deleted_code(self, workflow, trash, blank, make_cage, actors):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.QR_CODE, blank["id"])
        with pytest.raises(NotFoundError):
            workflow.claim(actors.employee, blank["id"], {"cageId": cage["id"]})

    @pytest.mark.concurrency
    def test_claim_race(self, tmp_path, config):
        """Two sessions that both saw the code unclaimed: exactly one wins."""
        url = f"sqlite:///{tmp_path / 'race.db'}"
        engine = create_db_engine(url)
        init_db(engine)
        factory = create_session_factory(engine)

        with factory() as setup:
            company = Company(name="Race Labs")
            setup.add(company)
            setup.flush()
            cages = [
                Cage(
                    company_id=company.id,
                    cage_number=f"R-{n}",
                    room_number="R",
                    location="Rack",
                )
                for n in (1, 2)
            ]
            qr = QrCode(company_id=company.id, qr_data="race", is_blank=True)
            setup.add_all([*cages, qr])
            setup.commit()
            company_id, qr_id = company.id, qr.id
            cage_ids = [c.id for c in cages]

        first, second = factory(), factory()
        try:
            repo_1 = build_repositories(first)[EntityType.QR_CODE]
            repo_2 = build_repositories(second)[EntityType.QR_CODE]
            assert repo_1.get(qr_id, company_id).cage_id is None
            assert repo_2.get(qr_id, company_id).cage_id is None

            repo_1.claim(qr_id, cage_ids[0], "user-1", company_id)
            first.commit()
            with pytest.raises(AlreadyClaimedError):
                repo_2.claim(qr_id, cage_ids[1], "user-2", company_id)
            second.rollback()
        finally:
            first.close()
            second.close()

        with factory() as check:
            stored = check.get(QrCode, qr_id)
            assert stored.cage_id == cage_ids[0]
            assert stored.claimed_by == "user-1"
        engine.dispose()


class TestCageLabels:
    """Test QR codes created for an existing cage and lookup by data."""

    def test_create_for_cage(self, inventory, make_cage, actors):
        cage = make_cage("C-1")

        qr = inventory.create(actors.employee, EntityType.QR_CODE, {"cageId": cage["id"]})

        assert qr["qr_data"] == f"{BASE_URL}/qr/cage/{cage['id']}"
        assert qr["cage_id"] == cage["id"]
        assert qr["is_blank"] is False
        assert qr["claimed_by"] == actors.employee.id

    def test_create_for_foreign_cage(self, inventory, make_cage, actors):
        cage = make_cage("B-1", actor=actors.employee_b)
        with pytest.raises(NotFoundError):
            inventory.create(actors.employee, EntityType.QR_CODE, {"cageId": cage["id"]})

    def test_lookup_claimed(self, workflow, make_cage, actors):
        cage = make_cage("C-1")
        [blank] = workflow.generate_blank(actors.employee, 1)
        workflow.claim(actors.employee, blank["id"], cage["id"])

        found = workflow.lookup_by_data(actors.employee, f" {blank['qr_data']} ")

        assert found["id"] == blank["id"]
        assert found["cage"]["cage_number"] == "C-1"

    def test_lookup_unclaimed(self, workflow, actors):
        [blank] = workflow.generate_blank(actors.employee, 1)
        assert workflow.lookup_by_data(actors.employee, blank["qr_data"])["cage"] is None

    def test_lookup_is_scoped(self, workflow, actors):
        [blank] = workflow.generate_blank(actors.employee, 1)
        with pytest.raises(NotFoundError):
            workflow.lookup_by_data(actors.employee_b, blank["qr_data"])

    def test_blocked_user(self, workflow, actors):
        blocked = Actor(id="blocked", role=Role.EMPLOYEE, company_id="x", is_blocked=True)
        with pytest.raises(ForbiddenError):
            workflow.generate_blank(blocked, 1)
