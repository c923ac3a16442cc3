"""
Tests for soft delete functionality.

Tests cover the mixin constraints, retention arithmetic, the scoped
repository state transitions, and the trash service policy.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from vivarium_toolkit.access_control import UNSCOPED, EntityType
from vivarium_toolkit.audit_trail import AuditQuery
from vivarium_toolkit.exceptions import (
    ForbiddenError,
    NotFoundError,
    RequestValidationError,
)
from vivarium_toolkit.inventory import Cage
from vivarium_toolkit.soft_delete import (
    AlreadyDeletedException,
    BatchDeleteRequest,
    NotDeletedException,
    RetentionPolicy,
)


class TestSoftDeleteMixin:
    """Test the soft delete columns and their constraint."""

    def test_deleted_at_requires_deleted_by(self, db_session, companies):
        cage = Cage(
            company_id=companies.a,
            cage_number="C-1",
            room_number="R1",
            location="Rack 1",
            deleted_at=datetime(2024, 5, 1),
        )
        db_session.add(cage)
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_is_deleted(self):
        cage = Cage(cage_number="C-1", room_number="R1", location="Rack 1")
        assert not cage.is_deleted
        cage.deleted_at = datetime(2024, 5, 1)
        assert cage.is_deleted


class TestRetentionPolicy:
    """Test trash retention arithmetic."""

    def test_purge_date(self):
        policy = RetentionPolicy(retention_days=10)
        deleted = datetime(2024, 5, 1, 12, 0)
        assert policy.purge_date(deleted) == datetime(2024, 5, 11, 12, 0)

    def test_days_until_purge_rounds_up(self):
        policy = RetentionPolicy(retention_days=10)
        now = datetime(2024, 5, 10, 0, 0)
        deleted = now - timedelta(days=9, hours=12)
        assert policy.days_until_purge(deleted, now) == 1
        assert policy.days_until_purge(now, now) == 10
        assert policy.days_until_purge(now - timedelta(seconds=1), now) == 10

    def test_days_until_purge_after_expiry(self):
        policy = RetentionPolicy(retention_days=10)
        now = datetime(2024, 5, 20)
        assert policy.days_until_purge(now - timedelta(days=12), now) <= 0

    def test_cutoff(self):
        policy = RetentionPolicy(retention_days=10)
        assert policy.cutoff(datetime(2024, 5, 20, 8, 30)) == datetime(2024, 5, 10, 8, 30)

    def test_retention_must_be_positive(self):
        with pytest.raises(ValueError):
            RetentionPolicy(retention_days=0)


class TestBatchDeleteRequest:
    """Test batch request validation."""

    def test_ids_are_cleaned(self):
        request = BatchDeleteRequest(ids=["a", " b ", "a", ""])
        assert request.ids == ["a", "b"]

    @pytest.mark.parametrize("ids", [[], ["", "  "]])
    def test_empty_ids_rejected(self, ids):
        with pytest.raises(ValueError):
            BatchDeleteRequest(ids=ids)


class TestScopedRepository:
    """Test repository state transitions."""

    @pytest.fixture
    def cages(self, repositories):
        return repositories[EntityType.CAGE]

    @pytest.fixture
    def cage(self, cages, db_session, companies):
        cage = cages.create(
            {"cageNumber": "C-1", "roomNumber": "R1", "location": "Rack 1"}, companies.a
        )
        db_session.commit()
        return cage

    def test_create_sets_owner_and_timestamps(self, cage, companies):
        assert cage.company_id == companies.a
        assert cage.created_at == cage.updated_at
        assert cage.deleted_at is None

    def test_unscoped_create_rejected(self, cages):
        with pytest.raises(RequestValidationError) as exc_info:
            cages.create({"cageNumber": "C-2", "roomNumber": "R", "location": "L"}, UNSCOPED)
        assert exc_info.value.errors[0]["field"] == "company_id"

    def test_get_out_of_scope_is_not_found(self, cages, cage, companies):
        assert cages.get(cage.id, companies.a).id == cage.id
        assert cages.get(cage.id, UNSCOPED).id == cage.id
        with pytest.raises(NotFoundError):
            cages.get(cage.id, companies.b)

    def test_soft_delete(self, cages, cage, companies):
        deleted = cages.soft_delete(cage.id, "user-1", companies.a)
        assert deleted.deleted_at is not None
        assert deleted.deleted_by == "user-1"
        with pytest.raises(NotFoundError):
            cages.get(cage.id, companies.a)
        assert [c.id for c in cages.list_deleted(companies.a)] == [cage.id]

    def test_soft_delete_twice(self, cages, cage, companies):
        cages.soft_delete(cage.id, "user-1", companies.a)
        with pytest.raises(AlreadyDeletedException):
            cages.soft_delete(cage.id, "user-1", companies.a)

    def test_soft_delete_other_company(self, cages, cage, companies):
        with pytest.raises(NotFoundError):
            cages.soft_delete(cage.id, "user-1", companies.b)
        assert cages.get(cage.id, companies.a).deleted_at is None

    def test_restore_active_row(self, cages, cage, companies):
        with pytest.raises(NotDeletedException):
            cages.restore(cage.id, companies.a)

    def test_permanent_delete_requires_trash(self, cages, cage, companies):
        with pytest.raises(NotDeletedException):
            cages.permanent_delete(cage.id, companies.a)

    def test_permanent_delete(self, cages, cage, companies, db_session):
        cages.soft_delete(cage.id, "user-1", companies.a)
        snapshot = cages.permanent_delete(cage.id, companies.a)
        db_session.commit()

        assert snapshot["cage_number"] == "C-1"
        assert cages.find(cage.id, UNSCOPED, include_deleted=True) is None

    def test_permanent_delete_respects_cutoff(self, cages, cage, companies):
        deleted = cages.soft_delete(cage.id, "user-1", companies.a)
        with pytest.raises(NotDeletedException):
            cages.permanent_delete(
                cage.id, UNSCOPED, deleted_before=deleted.deleted_at - timedelta(days=1)
            )
        assert cages.find(cage.id, UNSCOPED, include_deleted=True) is not None

    def test_unique_across_trash(self, cages, cage, companies, db_session):
        """A trashed row still owns its unique values."""
        cages.soft_delete(cage.id, "user-1", companies.a)
        db_session.commit()
        with pytest.raises(RequestValidationError) as exc_info:
            cages.create({"cageNumber": "C-1", "roomNumber": "R", "location": "L"}, companies.b)
        assert exc_info.value.errors[0]["field"] == "cage_number"

    def test_list_filters(self, cages, cage, companies, db_session):
        cages.create(
            {"cageNumber": "C-2", "roomNumber": "R2", "location": "Rack 2"}, companies.a
        )
        db_session.commit()

        rows = cages.list(companies.a, filters={"room_number": "R2"})
        assert [c.cage_number for c in rows] == ["C-2"]
        rows = cages.list(companies.a, filters={"room_number": ["R1", "R2"]})
        assert len(rows) == 2
        with pytest.raises(RequestValidationError):
            cages.list(companies.a, filters={"colour": "red"})


class TestSoftDeleteService:
    """Test the trash policy through the service."""

    def test_deleted_record_hidden_but_in_trash(self, inventory, trash, make_cage, actors):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])

        with pytest.raises(NotFoundError):
            inventory.get(actors.employee, EntityType.CAGE, cage["id"])
        assert cage["id"] not in [
            c["id"] for c in inventory.list(actors.employee, EntityType.CAGE)
        ]

        items = trash.list_trash(actors.employee, EntityType.CAGE)
        assert len(items) == 1
        assert items[0].record["id"] == cage["id"]
        assert items[0].deleted_by == actors.employee.id
        assert items[0].days_left == 10
        assert not items[0].expiring_soon

    def test_trash_countdown_with_reference_time(self, trash, make_cage, actors):
        cage = make_cage("C-1")
        deleted = trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])
        deleted_at = datetime.fromisoformat(deleted["deleted_at"])

        later = deleted_at + timedelta(days=8)
        [item] = trash.list_trash(actors.employee, EntityType.CAGE, now=later)
        assert item.days_left == 2
        assert item.expiring_soon

    def test_trash_is_tenant_scoped(self, trash, make_cage, actors, companies):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])

        assert trash.list_trash(actors.employee_b, EntityType.CAGE) == []
        assert len(trash.list_trash(actors.admin, EntityType.CAGE)) == 1
        assert trash.list_trash(actors.admin, EntityType.CAGE, companies.b) == []

    def test_round_trip_changes_only_updated_at(self, inventory, trash, make_cage, actors):
        cage = make_cage("C-1", notes="breeding pair")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])
        restored = trash.restore(actors.employee, EntityType.CAGE, cage["id"])

        before = {k: v for k, v in cage.items() if k != "updated_at"}
        after = inventory.get(actors.employee, EntityType.CAGE, cage["id"])
        assert {k: v for k, v in after.items() if k != "updated_at"} == before
        assert restored["deleted_at"] is None
        assert restored["deleted_by"] is None

    def test_delete_twice_and_restore_active(self, trash, make_cage, actors):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])
        with pytest.raises(AlreadyDeletedException):
            trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])

        trash.restore(actors.employee, EntityType.CAGE, cage["id"])
        with pytest.raises(NotDeletedException):
            trash.restore(actors.employee, EntityType.CAGE, cage["id"])

    def test_restore_from_other_company(self, trash, make_cage, actors):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])
        with pytest.raises(NotFoundError):
            trash.restore(actors.employee_b, EntityType.CAGE, cage["id"])

    def test_employee_cannot_purge(self, trash, inventory, make_cage, actors, audit):
        """Employees may trash a cage; only a Director may purge it."""
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])

        with pytest.raises(ForbiddenError):
            trash.permanent_delete(actors.employee, EntityType.CAGE, cage["id"])

        trash.permanent_delete(actors.director, EntityType.CAGE, cage["id"])

        assert trash.list_trash(actors.director, EntityType.CAGE) == []
        assert inventory.list(actors.director, EntityType.CAGE) == []
        purges = audit.list_logs(
            actors.admin,
            AuditQuery(record_id=cage["id"], actions=["PERMANENT_DELETE"]),
        )
        assert len(purges) == 1
        assert purges[0].user_id == actors.director.id
        assert purges[0].changes["cage_number"] == "C-1"

    def test_director_cannot_purge_qr_codes(self, trash, inventory, make_cage, actors):
        cage = make_cage("C-1")
        qr = inventory.create(actors.employee, EntityType.QR_CODE, {"cageId": cage["id"]})
        trash.soft_delete(actors.employee, EntityType.QR_CODE, qr["id"])

        with pytest.raises(ForbiddenError):
            trash.permanent_delete(actors.director, EntityType.QR_CODE, qr["id"])
        trash.permanent_delete(actors.admin, EntityType.QR_CODE, qr["id"])

    def test_cannot_delete_own_account(self, trash, actors):
        with pytest.raises(ForbiddenError, match="own account"):
            trash.soft_delete(actors.manager, EntityType.USER, actors.manager.id)

    def test_user_trash_needs_user_management(self, trash, actors):
        with pytest.raises(ForbiddenError):
            trash.list_trash(actors.director, EntityType.USER)
        assert trash.list_trash(actors.manager, EntityType.USER) == []


class TestBatchPermanentDelete:
    """Test batch purges with partial success."""

    def test_partial_success(self, trash, make_cage, actors):
        trashed = make_cage("C-1")
        active = make_cage("C-2")
        foreign = make_cage("B-1", actor=actors.employee_b)
        trash.soft_delete(actors.employee, EntityType.CAGE, trashed["id"])
        trash.soft_delete(actors.employee_b, EntityType.CAGE, foreign["id"])

        result = trash.batch_permanent_delete(
            actors.director,
            EntityType.CAGE,
            [trashed["id"], active["id"], foreign["id"], "missing"],
        )

        assert result.success == [trashed["id"]]
        assert result.failed == [active["id"], foreign["id"], "missing"]
        assert "not deleted" in result.errors[active["id"]]
        assert result.errors[foreign["id"]] == "Cage not found"
        assert len(trash.list_trash(actors.employee_b, EntityType.CAGE)) == 1

    def test_role_gate_applies_to_whole_batch(self, trash, make_cage, actors):
        cage = make_cage("C-1")
        trash.soft_delete(actors.employee, EntityType.CAGE, cage["id"])

        with pytest.raises(ForbiddenError):
            trash.batch_permanent_delete(actors.employee, EntityType.CAGE, [cage["id"]])
        assert len(trash.list_trash(actors.employee, EntityType.CAGE)) == 1

    def test_empty_batch_rejected(self, trash, actors):
        with pytest.raises(RequestValidationError):
            trash.batch_permanent_delete(actors.director, EntityType.CAGE, [])
