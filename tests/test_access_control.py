"""Tests for roles, the capability table and tenant scoping."""

from types import SimpleNamespace

import pytest

from vivarium_toolkit.access_control import (
    SOFT_DELETABLE,
    UNSCOPED,
    Action,
    Actor,
    EntityType,
    Role,
    allowed_actions,
    authorize,
    can,
    require_permission,
    resolve_scope,
)
from vivarium_toolkit.exceptions import ForbiddenError, NoCompanyAssignedError


class TestResolveScope:
    """Test company scope resolution."""

    def test_admin_without_override_is_unscoped(self):
        admin = Actor(id="a", role=Role.ADMIN)
        assert resolve_scope(admin) is UNSCOPED

    def test_admin_with_override(self):
        """An Admin who enters a company view is confined to it."""
        admin = Actor(id="a", role=Role.ADMIN)
        assert resolve_scope(admin, "company-1") == "company-1"

    def test_admin_with_own_company_but_no_override(self):
        admin = Actor(id="a", role=Role.ADMIN, company_id="company-1")
        assert resolve_scope(admin) is UNSCOPED

    @pytest.mark.parametrize(
        "role", [Role.DIRECTOR, Role.SUCCESS_MANAGER, Role.EMPLOYEE]
    )
    def test_non_admin_scoped_to_own_company(self, role):
        actor = Actor(id="u", role=role, company_id="company-1")
        assert resolve_scope(actor) == "company-1"
        assert resolve_scope(actor, "company-1") == "company-1"

    def test_non_admin_without_company(self):
        actor = Actor(id="u", role=Role.EMPLOYEE)
        with pytest.raises(NoCompanyAssignedError) as exc_info:
            resolve_scope(actor)
        assert exc_info.value.status_code == 403

    def test_non_admin_cannot_enter_other_company(self):
        actor = Actor(id="u", role=Role.DIRECTOR, company_id="company-1")
        with pytest.raises(ForbiddenError):
            resolve_scope(actor, "company-2")

    def test_blocked_user_rejected(self):
        actor = Actor(id="u", role=Role.ADMIN, is_blocked=True)
        with pytest.raises(ForbiddenError, match="blocked"):
            resolve_scope(actor)


class TestCapabilityTable:
    """Test the (role, entity) capability table."""

    @pytest.mark.parametrize("role", list(Role))
    @pytest.mark.parametrize(
        "entity",
        [EntityType.ANIMAL, EntityType.CAGE, EntityType.STRAIN, EntityType.GENOTYPE],
    )
    def test_every_role_manages_inventory(self, role, entity):
        actions = allowed_actions(role, entity)
        for action in (
            Action.VIEW,
            Action.CREATE,
            Action.UPDATE,
            Action.SOFT_DELETE,
            Action.RESTORE,
            Action.VIEW_TRASH,
        ):
            assert action in actions

    @pytest.mark.parametrize(
        "entity",
        [EntityType.ANIMAL, EntityType.CAGE, EntityType.STRAIN, EntityType.GENOTYPE],
    )
    def test_permanent_delete_inventory(self, entity):
        """Admins and Directors purge inventory; others do not."""
        assert Action.PERMANENT_DELETE in allowed_actions(Role.ADMIN, entity)
        assert Action.PERMANENT_DELETE in allowed_actions(Role.DIRECTOR, entity)
        assert Action.PERMANENT_DELETE not in allowed_actions(Role.SUCCESS_MANAGER, entity)
        assert Action.PERMANENT_DELETE not in allowed_actions(Role.EMPLOYEE, entity)

    def test_only_admin_purges_qr_codes_and_users(self):
        for entity in (EntityType.QR_CODE, EntityType.USER):
            assert Action.PERMANENT_DELETE in allowed_actions(Role.ADMIN, entity)
            assert Action.PERMANENT_DELETE not in allowed_actions(Role.DIRECTOR, entity)

    def test_user_management(self):
        assert Action.ASSIGN_ROLE in allowed_actions(Role.SUCCESS_MANAGER, EntityType.USER)
        assert Action.BLOCK in allowed_actions(Role.SUCCESS_MANAGER, EntityType.USER)
        assert Action.ASSIGN_COMPANY not in allowed_actions(
            Role.SUCCESS_MANAGER, EntityType.USER
        )
        assert allowed_actions(Role.DIRECTOR, EntityType.USER) == frozenset({Action.VIEW})
        assert allowed_actions(Role.EMPLOYEE, EntityType.USER) == frozenset()

    def test_audit_and_cleanup_gates(self):
        for role in (Role.ADMIN, Role.SUCCESS_MANAGER):
            assert Action.VIEW_AUDIT in allowed_actions(role, EntityType.AUDIT_LOG)
            assert Action.CLEANUP in allowed_actions(role, EntityType.TRASH)
        for role in (Role.DIRECTOR, Role.EMPLOYEE):
            assert not allowed_actions(role, EntityType.AUDIT_LOG)
            assert not allowed_actions(role, EntityType.TRASH)

    def test_only_admin_creates_companies(self):
        assert Action.CREATE in allowed_actions(Role.ADMIN, EntityType.COMPANY)
        assert Action.CREATE not in allowed_actions(Role.DIRECTOR, EntityType.COMPANY)

    def test_assign_company_is_admin_only(self):
        for entity in SOFT_DELETABLE:
            assert Action.ASSIGN_COMPANY in allowed_actions(Role.ADMIN, entity)
            for role in (Role.DIRECTOR, Role.SUCCESS_MANAGER, Role.EMPLOYEE):
                assert Action.ASSIGN_COMPANY not in allowed_actions(role, entity)


class TestAuthorize:
    """Test the single authorization check."""

    def test_allowed(self):
        actor = Actor(id="u", role=Role.DIRECTOR, company_id="c")
        authorize(actor, Action.PERMANENT_DELETE, EntityType.CAGE)

    def test_denied(self):
        actor = Actor(id="u", role=Role.EMPLOYEE, company_id="c")
        with pytest.raises(ForbiddenError) as exc_info:
            authorize(actor, Action.PERMANENT_DELETE, EntityType.CAGE)
        assert exc_info.value.status_code == 403
        assert "Employee" in exc_info.value.message

    def test_blocked_actor_can_do_nothing(self):
        actor = Actor(id="u", role=Role.ADMIN, is_blocked=True)
        assert not can(actor, Action.VIEW, EntityType.CAGE)
        with pytest.raises(ForbiddenError, match="blocked"):
            authorize(actor, Action.VIEW, EntityType.CAGE)

    def test_require_permission_decorator(self):
        calls = []

        @require_permission(Action.CLEANUP, EntityType.TRASH)
        def run(actor):
            calls.append(actor.id)
            return "done"

        assert run(Actor(id="m", role=Role.SUCCESS_MANAGER, company_id="c")) == "done"
        with pytest.raises(ForbiddenError):
            run(actor=Actor(id="e", role=Role.EMPLOYEE, company_id="c"))
        assert calls == ["m"]

    def test_require_permission_without_actor(self):
        @require_permission(Action.VIEW, EntityType.CAGE)
        def view():
            return True

        with pytest.raises(ForbiddenError, match="Authentication required"):
            view()


class TestActor:
    """Test actor construction."""

    def test_from_user(self):
        user = SimpleNamespace(id="u1", role="Director", company_id="c1", is_blocked=False)
        actor = Actor.from_user(user)
        assert actor.role == Role.DIRECTOR
        assert actor.company_id == "c1"
        assert not actor.is_admin

    def test_entity_type_from_path(self):
        assert EntityType.from_path("qr-codes") == EntityType.QR_CODE
        assert EntityType.from_path("cages") == EntityType.CAGE
        with pytest.raises(ValueError):
            EntityType.from_path("rabbits")
