"""Pytest configuration and shared fixtures for the Vivarium toolkit."""

from types import SimpleNamespace

import pytest

from vivarium_toolkit.access_control import Actor, EntityType, Role
from vivarium_toolkit.api import InventoryAPI
from vivarium_toolkit.audit_trail import AuditLogger, SQLAuditStorage
from vivarium_toolkit.config import VivariumConfig, set_config
from vivarium_toolkit.database import create_db_engine, create_session_factory, init_db
from vivarium_toolkit.inventory import Company, InventoryService, build_repositories
from vivarium_toolkit.soft_delete import RetentionSweeper, SoftDeleteService


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "concurrency: test drives several sessions against one database"
    )


@pytest.fixture
def config():
    """Test configuration installed as the global one."""
    cfg = VivariumConfig(
        environment="test",
        database_url="sqlite://",
        qr_base_url="https://cages.example.org/",
    )
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def engine(config):
    """In-memory database with the full schema."""
    engine = create_db_engine(config.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repositories(db_session):
    return build_repositories(db_session)


@pytest.fixture
def audit(db_session, config):
    return AuditLogger(SQLAuditStorage(db_session), config)


@pytest.fixture
def inventory(db_session, audit, repositories, config):
    return InventoryService(db_session, audit, repositories, config)


@pytest.fixture
def trash(db_session, audit, repositories, config):
    return SoftDeleteService(db_session, audit, repositories, config)


@pytest.fixture
def sweeper(db_session, audit, repositories, config):
    return RetentionSweeper(db_session, audit, repositories, config)


@pytest.fixture
def api(session_factory, config):
    return InventoryAPI(session_factory, config)


@pytest.fixture
def companies(db_session):
    """Two tenants, A and B."""
    acme = Company(name="Acme Labs")
    globex = Company(name="Globex Bio")
    db_session.add_all([acme, globex])
    db_session.commit()
    return SimpleNamespace(a=acme.id, b=globex.id)


@pytest.fixture
def actors(companies):
    """One actor per role in company A, plus an employee of company B."""
    return SimpleNamespace(
        admin=Actor(id="admin-1", role=Role.ADMIN),
        director=Actor(id="director-a", role=Role.DIRECTOR, company_id=companies.a),
        manager=Actor(id="manager-a", role=Role.SUCCESS_MANAGER, company_id=companies.a),
        employee=Actor(id="employee-a", role=Role.EMPLOYEE, company_id=companies.a),
        employee_b=Actor(id="employee-b", role=Role.EMPLOYEE, company_id=companies.b),
        manager_b=Actor(id="manager-b", role=Role.SUCCESS_MANAGER, company_id=companies.b),
    )


@pytest.fixture
def make_cage(inventory, actors):
    """Factory creating a cage through the service."""

    def _make(number, actor=None, **fields):
        body = {"cageNumber": number, "roomNumber": "BB00028", "location": "Rack 3"}
        body.update(fields)
        return inventory.create(actor or actors.employee, EntityType.CAGE, body)

    return _make


@pytest.fixture
def make_animal(inventory, actors):
    """Factory creating an animal through the service."""

    def _make(number, actor=None, **fields):
        body = {"animalNumber": number, "breed": "C57BL/6"}
        body.update(fields)
        return inventory.create(actor or actors.employee, EntityType.ANIMAL, body)

    return _make
