"""
Database plumbing: declarative base, engine and session factories.

Every request works in its own ``Session``; the engine's connection pool is
the only state shared between requests.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import VivariumConfig, get_config

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching how rows are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate an opaque primary key."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base for all toolkit tables."""

    def to_dict(self, exclude: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Args:
            exclude: Column names to leave out

        Returns:
            Dictionary of column values with datetimes as ISO strings
        """
        skipped = set(exclude)
        result: Dict[str, Any] = {}

        for column in self.__table__.columns:
            if column.name in skipped:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            result[column.name] = value

        return result


def create_db_engine(
    database_url: Optional[str] = None, echo: Optional[bool] = None
) -> Engine:
    """
    Create an engine with database-specific configuration.

    Args:
        database_url: Connection string, defaults to the configured one
        echo: Echo SQL, defaults to the configured value

    Returns:
        SQLAlchemy engine
    """
    config = get_config()
    url = database_url or config.database_url
    echo = config.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        # SQLite doesn't support pool_size and max_overflow
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # Share the single in-memory database across sessions
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def init_db(engine: Engine) -> None:
    """Create all tables known to the declarative base."""
    # Import model modules so their tables are registered on Base.metadata
    from .audit_trail import storage  # noqa: F401
    from .inventory import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ready on {engine.url.render_as_string()}")


def create_session_factory(
    engine: Optional[Engine] = None, config: Optional[VivariumConfig] = None
) -> sessionmaker:  # type: ignore[type-arg]
    """
    Create a session factory bound to an engine.

    Args:
        engine: Existing engine; one is created from config when omitted
        config: Configuration used to build the engine

    Returns:
        Session factory producing request-scoped sessions
    """
    if engine is None:
        cfg = config or get_config()
        engine = create_db_engine(cfg.database_url, cfg.database_echo)

    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
