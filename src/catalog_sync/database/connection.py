"""
Database connection and session management.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from catalog_sync.utils.config import get_config
from catalog_sync.utils.logger import get_logger

logger = get_logger(__name__)


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite engines get explicit BEGIN handling so that per-record SAVEPOINTs
    behave as on PostgreSQL; in-memory SQLite shares one connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_engine(
        database_url,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,
    )


def get_engine() -> Engine:
    """Get the process-wide engine, creating it from DATABASE_URL on first use."""
    global _engine
    if _engine is None:
        database = get_config().database
        _engine = create_db_engine(database.url, echo=database.echo)
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )
    return _session_factory


def configure_engine(engine: Engine) -> None:
    """Bind the process-wide session factory to an existing engine."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database session.

    Usage:
        with get_db_context() as db:
            tenant = db.get(Tenant, tenant_id)
    """
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """Initialize database - create all tables."""
    from catalog_sync.database.models import Base

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables created successfully")


def drop_db(engine: Optional[Engine] = None) -> None:
    """Drop all database tables (use with caution!)."""
    from catalog_sync.database.models import Base

    logger.warning("Dropping all database tables...")
    Base.metadata.drop_all(bind=engine or get_engine())
    logger.warning("All database tables dropped")
