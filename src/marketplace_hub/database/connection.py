"""
Database connection and session management.

Engines and session factories are created explicitly and handed to the
services that need them; nothing here holds module-level state.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from marketplace_hub.database.models import Base
from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(database_url: str, pool_size: int = 20, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine.

    SQLite URLs (used by tests and local runs) get a single shared
    connection so in-memory databases are visible from every thread.

    Args:
        database_url: SQLAlchemy database URL
        pool_size: Connection pool size for server databases
        echo: Log SQL statements

    Returns:
        Configured engine
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for a unit of work.

    Usage:
        with session_scope(factory) as db:
            company = db.query(Company).first()

    Commits on success, rolls back and re-raises on error, always closes.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Initialize database - create all tables."""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def drop_db(engine: Engine) -> None:
    """Drop all database tables (use with caution!)."""
    logger.warning("Dropping all database tables...")
    Base.metadata.drop_all(bind=engine)
    logger.warning("All database tables dropped")


def check_database(engine: Engine) -> bool:
    """Liveness probe: True when a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
