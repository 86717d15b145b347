"""Database connection and session management for the Guest Payment service."""

from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from guest_payment.config import settings

# Base class for all ORM models
Base = declarative_base()


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine with connection pooling.

    Args:
        database_url: Database connection URL. If None, uses settings.database_url

    Returns:
        Configured SQLAlchemy engine
    """
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.debug)

    engine = create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
    )

    @event.listens_for(engine, "connect")
    def set_postgresql_session(dbapi_conn, connection_record):  # type: ignore
        cursor = dbapi_conn.cursor()
        cursor.execute("SET timezone='UTC'")
        cursor.execute("SET statement_timeout='30000'")
        cursor.close()

    return engine


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine, created on first use."""
    return create_db_engine()


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db(engine: Engine | None = None) -> None:
    """
    Initialize database schema (create all tables).

    WARNING: This should only be used for testing. In production, use Alembic migrations.
    """
    from guest_payment.infrastructure import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
