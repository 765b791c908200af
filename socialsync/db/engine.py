"""SQLModel engine and session management.

This module provides:
- Database engine creation with connection pooling
- Session factory for dependency injection
- Database initialization utilities

PostgreSQL is the production database; SQLite URLs are accepted for tests.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from socialsync.config import DATABASE_URL


def build_engine(database_url: str = DATABASE_URL):
    """Create an engine with settings suited to the backend."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    # pool_pre_ping ensures connections are valid before use
    return create_engine(
        database_url,
        echo=False,  # Set to True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


engine = build_engine()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a database session.

    Usage:
        with get_session() as session:
            scheduler = PublishScheduler(session, settings)
            await scheduler.tick()

    Yields:
        SQLModel Session instance
    """
    with Session(engine) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


def get_session_dependency() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions.

    Usage in FastAPI:
        @router.get("/accounts")
        def list_accounts(session: Session = Depends(get_session_dependency)):
            ...
    """
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Initialize database tables.

    Creates all tables defined in SQLModel models.
    Should only be used for development/testing.
    Use Alembic migrations for production.
    """
    # Import all models to ensure they're registered with SQLModel
    from socialsync.db.models import (  # noqa: F401
        Organization,
        Profile,
        SocialAccount,
        OAuthState,
        Post,
        PostSchedule,
        PublishJob,
    )

    SQLModel.metadata.create_all(engine)
