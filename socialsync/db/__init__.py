"""Database infrastructure for SQLModel + PostgreSQL.

Usage:
    from socialsync.db import get_session, engine

    with get_session() as session:
        account = session.get(SocialAccount, account_id)
"""

from socialsync.db.engine import engine, get_session, init_db

__all__ = [
    "engine",
    "get_session",
    "init_db",
]
