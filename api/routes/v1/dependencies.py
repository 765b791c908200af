"""Dependencies wiring the social connection components into routes.

Settings and the adapter registry are built once per process. Everything
that holds a database session is built per request, so tests can swap the
session with ``app.dependency_overrides[get_session_dependency]`` and the
settings and adapters with overrides of ``get_settings`` and ``get_registry``.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from socialsync.config import SocialSettings, load_settings
from socialsync.connections import ConnectionOrchestrator
from socialsync.db.engine import get_session_dependency
from socialsync.platforms import AdapterRegistry
from socialsync.publishing import PublishScheduler
from socialsync.vault import TokenVault


@lru_cache(maxsize=1)
def get_settings() -> SocialSettings:
    """Settings loaded from the environment."""
    return load_settings()


@lru_cache(maxsize=1)
def get_registry() -> AdapterRegistry:
    """Adapter registry built from the process settings."""
    return AdapterRegistry(get_settings())


def get_vault(
    session: Annotated[Session, Depends(get_session_dependency)],
) -> TokenVault:
    return TokenVault(session)


def get_orchestrator(
    session: Annotated[Session, Depends(get_session_dependency)],
    settings: Annotated[SocialSettings, Depends(get_settings)],
    registry: Annotated[AdapterRegistry, Depends(get_registry)],
    vault: Annotated[TokenVault, Depends(get_vault)],
) -> ConnectionOrchestrator:
    return ConnectionOrchestrator(session, settings, registry, vault=vault)


def get_scheduler(
    session: Annotated[Session, Depends(get_session_dependency)],
    settings: Annotated[SocialSettings, Depends(get_settings)],
    registry: Annotated[AdapterRegistry, Depends(get_registry)],
    vault: Annotated[TokenVault, Depends(get_vault)],
) -> PublishScheduler:
    return PublishScheduler(session, settings, registry, vault=vault)
