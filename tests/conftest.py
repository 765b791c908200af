"""Shared fixtures: in-memory database, settings, a fake platform API and an API client."""

import os

# Set test environment variables before any project imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "test-token-encryption-key")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-for-unit-tests")
os.environ.setdefault("SCHEDULER_TOKEN", "test-scheduler-token")
os.environ.setdefault("LOG_JSON", "false")

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional, Union
from uuid import uuid4

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from socialsync.config import PlatformCredentials, SocialSettings
from socialsync.db.models import (
    Organization,
    Post,
    Profile,
    SocialAccount,
    SocialPlatform,
    UserRole,
    utcnow,
)
from socialsync.platforms import AccountIdentity, AdapterRegistry, TokenResult
from socialsync.vault import TokenVault

CALLBACK_BASE = "https://api.test/api/v1/social/callback"
APP_REDIRECT = "https://app.test/accounts"


# =============================================================================
# Fake platform HTTP
# =============================================================================


Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakePlatformAPI:
    """Queue of canned responses keyed by method and URL (query ignored).

    The last queued response for a route is reused once the queue drains.
    Every request is recorded in ``requests``.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _key(method: str, url: Union[str, httpx.URL]) -> tuple[str, str]:
        url = httpx.URL(url)
        return method.upper(), f"{url.scheme}://{url.host}{url.path}"

    def add(self, method: str, url: str, *responses: Responder) -> "FakePlatformAPI":
        self.routes.setdefault(self._key(method, url), []).extend(responses)
        return self

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        key = self._key(method, url)
        return [r for r in self.requests if self._key(r.method, r.url) == key]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(self._key(request.method, request.url))
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {request.url}"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder) and not isinstance(responder, httpx.Response):
            return responder(request)
        return responder


@pytest.fixture
def platform_api() -> FakePlatformAPI:
    return FakePlatformAPI()


# =============================================================================
# Settings and components
# =============================================================================


def make_settings(**overrides) -> SocialSettings:
    creds = PlatformCredentials(
        client_id="test-client-id",
        client_secret="test-client-secret",
        callback_base_url=CALLBACK_BASE,
    )
    values = dict(
        credentials={p.value: creds for p in SocialPlatform},
        default_redirect_url=APP_REDIRECT,
        retry_base_delay_seconds=60.0,
        retry_max_delay_seconds=3600.0,
    )
    values.update(overrides)
    return SocialSettings(**values)


@pytest.fixture
def settings() -> SocialSettings:
    return make_settings()


@pytest.fixture
def registry(settings, platform_api) -> AdapterRegistry:
    return AdapterRegistry(settings, transport=httpx.MockTransport(platform_api))


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def test_session(test_engine):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def vault(test_session) -> TokenVault:
    return TokenVault(test_session)


# =============================================================================
# Data fixtures
# =============================================================================


@pytest.fixture
def organization(test_session) -> Organization:
    org = Organization(name="Acme Agency", slug=f"acme-{uuid4().hex[:8]}")
    test_session.add(org)
    test_session.commit()
    test_session.refresh(org)
    return org


@pytest.fixture
def profile(test_session, organization) -> Profile:
    profile = Profile(
        user_id=uuid4(),
        organization_id=organization.id,
        role=UserRole.editor,
        first_name="Dana",
    )
    test_session.add(profile)
    test_session.commit()
    test_session.refresh(profile)
    return profile


@pytest.fixture
def post(test_session, organization, profile) -> Post:
    post = Post(
        organization_id=organization.id,
        created_by=profile.user_id,
        title="Launch",
        content="We are live",
        hashtags=["launch", "#product"],
        platforms=[p.value for p in SocialPlatform],
    )
    test_session.add(post)
    test_session.commit()
    test_session.refresh(post)
    return post


@pytest.fixture
def make_account(vault, organization):
    """Factory storing a connected account through the vault."""

    def _make(
        platform: SocialPlatform = SocialPlatform.linkedin,
        external_id: str = "member-1",
        access_token: str = "access-1",
        refresh_token: Optional[str] = "refresh-1",
        expires_in: Optional[int] = 3600,
        page_id: Optional[str] = None,
        page_access_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SocialAccount:
        return vault.upsert_account(
            organization.id,
            platform,
            AccountIdentity(
                external_id=external_id,
                display_name=f"{platform.value} account",
                page_id=page_id,
                page_access_token=page_access_token,
            ),
            TokenResult(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=expires_in,
            ),
            now=now or utcnow(),
        )

    return _make


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)


# =============================================================================
# API
# =============================================================================


class SyncTestClient:
    """Synchronous wrapper around httpx AsyncClient for testing."""

    def __init__(self, app, raise_app_exceptions: bool = True):
        self.app = app
        self.transport = httpx.ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        self.base_url = "http://testserver"

    def _run_async(self, coro):
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(coro)
        finally:
            loop.close()

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(transport=self.transport, base_url=self.base_url) as client:
            return await client.request(method, url, **kwargs)

    def get(self, url: str, **kwargs):
        return self._run_async(self._request("GET", url, **kwargs))

    def post(self, url: str, **kwargs):
        return self._run_async(self._request("POST", url, **kwargs))

    def delete(self, url: str, **kwargs):
        return self._run_async(self._request("DELETE", url, **kwargs))


@pytest.fixture
def api_client(test_session, settings, registry):
    """Client for the real app wired to the test database and fake platforms."""
    from api.main import app
    from api.routes.v1.dependencies import get_registry, get_settings
    from socialsync.db.engine import get_session_dependency

    def _session():
        yield test_session

    app.dependency_overrides[get_session_dependency] = _session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_registry] = lambda: registry
    yield SyncTestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(profile) -> dict[str, str]:
    from api.auth.jwt import create_access_token

    token = create_access_token({"sub": str(profile.user_id)})
    return {"Authorization": f"Bearer {token}"}
