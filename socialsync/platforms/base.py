"""Platform adapter interface and shared HTTP plumbing.

Each supported platform implements the same four capabilities:

- build_authorization_url: the consent-dialog URL for a state token
- exchange_code_for_token: authorization code -> TokenResult
- resolve_account_identity: TokenResult -> AccountIdentity
- publish: credentials + PublishContent -> external post id

Adapters receive their app credentials explicitly and never read the
process environment.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar, Optional
from urllib.parse import urlencode

import httpx

from socialsync.config import PlatformCredentials
from socialsync.db.models import Post, SocialPlatform
from socialsync.exceptions import (
    AuthExpiredError,
    ConfigurationError,
    PublishError,
    PublishNotSupportedError,
    TokenExchangeError,
)
from socialsync.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization URL plus any secret the callback will need (PKCE)."""

    url: str
    code_verifier: Optional[str] = None


@dataclass(frozen=True)
class TokenResult:
    """Tokens returned by a code exchange or refresh."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=int(self.expires_in))


@dataclass(frozen=True)
class AccountIdentity:
    """Canonical identity of a connected account."""

    external_id: str
    display_name: str
    page_id: Optional[str] = None
    page_access_token: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class PublishCredentials:
    """Decrypted credentials handed to an adapter for one publish call."""

    account_id: str
    access_token: str
    page_id: Optional[str] = None
    page_access_token: Optional[str] = None


@dataclass(frozen=True)
class PublishContent:
    """Platform-neutral content of one publish call."""

    text: str
    title: Optional[str] = None
    media_urls: list[str] = field(default_factory=list)
    link: Optional[str] = None

    @classmethod
    def from_post(cls, post: Post) -> "PublishContent":
        """Compose the outgoing text: body, hashtags, then call to action."""
        parts = [post.content.strip()]

        tags = [
            tag if tag.startswith("#") else f"#{tag}"
            for tag in (t.strip() for t in post.hashtags or [])
            if tag
        ]
        if tags:
            parts.append(" ".join(tags))

        cta = " ".join(p for p in (post.cta_text, post.cta_url) if p)
        if cta:
            parts.append(cta)

        return cls(
            text="\n\n".join(p for p in parts if p),
            title=post.title,
            media_urls=list(post.media_urls or []),
            link=post.cta_url,
        )


# =============================================================================
# Adapter base
# =============================================================================


class PlatformAdapter(ABC):
    """Base class for platform integrations.

    Subclasses set the class attributes and implement the HTTP calls that
    differ per platform. Publishing defaults to "not implemented", which the
    scheduler treats as a permanent failure.
    """

    platform: ClassVar[SocialPlatform]
    authorize_url: ClassVar[str]
    token_url: ClassVar[str]
    scopes: ClassVar[tuple[str, ...]] = ()
    scope_separator: ClassVar[str] = ","
    supports_refresh: ClassVar[bool] = False

    def __init__(
        self,
        credentials: PlatformCredentials,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.transport = transport

    @property
    def name(self) -> str:
        return self.platform.value

    @property
    def callback_url(self) -> str:
        return self.credentials.callback_url(self.name)

    def require_credentials(self) -> None:
        """Raise ConfigurationError when the app id or secret is missing."""
        if not self.credentials.is_configured:
            raise ConfigurationError(
                f"Missing client credentials for platform {self.name}",
                details={"platform": self.name},
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorization_params(self, state: str, callback_url: str) -> dict[str, str]:
        return {
            "response_type": "code",
            "client_id": self.credentials.client_id,
            "redirect_uri": callback_url,
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }

    def build_authorization_url(
        self, state: str, callback_url: Optional[str] = None
    ) -> AuthorizationRequest:
        """Build the consent URL for a state token."""
        self.require_credentials()
        params = self.authorization_params(state, callback_url or self.callback_url)
        return AuthorizationRequest(url=f"{self.authorize_url}?{urlencode(params)}")

    # -------------------------------------------------------------------------
    # Token exchange
    # -------------------------------------------------------------------------

    async def exchange_code_for_token(
        self,
        code: str,
        callback_url: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> TokenResult:
        """Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: Credentials missing
            TokenExchangeError: Platform rejected the code (payload passed through)
        """
        self.require_credentials()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": callback_url or self.callback_url,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        payload = await self._token_request(data)
        return self._token_result(payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        """Obtain a new access token from a refresh token.

        Raises:
            AuthExpiredError: Refresh unsupported or rejected
        """
        raise AuthExpiredError(f"Token refresh is not supported for {self.name}")

    async def _token_request(
        self, data: dict[str, str], auth: Optional[httpx.Auth] = None
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data=data,
                    auth=auth,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"{self.name} token exchange failed: {e}") from e

        payload = self._json(response)
        if response.status_code >= 400 or "error" in payload:
            raise TokenExchangeError(
                f"{self.name} token exchange failed: {response.text}",
                details={"platform": self.name, "status": response.status_code},
            )
        if not payload.get("access_token"):
            raise TokenExchangeError(
                f"{self.name} token exchange failed: no access_token in response"
            )
        return payload

    @staticmethod
    def _token_result(payload: dict[str, Any]) -> TokenResult:
        expires_in = payload.get("expires_in")
        return TokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=payload.get("scope"),
        )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @abstractmethod
    async def resolve_account_identity(self, tokens: TokenResult) -> AccountIdentity:
        """Resolve the canonical identity behind an access token."""

    async def _get_json(
        self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None
    ) -> dict[str, Any]:
        """GET used during the connect flow; failures become TokenExchangeError."""
        try:
            async with self._client() as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"{self.name} profile lookup failed: {e}") from e

        payload = self._json(response)
        if response.status_code >= 400 or "error" in payload:
            raise TokenExchangeError(
                f"{self.name} profile lookup failed: {response.text}",
                details={"platform": self.name, "status": response.status_code},
            )
        return payload

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self, credentials: PublishCredentials, content: PublishContent
    ) -> str:
        """Publish content and return the platform's post id."""
        raise PublishNotSupportedError(self.name)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a publish request, classifying transport and HTTP failures."""
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise PublishError(f"Timed out publishing to {self.name}: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise PublishError(f"Network error publishing to {self.name}: {e}", retryable=True) from e

        self.raise_for_publish(response)
        return response

    def raise_for_publish(self, response: httpx.Response) -> None:
        """Map an HTTP response to the retryable/permanent failure taxonomy.

        429 and 5xx are retryable. 401 means the credentials are no longer
        valid. Any other 4xx (missing permission, content rejected) is
        permanent.
        """
        status = response.status_code
        if status < 400:
            return

        message = f"{self.name} API error {status}: {response.text}"
        if status == 429:
            raise PublishError(
                message, retryable=True, retry_after=self._retry_after(response)
            )
        if status >= 500:
            raise PublishError(message, retryable=True)
        if status == 401:
            raise AuthExpiredError(message)
        raise PublishError(message, retryable=False)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("retry-after")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
