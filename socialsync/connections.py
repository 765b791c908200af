"""Connection orchestrator: the OAuth connect flow as a state machine.

    Idle -> AwaitingAuthorization -> AwaitingCallback -> Exchanging -> Persisted
                                                      \\-> Failed

``begin_connection`` covers the first three states: it validates the
request, persists a state record and returns the consent URL.
``handle_callback`` covers the rest and never raises; every outcome is
reported as a ``CallbackOutcome`` the HTTP layer turns into a redirect.
``sync_account`` re-reads a connected account from its platform on demand.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse
from uuid import UUID

from sqlmodel import Session, select

from socialsync.config import SocialSettings
from socialsync.db.crypto import TokenDecryptionError
from socialsync.db.models import Profile, SocialAccount, SocialPlatform, utcnow
from socialsync.exceptions import (
    AuthExpiredError,
    InvalidStateError,
    NotFoundError,
    SocialSyncError,
    TokenExchangeError,
    UnsupportedPlatformError,
    ValidationError,
)
from socialsync.logging import get_logger
from socialsync.oauth_state import OAuthStateStore, generate_state_token
from socialsync.platforms import AdapterRegistry, TokenResult, parse_platform
from socialsync.vault import TokenVault

logger = get_logger(__name__)


class ConnectionFlowState(str, Enum):
    """States of one connection attempt."""

    idle = "idle"
    awaiting_authorization = "awaiting_authorization"
    awaiting_callback = "awaiting_callback"
    exchanging = "exchanging"
    persisted = "persisted"
    failed = "failed"


@dataclass(frozen=True)
class CallbackOutcome:
    """Terminal result of a callback."""

    state: ConnectionFlowState
    redirect_url: str
    platform: Optional[str] = None
    account_id: Optional[UUID] = None
    account_name: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == ConnectionFlowState.persisted

    def redirect_location(self) -> str:
        """Redirect URL with ``connected``/``account`` or ``error`` appended."""
        if self.succeeded:
            params = {"connected": self.platform or "", "account": self.account_name or ""}
        else:
            params = {"error": self.error or "Connection failed"}
        return append_query(self.redirect_url, params)


def append_query(url: str, params: dict[str, str]) -> str:
    """Add query parameters to a URL, keeping any it already has."""
    parts = urlparse(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunparse(parts._replace(query=urlencode(query)))


class ConnectionOrchestrator:
    """Drives connect and callback for every platform.

    Args:
        session: Database session used for state records and accounts
        settings: Injected settings (redirect defaults, state TTL)
        registry: Adapter registry built from the same settings
        vault: Token vault; built on the session when omitted
    """

    def __init__(
        self,
        session: Session,
        settings: SocialSettings,
        registry: AdapterRegistry,
        vault: Optional[TokenVault] = None,
    ):
        self.session = session
        self.settings = settings
        self.registry = registry
        self.vault = vault or TokenVault(session)
        self.states = OAuthStateStore(session, ttl_seconds=settings.oauth_state_ttl_seconds)

    # -------------------------------------------------------------------------
    # Connect initiation
    # -------------------------------------------------------------------------

    def begin_connection(
        self,
        user_id: UUID,
        platform: Union[str, SocialPlatform],
        redirect_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Start a connection and return the platform's consent URL.

        Raises:
            UnsupportedPlatformError: Unknown platform
            ValidationError: Redirect URL is not acceptable
            ConfigurationError: Platform app credentials missing
        """
        platform = parse_platform(platform)
        redirect_url = self.validate_redirect_url(redirect_url)
        adapter = self.registry.get(platform)

        state = generate_state_token()
        request = adapter.build_authorization_url(state)
        self._transition(ConnectionFlowState.awaiting_authorization, platform.value, user_id=str(user_id))

        self.states.create(
            user_id=user_id,
            platform=platform,
            redirect_url=redirect_url,
            code_verifier=request.code_verifier,
            now=now,
            state=state,
        )
        self._transition(ConnectionFlowState.awaiting_callback, platform.value, user_id=str(user_id))
        return request.url

    def validate_redirect_url(self, redirect_url: Optional[str]) -> str:
        """Return the redirect URL to store, or the configured default."""
        if not redirect_url:
            return self.settings.default_redirect_url

        parts = urlparse(redirect_url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValidationError(
                "redirectUrl must be an absolute http(s) URL",
                details={"redirect_url": redirect_url},
            )
        allowed = self.settings.allowed_redirect_hosts
        if allowed and parts.hostname not in allowed:
            raise ValidationError(
                "redirectUrl host is not allowed",
                details={"host": parts.hostname},
            )
        return redirect_url

    # -------------------------------------------------------------------------
    # Callback
    # -------------------------------------------------------------------------

    async def handle_callback(
        self,
        platform: str,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CallbackOutcome:
        """Complete a connection from the platform's redirect."""
        now = now or utcnow()
        default_redirect = self.settings.default_redirect_url

        try:
            parsed = parse_platform(platform)
        except UnsupportedPlatformError as e:
            return self._fail(platform, default_redirect, e.message)

        self.states.sweep_expired(now)

        if error:
            # Denied at the consent screen; the state is still spent
            redirect_url = default_redirect
            if state:
                try:
                    redirect_url = self.states.consume(state, parsed, now).redirect_url
                except InvalidStateError:
                    logger.info("oauth_denied_with_unknown_state", platform=parsed.value)
            return self._fail(parsed.value, redirect_url, error)

        if not code or not state:
            return self._fail(parsed.value, default_redirect, "Missing code or state")

        try:
            consumed = self.states.consume(state, parsed, now)
        except InvalidStateError as e:
            logger.warning("oauth_callback_invalid_state", platform=parsed.value)
            return self._fail(parsed.value, default_redirect, e.message)

        self._transition(ConnectionFlowState.exchanging, parsed.value, user_id=str(consumed.user_id))
        try:
            adapter = self.registry.get(parsed)
            tokens = await adapter.exchange_code_for_token(
                code, code_verifier=consumed.code_verifier
            )
            identity = await adapter.resolve_account_identity(tokens)

            organization_id = self._organization_for(consumed.user_id)
            if organization_id is None:
                return self._fail(parsed.value, consumed.redirect_url, "User profile not found")

            account = self.vault.upsert_account(
                organization_id, parsed, identity, tokens, now=now
            )
        except SocialSyncError as e:
            self.session.rollback()
            return self._fail(parsed.value, consumed.redirect_url, e.message)
        except Exception:
            self.session.rollback()
            logger.exception("oauth_callback_unexpected_error", platform=parsed.value)
            return self._fail(parsed.value, consumed.redirect_url, "Connection failed")

        self._transition(
            ConnectionFlowState.persisted,
            parsed.value,
            account_id=str(account.id),
            organization_id=str(organization_id),
        )
        return CallbackOutcome(
            state=ConnectionFlowState.persisted,
            redirect_url=consumed.redirect_url,
            platform=parsed.value,
            account_id=account.id,
            account_name=account.account_name,
        )

    # -------------------------------------------------------------------------
    # On-demand sync
    # -------------------------------------------------------------------------

    async def sync_account(self, account_id: UUID, now: Optional[datetime] = None) -> SocialAccount:
        """Refresh an account's token and profile data from the platform.

        The token is refreshed when the platform supports it and a refresh
        token is stored. The identity is then resolved again; display name,
        avatar and page token are updated and ``last_sync_at`` is set.

        Failures never raise. They are recorded in ``last_error``, and an
        account whose credentials were rejected is disabled as well. A
        successful sync does not reactivate a disabled account; that takes
        a reconnect.

        Raises:
            NotFoundError: Unknown account
        """
        now = now or utcnow()
        account = self.vault.get(account_id)
        if account is None:
            raise NotFoundError("Social account not found")
        log = logger.bind(account_id=str(account_id), platform=account.platform.value)

        try:
            adapter = self.registry.get(account.platform)
            refresh_token = self.vault.refresh_token(account)
            if adapter.supports_refresh and refresh_token:
                tokens = await adapter.refresh_access_token(refresh_token)
                account = self.vault.update_tokens(account, tokens, now)
            elif self.vault.is_expired(account, now):
                raise AuthExpiredError("Access token expired, reconnect the account")

            credentials = self.vault.credentials(account)
            identity = await adapter.resolve_account_identity(
                TokenResult(access_token=credentials.access_token)
            )
            if identity.external_id != account.account_id:
                raise TokenExchangeError(
                    "The platform returned a different account, reconnect to switch accounts",
                    details={"platform": account.platform.value},
                )
            self.vault.record_sync(account, identity, now)
        except (AuthExpiredError, TokenDecryptionError) as e:
            self.session.rollback()
            self.vault.mark_auth_failure(account_id, getattr(e, "message", str(e)))
        except SocialSyncError as e:
            self.session.rollback()
            self.vault.record_error(account_id, e.message)
        else:
            log.info("social_account_sync_completed")

        return self.session.get(SocialAccount, account_id, populate_existing=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _organization_for(self, user_id: UUID) -> Optional[UUID]:
        profile = self.session.exec(
            select(Profile).where(Profile.user_id == user_id)
        ).first()
        return profile.organization_id if profile else None

    def _fail(self, platform: str, redirect_url: str, message: str) -> CallbackOutcome:
        self._transition(ConnectionFlowState.failed, platform, error=message)
        return CallbackOutcome(
            state=ConnectionFlowState.failed,
            redirect_url=redirect_url,
            platform=platform,
            error=message,
        )

    @staticmethod
    def _transition(state: ConnectionFlowState, platform: str, **fields) -> None:
        log = logger.warning if state == ConnectionFlowState.failed else logger.info
        log("connection_flow_transition", flow_state=state.value, platform=platform, **fields)
