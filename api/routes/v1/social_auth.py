"""OAuth routes for social media platform connections.

Handles the connect flow for Facebook, Instagram, LinkedIn and Twitter,
and management of the connected accounts.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from api.auth.dependencies import CurrentUser, get_current_user, require_role
from api.routes.v1.dependencies import get_orchestrator, get_vault
from socialsync.connections import ConnectionOrchestrator
from socialsync.db.models import SocialAccount, SocialAccountRead, UserRole
from socialsync.exceptions import NotFoundError
from socialsync.vault import TokenVault

router = APIRouter(prefix="/v1/social", tags=["social"])

require_editor = require_role(UserRole.admin, UserRole.editor)


class ConnectRequest(BaseModel):
    """Body of a connect request."""

    model_config = ConfigDict(populate_by_name=True)

    platform: str
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")


class ConnectResponse(BaseModel):
    """Consent URL the browser should be sent to."""

    model_config = ConfigDict(populate_by_name=True)

    auth_url: str = Field(alias="authUrl")


def _owned_account(vault: TokenVault, account_id: UUID, current_user: CurrentUser) -> SocialAccount:
    account = vault.get(account_id)
    if account is None or account.organization_id != current_user.organization_id:
        raise NotFoundError("Social account not found")
    return account


# =============================================================================
# Connect flow
# =============================================================================


@router.post("/connect", response_model=ConnectResponse, response_model_by_alias=True)
async def connect(
    request: ConnectRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    orchestrator: Annotated[ConnectionOrchestrator, Depends(get_orchestrator)],
) -> ConnectResponse:
    """Start connecting an account and return the platform's consent URL."""
    auth_url = orchestrator.begin_connection(
        current_user.user_id, request.platform, request.redirect_url
    )
    return ConnectResponse(auth_url=auth_url)


@router.get("/callback/{platform}")
async def callback(
    platform: str,
    orchestrator: Annotated[ConnectionOrchestrator, Depends(get_orchestrator)],
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
) -> RedirectResponse:
    """Platform redirect target. Always answers with a browser redirect."""
    outcome = await orchestrator.handle_callback(platform, code=code, state=state, error=error)
    return RedirectResponse(url=outcome.redirect_location(), status_code=302)


# =============================================================================
# Accounts
# =============================================================================


@router.get("/accounts", response_model=list[SocialAccountRead])
async def list_accounts(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    vault: Annotated[TokenVault, Depends(get_vault)],
) -> list[SocialAccountRead]:
    """List connected accounts of the caller's organization."""
    accounts = vault.list_for_organization(current_user.organization_id)
    return [SocialAccountRead.model_validate(a) for a in accounts]


@router.post("/accounts/{account_id}/disable", response_model=SocialAccountRead)
async def disable_account(
    account_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    vault: Annotated[TokenVault, Depends(get_vault)],
) -> SocialAccountRead:
    """Stop publishing to an account without removing it."""
    _owned_account(vault, account_id, current_user)
    return SocialAccountRead.model_validate(vault.deactivate(account_id))


@router.post("/accounts/{account_id}/sync", response_model=SocialAccountRead)
async def sync_account(
    account_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    orchestrator: Annotated[ConnectionOrchestrator, Depends(get_orchestrator)],
) -> SocialAccountRead:
    """Refresh an account's token and profile from the platform.

    A failed sync still answers 200; the account's ``last_error`` and
    ``is_active`` say what went wrong.
    """
    _owned_account(orchestrator.vault, account_id, current_user)
    account = await orchestrator.sync_account(account_id)
    return SocialAccountRead.model_validate(account)


@router.delete("/accounts/{account_id}")
async def delete_account(
    account_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    vault: Annotated[TokenVault, Depends(get_vault)],
) -> dict:
    """Remove an account with its schedules and jobs."""
    _owned_account(vault, account_id, current_user)
    vault.delete(account_id)
    return {"status": "deleted"}
