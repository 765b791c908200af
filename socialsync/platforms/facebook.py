"""Facebook Graph API adapters: Facebook pages and Instagram.

Both platforms authorize through the Facebook login dialog and share the
same code exchange. Facebook additionally selects a managed page, because
posting as a page requires a page-scoped token.
"""

from typing import Any, Optional

import httpx

from socialsync.config import PageSelection, PlatformCredentials
from socialsync.db.models import SocialPlatform
from socialsync.exceptions import AuthExpiredError, PublishError
from socialsync.logging import get_logger
from socialsync.platforms.base import (
    AccountIdentity,
    PlatformAdapter,
    PublishContent,
    PublishCredentials,
    TokenResult,
)

logger = get_logger(__name__)

GRAPH_VERSION = "v18.0"
GRAPH_URL = f"https://graph.facebook.com/{GRAPH_VERSION}"

# Graph error codes: 190 invalid/expired token, 4/17/32/613 throttling
GRAPH_AUTH_ERROR_CODES = frozenset({190})
GRAPH_RATE_LIMIT_CODES = frozenset({4, 17, 32, 613})


class GraphAdapter(PlatformAdapter):
    """Shared Facebook-login behaviour."""

    authorize_url = f"https://www.facebook.com/{GRAPH_VERSION}/dialog/oauth"
    token_url = f"{GRAPH_URL}/oauth/access_token"
    scope_separator = ","

    async def exchange_code_for_token(
        self,
        code: str,
        callback_url: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> TokenResult:
        self.require_credentials()
        payload = await self._token_request(
            {
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": callback_url or self.callback_url,
                "code": code,
            }
        )
        return self._token_result(payload)

    async def _get_me(self, access_token: str) -> dict[str, Any]:
        return await self._get_json(
            f"{GRAPH_URL}/me",
            params={"fields": "id,name", "access_token": access_token},
        )

    def raise_for_publish(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        error = self._json(response).get("error") or {}
        code = error.get("code")
        message = f"{self.name} API error {response.status_code}: {response.text}"
        if code in GRAPH_AUTH_ERROR_CODES:
            raise AuthExpiredError(message)
        if code in GRAPH_RATE_LIMIT_CODES:
            raise PublishError(message, retryable=True, retry_after=self._retry_after(response))
        super().raise_for_publish(response)


class FacebookAdapter(GraphAdapter):
    """Facebook pages."""

    platform = SocialPlatform.facebook
    scopes = (
        "pages_manage_posts",
        "pages_read_engagement",
        "pages_manage_metadata",
        "pages_show_list",
    )

    def __init__(
        self,
        credentials: PlatformCredentials,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_selection: PageSelection = PageSelection.first,
    ):
        super().__init__(credentials, timeout=timeout, transport=transport)
        self.page_selection = page_selection

    async def resolve_account_identity(self, tokens: TokenResult) -> AccountIdentity:
        """Resolve the profile, preferring a managed page when one exists.

        With zero managed pages the personal profile is kept, so the
        account is still representable even though it cannot post.
        """
        me = await self._get_me(tokens.access_token)
        profile = AccountIdentity(external_id=str(me["id"]), display_name=me.get("name") or "")

        if self.page_selection == PageSelection.profile:
            return profile

        pages = await self._get_json(
            f"{GRAPH_URL}/me/accounts",
            params={"access_token": tokens.access_token},
        )
        page = self.select_page(pages.get("data") or [])
        if page is None:
            logger.info("facebook_no_pages", profile_id=profile.external_id)
            return profile

        return AccountIdentity(
            external_id=str(page["id"]),
            display_name=page.get("name") or profile.display_name,
            page_id=str(page["id"]),
            page_access_token=page.get("access_token"),
        )

    def select_page(self, pages: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
        """Choose which managed page the connection represents."""
        if self.page_selection == PageSelection.first and pages:
            return pages[0]
        return None

    async def publish(
        self, credentials: PublishCredentials, content: PublishContent
    ) -> str:
        if not credentials.page_id or not credentials.page_access_token:
            raise PublishError(
                "Facebook publishing requires a connected page", retryable=False
            )

        if content.media_urls:
            response = await self._send(
                "POST",
                f"{GRAPH_URL}/{credentials.page_id}/photos",
                data={
                    "url": content.media_urls[0],
                    "caption": content.text,
                    "access_token": credentials.page_access_token,
                },
            )
        else:
            data = {"message": content.text, "access_token": credentials.page_access_token}
            if content.link:
                data["link"] = content.link
            response = await self._send(
                "POST", f"{GRAPH_URL}/{credentials.page_id}/feed", data=data
            )

        body = self._json(response)
        post_id = body.get("post_id") or body.get("id")
        if not post_id:
            raise PublishError(f"facebook returned no post id: {response.text}", retryable=False)
        return str(post_id)


class InstagramAdapter(GraphAdapter):
    """Instagram business accounts via Facebook login.

    Publishing (container + media_publish) is not implemented yet.
    """

    platform = SocialPlatform.instagram
    scopes = ("instagram_basic", "instagram_content_publish")

    async def resolve_account_identity(self, tokens: TokenResult) -> AccountIdentity:
        me = await self._get_me(tokens.access_token)
        return AccountIdentity(external_id=str(me["id"]), display_name=me.get("name") or "")
