"""LinkedIn OAuth and publishing."""

from typing import Optional

from socialsync.db.models import SocialPlatform
from socialsync.exceptions import AuthExpiredError, PublishError, TokenExchangeError
from socialsync.platforms.base import (
    AccountIdentity,
    PlatformAdapter,
    PublishContent,
    PublishCredentials,
    TokenResult,
)


class LinkedInAdapter(PlatformAdapter):
    """LinkedIn member posting.

    Company-page posting would need an organization selection step similar
    to Facebook pages; connections currently always represent the member.
    """

    platform = SocialPlatform.linkedin
    authorize_url = "https://www.linkedin.com/oauth/v2/authorization"
    token_url = "https://www.linkedin.com/oauth/v2/accessToken"
    api_url = "https://api.linkedin.com/v2"
    scopes = ("w_member_social", "r_liteprofile", "r_emailaddress")
    scope_separator = " "
    supports_refresh = True

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        self.require_credentials()
        try:
            payload = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                }
            )
        except TokenExchangeError as e:
            raise AuthExpiredError(f"linkedin token refresh failed: {e.message}") from e
        return self._token_result(payload)

    async def resolve_account_identity(self, tokens: TokenResult) -> AccountIdentity:
        profile = await self._get_json(
            f"{self.api_url}/me",
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        name = " ".join(
            part
            for part in (profile.get("localizedFirstName"), profile.get("localizedLastName"))
            if part
        )
        return AccountIdentity(external_id=str(profile["id"]), display_name=name)

    async def publish(
        self, credentials: PublishCredentials, content: PublishContent
    ) -> str:
        payload = {
            "author": f"urn:li:person:{credentials.account_id}",
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content.text},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        response = await self._send(
            "POST",
            f"{self.api_url}/ugcPosts",
            json=payload,
            headers={
                "Authorization": f"Bearer {credentials.access_token}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        post_id: Optional[str] = response.headers.get("x-restli-id") or self._json(response).get("id")
        if not post_id:
            raise PublishError(f"linkedin returned no post id: {response.text}", retryable=False)
        return post_id
