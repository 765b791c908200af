"""Twitter/X OAuth 2.0 (PKCE) and publishing."""

import base64
import hashlib
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx

from socialsync.db.models import SocialPlatform
from socialsync.exceptions import AuthExpiredError, PublishError, TokenExchangeError
from socialsync.platforms.base import (
    AccountIdentity,
    AuthorizationRequest,
    PlatformAdapter,
    PublishContent,
    PublishCredentials,
    TokenResult,
)

TWEET_MAX_LENGTH = 280


def generate_code_verifier() -> str:
    """PKCE verifier: 43-128 unreserved characters."""
    return secrets.token_urlsafe(64)[:128]


def code_challenge_for(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class TwitterAdapter(PlatformAdapter):
    """Twitter/X with OAuth 2.0 authorization code + PKCE."""

    platform = SocialPlatform.twitter
    authorize_url = "https://twitter.com/i/oauth2/authorize"
    token_url = "https://api.twitter.com/2/oauth2/token"
    api_url = "https://api.twitter.com/2"
    scopes = ("tweet.read", "tweet.write", "users.read", "offline.access")
    scope_separator = " "
    supports_refresh = True

    def build_authorization_url(
        self, state: str, callback_url: Optional[str] = None
    ) -> AuthorizationRequest:
        self.require_credentials()
        verifier = generate_code_verifier()
        params = self.authorization_params(state, callback_url or self.callback_url)
        params["code_challenge"] = code_challenge_for(verifier)
        params["code_challenge_method"] = "S256"
        return AuthorizationRequest(
            url=f"{self.authorize_url}?{urlencode(params)}",
            code_verifier=verifier,
        )

    def _basic_auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.credentials.client_id, self.credentials.client_secret)

    async def exchange_code_for_token(
        self,
        code: str,
        callback_url: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> TokenResult:
        self.require_credentials()
        if not code_verifier:
            raise TokenExchangeError("twitter token exchange failed: missing PKCE verifier")
        payload = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": callback_url or self.callback_url,
                "code_verifier": code_verifier,
                "client_id": self.credentials.client_id,
            },
            auth=self._basic_auth(),
        )
        return self._token_result(payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        self.require_credentials()
        try:
            payload = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.credentials.client_id,
                },
                auth=self._basic_auth(),
            )
        except TokenExchangeError as e:
            raise AuthExpiredError(f"twitter token refresh failed: {e.message}") from e
        return self._token_result(payload)

    async def resolve_account_identity(self, tokens: TokenResult) -> AccountIdentity:
        payload = await self._get_json(
            f"{self.api_url}/users/me",
            params={"user.fields": "id,name,username,profile_image_url"},
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        data = payload.get("data") or {}
        if not data.get("id"):
            raise TokenExchangeError(f"twitter profile lookup failed: {payload}")
        return AccountIdentity(
            external_id=str(data["id"]),
            display_name=data.get("name") or f"@{data.get('username', '')}",
            avatar_url=data.get("profile_image_url"),
        )

    async def publish(
        self, credentials: PublishCredentials, content: PublishContent
    ) -> str:
        if len(content.text) > TWEET_MAX_LENGTH:
            raise PublishError(
                f"Content exceeds X's {TWEET_MAX_LENGTH} character limit",
                retryable=False,
            )
        response = await self._send(
            "POST",
            f"{self.api_url}/tweets",
            json={"text": content.text},
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        tweet_id = (self._json(response).get("data") or {}).get("id")
        if not tweet_id:
            raise PublishError(f"twitter returned no tweet id: {response.text}", retryable=False)
        return str(tweet_id)
