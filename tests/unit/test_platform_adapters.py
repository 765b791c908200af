"""Tests for platform adapters, with platform HTTP faked by MockTransport."""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from socialsync.config import PageSelection, PlatformCredentials
from socialsync.db.models import Post, SocialPlatform
from socialsync.exceptions import (
    AuthExpiredError,
    ConfigurationError,
    PublishError,
    PublishNotSupportedError,
    TokenExchangeError,
    UnsupportedPlatformError,
)
from socialsync.platforms import (
    ADAPTER_CLASSES,
    AdapterRegistry,
    FacebookAdapter,
    PublishContent,
    PublishCredentials,
    TokenResult,
    parse_platform,
)
from socialsync.platforms.facebook import GRAPH_URL
from socialsync.platforms.twitter import code_challenge_for

from conftest import CALLBACK_BASE, make_settings

FB_TOKEN_URL = f"{GRAPH_URL}/oauth/access_token"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# =============================================================================
# Registry
# =============================================================================


def test_every_platform_has_an_adapter():
    assert set(ADAPTER_CLASSES) == set(SocialPlatform)


def test_parse_platform_is_case_insensitive():
    assert parse_platform("LinkedIn") == SocialPlatform.linkedin


def test_parse_platform_rejects_unknown():
    with pytest.raises(UnsupportedPlatformError) as exc_info:
        parse_platform("myspace")

    assert exc_info.value.status_code == 400
    assert "myspace" in exc_info.value.message


def test_registry_passes_page_selection_to_facebook():
    registry = AdapterRegistry(make_settings(facebook_page_selection=PageSelection.profile))

    adapter = registry.get("facebook")

    assert isinstance(adapter, FacebookAdapter)
    assert adapter.page_selection == PageSelection.profile
    assert registry.get(SocialPlatform.facebook) is adapter


# =============================================================================
# Authorization URLs
# =============================================================================


@pytest.mark.parametrize("platform", list(SocialPlatform))
def test_authorization_url_carries_state_and_never_the_secret(registry, platform):
    request = registry.get(platform).build_authorization_url("state-123")

    params = _query(request.url)
    assert params["state"] == "state-123"
    assert params["client_id"] == "test-client-id"
    assert params["redirect_uri"] == f"{CALLBACK_BASE}/{platform.value}"
    assert "test-client-secret" not in request.url


def test_facebook_scopes_are_comma_separated(registry):
    params = _query(registry.get("facebook").build_authorization_url("s").url)

    assert params["scope"] == (
        "pages_manage_posts,pages_read_engagement,pages_manage_metadata,pages_show_list"
    )
    assert urlparse(registry.get("facebook").authorize_url).path == "/v18.0/dialog/oauth"


def test_linkedin_scopes_are_space_separated(registry):
    params = _query(registry.get("linkedin").build_authorization_url("s").url)

    assert params["scope"] == "w_member_social r_liteprofile r_emailaddress"


def test_twitter_uses_pkce_s256(registry):
    request = registry.get("twitter").build_authorization_url("s")
    params = _query(request.url)

    assert 43 <= len(request.code_verifier) <= 128
    assert params["code_challenge_method"] == "S256"
    assert params["code_challenge"] == code_challenge_for(request.code_verifier)
    assert "=" not in params["code_challenge"]
    assert params["scope"] == "tweet.read tweet.write users.read offline.access"


def test_missing_credentials_raise_configuration_error():
    adapter = FacebookAdapter(PlatformCredentials(client_id="", client_secret=""))

    with pytest.raises(ConfigurationError):
        adapter.build_authorization_url("s")


# =============================================================================
# Token exchange and identity
# =============================================================================


def test_token_exchange_returns_tokens(registry, platform_api):
    platform_api.add(
        "POST",
        LINKEDIN_TOKEN_URL,
        httpx.Response(200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 5184000}),
    )

    tokens = asyncio.run(registry.get("linkedin").exchange_code_for_token("code-1"))

    assert tokens == TokenResult(access_token="at", refresh_token="rt", expires_in=5184000)
    body = parse_qs(platform_api.requests[0].content.decode())
    assert body["code"] == ["code-1"]
    assert body["grant_type"] == ["authorization_code"]


def test_token_exchange_error_passes_platform_message(registry, platform_api):
    platform_api.add(
        "POST",
        FB_TOKEN_URL,
        httpx.Response(400, json={"error": {"message": "Code was already used"}}),
    )

    with pytest.raises(TokenExchangeError) as exc_info:
        asyncio.run(registry.get("facebook").exchange_code_for_token("used"))

    assert "Code was already used" in exc_info.value.message


def test_twitter_exchange_sends_verifier_with_basic_auth(registry, platform_api):
    platform_api.add("POST", TWITTER_TOKEN_URL, httpx.Response(200, json={"access_token": "at"}))

    asyncio.run(registry.get("twitter").exchange_code_for_token("c", code_verifier="verifier-xyz"))

    request = platform_api.requests[0]
    assert request.headers["authorization"].startswith("Basic ")
    assert parse_qs(request.content.decode())["code_verifier"] == ["verifier-xyz"]


def test_twitter_exchange_without_verifier_fails(registry):
    with pytest.raises(TokenExchangeError):
        asyncio.run(registry.get("twitter").exchange_code_for_token("c"))


def test_facebook_identity_prefers_first_page(registry, platform_api):
    platform_api.add("GET", f"{GRAPH_URL}/me", httpx.Response(200, json={"id": "u1", "name": "Dana"}))
    platform_api.add(
        "GET",
        f"{GRAPH_URL}/me/accounts",
        httpx.Response(
            200,
            json={
                "data": [
                    {"id": "p1", "name": "Page One", "access_token": "page-token-1"},
                    {"id": "p2", "name": "Page Two", "access_token": "page-token-2"},
                ]
            },
        ),
    )

    identity = asyncio.run(
        registry.get("facebook").resolve_account_identity(TokenResult(access_token="user-token"))
    )

    assert identity.external_id == "p1"
    assert identity.display_name == "Page One"
    assert identity.page_id == "p1"
    assert identity.page_access_token == "page-token-1"


def test_facebook_identity_without_pages_uses_profile(registry, platform_api):
    platform_api.add("GET", f"{GRAPH_URL}/me", httpx.Response(200, json={"id": "u1", "name": "Dana"}))
    platform_api.add("GET", f"{GRAPH_URL}/me/accounts", httpx.Response(200, json={"data": []}))

    identity = asyncio.run(
        registry.get("facebook").resolve_account_identity(TokenResult(access_token="user-token"))
    )

    assert identity.external_id == "u1"
    assert identity.display_name == "Dana"
    assert identity.page_id is None


def test_facebook_profile_selection_skips_page_lookup(platform_api):
    registry = AdapterRegistry(
        make_settings(facebook_page_selection=PageSelection.profile),
        transport=httpx.MockTransport(platform_api),
    )
    platform_api.add("GET", f"{GRAPH_URL}/me", httpx.Response(200, json={"id": "u1", "name": "Dana"}))
    platform_api.add(
        "GET",
        f"{GRAPH_URL}/me/accounts",
        httpx.Response(200, json={"data": [{"id": "p1", "name": "Page One", "access_token": "pt"}]}),
    )

    identity = asyncio.run(
        registry.get("facebook").resolve_account_identity(TokenResult(access_token="user-token"))
    )

    assert identity.external_id == "u1"
    assert identity.page_id is None
    assert identity.page_access_token is None
    assert platform_api.calls("GET", f"{GRAPH_URL}/me/accounts") == []

def test_linkedin_identity_joins_localized_names(registry, platform_api):
    platform_api.add(
        "GET",
        "https://api.linkedin.com/v2/me",
        httpx.Response(200, json={"id": "li-1", "localizedFirstName": "Dana", "localizedLastName": "Kim"}),
    )

    identity = asyncio.run(
        registry.get("linkedin").resolve_account_identity(TokenResult(access_token="t"))
    )

    assert identity.external_id == "li-1"
    assert identity.display_name == "Dana Kim"


def test_refresh_not_supported_on_facebook(registry):
    with pytest.raises(AuthExpiredError):
        asyncio.run(registry.get("facebook").refresh_access_token("rt"))


def test_rejected_refresh_becomes_auth_expired(registry, platform_api):
    platform_api.add(
        "POST", LINKEDIN_TOKEN_URL, httpx.Response(400, json={"error": "invalid_grant"})
    )

    with pytest.raises(AuthExpiredError):
        asyncio.run(registry.get("linkedin").refresh_access_token("rt"))


# =============================================================================
# Publishing
# =============================================================================


CREDS = PublishCredentials(account_id="member-1", access_token="at")
CONTENT = PublishContent(text="Hello")


def test_content_composition_orders_body_tags_and_cta():
    post = Post(
        organization_id=None,
        created_by=None,
        content="Big news",
        hashtags=["launch", "#product", " "],
        cta_text="Read more",
        cta_url="https://example.com",
        platforms=[],
    )

    content = PublishContent.from_post(post)

    assert content.text == "Big news\n\n#launch #product\n\nRead more https://example.com"
    assert content.link == "https://example.com"


def test_linkedin_publish_returns_restli_id(registry, platform_api):
    platform_api.add(
        "POST",
        "https://api.linkedin.com/v2/ugcPosts",
        httpx.Response(201, headers={"x-restli-id": "urn:li:share:1"}, json={}),
    )

    post_id = asyncio.run(registry.get("linkedin").publish(CREDS, CONTENT))

    assert post_id == "urn:li:share:1"
    sent = platform_api.requests[0]
    assert sent.headers["authorization"] == "Bearer at"


@pytest.mark.parametrize(
    "status, retryable",
    [(429, True), (500, True), (503, True), (400, False), (403, False)],
)
def test_publish_errors_are_classified(registry, platform_api, status, retryable):
    platform_api.add("POST", "https://api.twitter.com/2/tweets", httpx.Response(status, text="nope"))

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(registry.get("twitter").publish(CREDS, CONTENT))

    assert exc_info.value.retryable is retryable
    assert not isinstance(exc_info.value, AuthExpiredError)


def test_publish_401_is_auth_expired(registry, platform_api):
    platform_api.add("POST", "https://api.twitter.com/2/tweets", httpx.Response(401))

    with pytest.raises(AuthExpiredError):
        asyncio.run(registry.get("twitter").publish(CREDS, CONTENT))


def test_rate_limit_honours_retry_after(registry, platform_api):
    platform_api.add(
        "POST",
        "https://api.twitter.com/2/tweets",
        httpx.Response(429, headers={"retry-after": "120"}),
    )

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(registry.get("twitter").publish(CREDS, CONTENT))

    assert exc_info.value.retry_after == 120.0


def test_network_failure_is_retryable(registry, platform_api):
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    platform_api.add("POST", "https://api.twitter.com/2/tweets", boom)

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(registry.get("twitter").publish(CREDS, CONTENT))

    assert exc_info.value.retryable is True


def test_tweet_over_limit_fails_without_calling_api(registry, platform_api):
    with pytest.raises(PublishError) as exc_info:
        asyncio.run(registry.get("twitter").publish(CREDS, PublishContent(text="x" * 281)))

    assert exc_info.value.retryable is False
    assert platform_api.requests == []


def test_graph_expired_token_code_is_auth_failure(registry, platform_api):
    platform_api.add(
        "POST",
        f"{GRAPH_URL}/page-1/feed",
        httpx.Response(400, json={"error": {"code": 190, "message": "Session expired"}}),
    )
    creds = PublishCredentials(
        account_id="page-1", access_token="u", page_id="page-1", page_access_token="pt"
    )

    with pytest.raises(AuthExpiredError):
        asyncio.run(registry.get("facebook").publish(creds, CONTENT))


def test_facebook_posts_to_page_feed_with_page_token(registry, platform_api):
    platform_api.add("POST", f"{GRAPH_URL}/page-1/feed", httpx.Response(200, json={"id": "page-1_99"}))
    creds = PublishCredentials(
        account_id="page-1", access_token="u", page_id="page-1", page_access_token="pt"
    )

    post_id = asyncio.run(registry.get("facebook").publish(creds, CONTENT))

    assert post_id == "page-1_99"
    body = parse_qs(platform_api.requests[0].content.decode())
    assert body["access_token"] == ["pt"]
    assert body["message"] == ["Hello"]


def test_facebook_profile_account_cannot_publish(registry):
    with pytest.raises(PublishError) as exc_info:
        asyncio.run(registry.get("facebook").publish(CREDS, CONTENT))

    assert exc_info.value.retryable is False


def test_instagram_publish_not_supported(registry):
    with pytest.raises(PublishNotSupportedError) as exc_info:
        asyncio.run(registry.get("instagram").publish(CREDS, CONTENT))

    assert exc_info.value.retryable is False
