"""Platform adapters, selected by SocialPlatform.

Usage:
    registry = AdapterRegistry(settings)
    adapter = registry.get(SocialPlatform.linkedin)
    request = adapter.build_authorization_url(state)
"""

from typing import Optional, Union

import httpx

from socialsync.config import SocialSettings
from socialsync.db.models import SocialPlatform
from socialsync.exceptions import UnsupportedPlatformError
from socialsync.platforms.base import (
    AccountIdentity,
    AuthorizationRequest,
    PlatformAdapter,
    PublishContent,
    PublishCredentials,
    TokenResult,
)
from socialsync.platforms.facebook import FacebookAdapter, InstagramAdapter
from socialsync.platforms.linkedin import LinkedInAdapter
from socialsync.platforms.twitter import TwitterAdapter

ADAPTER_CLASSES: dict[SocialPlatform, type[PlatformAdapter]] = {
    SocialPlatform.facebook: FacebookAdapter,
    SocialPlatform.instagram: InstagramAdapter,
    SocialPlatform.linkedin: LinkedInAdapter,
    SocialPlatform.twitter: TwitterAdapter,
}

_missing = set(SocialPlatform) - set(ADAPTER_CLASSES)
if _missing:
    raise RuntimeError(f"No adapter registered for: {sorted(p.value for p in _missing)}")


def parse_platform(value: Union[str, SocialPlatform]) -> SocialPlatform:
    """Convert a platform name to the enum.

    Raises:
        UnsupportedPlatformError: Unknown platform name
    """
    if isinstance(value, SocialPlatform):
        return value
    try:
        return SocialPlatform(str(value).strip().lower())
    except ValueError:
        raise UnsupportedPlatformError(str(value)) from None


class AdapterRegistry:
    """Builds adapters from injected settings."""

    def __init__(
        self,
        settings: SocialSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport
        self._adapters: dict[SocialPlatform, PlatformAdapter] = {}

    def get(self, platform: Union[str, SocialPlatform]) -> PlatformAdapter:
        platform = parse_platform(platform)
        if platform not in self._adapters:
            self._adapters[platform] = self._build(platform)
        return self._adapters[platform]

    def register(self, adapter: PlatformAdapter) -> None:
        """Replace the adapter used for its platform."""
        self._adapters[adapter.platform] = adapter

    def _build(self, platform: SocialPlatform) -> PlatformAdapter:
        kwargs = {
            "timeout": self.settings.http_timeout_seconds,
            "transport": self.transport,
        }
        if platform == SocialPlatform.facebook:
            kwargs["page_selection"] = self.settings.facebook_page_selection
        return ADAPTER_CLASSES[platform](self.settings.credentials_for(platform.value), **kwargs)


__all__ = [
    "ADAPTER_CLASSES",
    "AdapterRegistry",
    "parse_platform",
    "AccountIdentity",
    "AuthorizationRequest",
    "PlatformAdapter",
    "PublishContent",
    "PublishCredentials",
    "TokenResult",
    "FacebookAdapter",
    "InstagramAdapter",
    "LinkedInAdapter",
    "TwitterAdapter",
]
