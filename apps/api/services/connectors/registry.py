"""Static per-provider OAuth configuration and capability queries."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from config import connect_callback_url, login_callback_url
from services.connectors.providers import BaseProviderAdapter, build_adapter
from services.connectors.types import (
    ProviderConfig,
    ProviderNotConfiguredError,
    UnsupportedProviderError,
)


class ProviderRegistry:
    """Read-only view over the provider configurations known to this process."""

    def __init__(self, configs: Iterable[ProviderConfig]) -> None:
        self._configs: Dict[str, ProviderConfig] = {config.provider: config for config in configs}
        self._adapters: Dict[str, BaseProviderAdapter] = {
            provider: build_adapter(config) for provider, config in self._configs.items()
        }

    @classmethod
    def from_settings(cls, settings: Any) -> "ProviderRegistry":
        return cls(build_provider_configs(settings))

    def is_supported(self, provider: Optional[str]) -> bool:
        return bool(provider) and provider in self._configs

    def is_configured(self, provider: Optional[str]) -> bool:
        return self.is_supported(provider) and self._configs[provider].configured

    def get(self, provider: Optional[str]) -> ProviderConfig:
        if not self.is_supported(provider):
            raise UnsupportedProviderError(f'App "{provider}" is not supported', provider=provider)
        return self._configs[provider]

    def require_configured(self, provider: Optional[str]) -> ProviderConfig:
        config = self.get(provider)
        if not config.configured:
            raise ProviderNotConfiguredError(
                f"OAuth credentials for {provider} are not configured.",
                provider=provider,
            )
        return config

    def adapter(self, provider: Optional[str]) -> BaseProviderAdapter:
        self.get(provider)
        return self._adapters[provider]

    def config_status(self) -> Dict[str, bool]:
        return {provider: config.configured for provider, config in self._configs.items()}

    def login_config_status(self) -> Dict[str, bool]:
        return {
            provider: config.configured
            for provider, config in self._configs.items()
            if config.supports_login
        }


def build_provider_configs(settings: Any) -> List[ProviderConfig]:
    """Resolve provider endpoints and credentials from settings."""
    base_url = settings.PUBLIC_API_URL
    instagram_client_id = settings.OAUTH_INSTAGRAM_CLIENT_ID or settings.OAUTH_FACEBOOK_CLIENT_ID
    instagram_client_secret = settings.OAUTH_INSTAGRAM_CLIENT_SECRET or settings.OAUTH_FACEBOOK_CLIENT_SECRET

    configs = [
        ProviderConfig(
            provider="facebook",
            display_name="Facebook",
            authorize_url="https://www.facebook.com/v18.0/dialog/oauth",
            token_url="https://graph.facebook.com/v18.0/oauth/access_token",
            media_url="https://graph.facebook.com/v18.0/me/photos",
            user_info_url="https://graph.facebook.com/v18.0/me",
            scopes=("public_profile", "user_photos", "user_videos"),
            login_scopes=("public_profile", "email"),
            client_id=settings.OAUTH_FACEBOOK_CLIENT_ID,
            client_secret=settings.OAUTH_FACEBOOK_CLIENT_SECRET,
            callback_url=settings.OAUTH_FACEBOOK_CALLBACK_URL or connect_callback_url("facebook", base_url),
            login_callback_url=settings.OAUTH_FACEBOOK_LOGIN_CALLBACK_URL or login_callback_url("facebook", base_url),
        ),
        ProviderConfig(
            provider="instagram",
            display_name="Instagram",
            authorize_url="https://api.instagram.com/oauth/authorize",
            token_url="https://api.instagram.com/oauth/access_token",
            media_url="https://graph.instagram.com/me/media",
            user_info_url="https://graph.instagram.com/me",
            scopes=("user_profile", "user_media"),
            login_scopes=("user_profile",),
            client_id=instagram_client_id,
            client_secret=instagram_client_secret,
            callback_url=settings.OAUTH_INSTAGRAM_CALLBACK_URL or connect_callback_url("instagram", base_url),
            login_callback_url=settings.OAUTH_INSTAGRAM_LOGIN_CALLBACK_URL or login_callback_url("instagram", base_url),
        ),
        ProviderConfig(
            provider="tiktok",
            display_name="TikTok",
            authorize_url="https://www.tiktok.com/v2/auth/authorize/",
            token_url="https://open.tiktokapis.com/v2/oauth/token/",
            media_url="https://open.tiktokapis.com/v2/video/list/",
            user_info_url="https://open.tiktokapis.com/v2/user/info/",
            scopes=("user.info.basic", "video.list"),
            login_scopes=("user.info.basic",),
            client_id=settings.OAUTH_TIKTOK_CLIENT_ID,
            client_secret=settings.OAUTH_TIKTOK_CLIENT_SECRET,
            callback_url=settings.OAUTH_TIKTOK_CALLBACK_URL or connect_callback_url("tiktok", base_url),
            login_callback_url=settings.OAUTH_TIKTOK_LOGIN_CALLBACK_URL or login_callback_url("tiktok", base_url),
        ),
        ProviderConfig(
            provider="photos",
            display_name="Google Photos",
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            media_url="https://photoslibrary.googleapis.com/v1/mediaItems",
            scopes=("https://www.googleapis.com/auth/photoslibrary.readonly",),
            client_id=settings.OAUTH_GOOGLE_CLIENT_ID,
            client_secret=settings.OAUTH_GOOGLE_CLIENT_SECRET,
            callback_url=settings.OAUTH_GOOGLE_CALLBACK_URL or connect_callback_url("photos", base_url),
        ),
    ]
    return configs
