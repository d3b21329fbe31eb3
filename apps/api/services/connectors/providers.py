"""Provider adapters: one OAuth + media-listing strategy per provider."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Type, Union
from urllib.parse import urlencode

import httpx

from services.connectors.types import (
    ConnectorError,
    FlowKey,
    MediaImportError,
    MemoryDraft,
    MemoryType,
    ProviderConfig,
    ProviderExchangeError,
    ProviderProfile,
    TokenGrant,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)

FieldPath = Tuple[Union[str, int], ...]
TimestampKind = Literal["iso", "epoch_seconds", "epoch_millis"]


def dig(item: Any, path: FieldPath) -> Any:
    """Follow dict keys / list indexes, returning None at the first gap."""
    current = item
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def first_text(item: Any, rules: Sequence[FieldPath]) -> Optional[str]:
    """Evaluate extraction rules top-down and return the first non-blank string."""
    for path in rules:
        value = dig(item, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_timestamp(value: Any, kind: TimestampKind) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    try:
        if kind == "iso":
            if not isinstance(value, str) or not value.strip():
                return None
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                # Graph API style offsets such as +0000.
                return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
        seconds = float(value)
        if kind == "epoch_millis":
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def format_date_text(moment: datetime) -> str:
    """Render a memory date as month abbreviation, day and year, e.g. ``Nov 4, 2023``."""
    return f"{moment:%b} {moment.day}, {moment.year}"


def provider_error_message(payload: Dict[str, Any]) -> Optional[str]:
    """Read the common ``error`` shapes: Graph/Google objects or OAuth2 strings."""
    error = payload.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or error.get("code") or "Unknown provider error")
    return str(payload.get("error_description") or error)


class BaseProviderAdapter(ABC):
    """OAuth handshake and media mapping for one provider.

    Subclasses declare their authorize-URL conventions and ordered field
    extraction rules as class attributes, and implement the provider-specific
    request shapes. Rules are evaluated top-down; the first non-empty value
    wins.
    """

    client_id_param = "client_id"
    scope_separator = ","
    extra_authorize_params: Dict[str, str] = {}
    max_page_size = 100

    placeholder_caption = "Imported memory"
    media_url_rules: Sequence[FieldPath] = ()
    caption_rules: Sequence[FieldPath] = ()
    location_rules: Sequence[FieldPath] = ()
    timestamp_rule: Optional[FieldPath] = None
    timestamp_kind: TimestampKind = "iso"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def provider(self) -> str:
        return self.config.provider

    @property
    def display_name(self) -> str:
        return self.config.display_name

    # ---- authorization URL -------------------------------------------------

    def build_auth_url(self, state: str, flow: FlowKey = "connect") -> str:
        params = {
            self.client_id_param: self.config.client_id,
            "redirect_uri": self.config.redirect_uri(flow),
            "state": state,
            "response_type": "code",
            "scope": self.scope_separator.join(self.config.scopes_for(flow)),
        }
        params.update(self.extra_authorize_params)
        return f"{self.config.authorize_url}?{urlencode(params)}"

    # ---- transport ---------------------------------------------------------

    async def _send(
        self,
        request: Awaitable[httpx.Response],
        error_cls: Type[ConnectorError],
        action: str,
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        try:
            response = await request
        except httpx.HTTPError as exc:
            logger.warning("%s %s request failed: %s", self.display_name, action, exc.__class__.__name__)
            raise error_cls(f"Could not reach {self.display_name} ({action}).", provider=self.provider) from exc
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise error_cls(
                f"{self.display_name} returned an unreadable {action} response (HTTP {response.status_code}).",
                provider=self.provider,
            )
        return response, payload

    def _check_payload(
        self,
        response: httpx.Response,
        payload: Dict[str, Any],
        read_error: Callable[[Dict[str, Any]], Optional[str]],
        error_cls: Type[ConnectorError],
        action: str,
    ) -> None:
        message = read_error(payload)
        if not message and response.is_error:
            message = f"{self.display_name} {action} failed with HTTP {response.status_code}."
        if message:
            logger.warning("%s %s error: %s", self.display_name, action, message)
            raise error_cls(message, provider=self.provider)

    # ---- token exchange ----------------------------------------------------

    @abstractmethod
    def _token_request(self, client: httpx.AsyncClient, code: str, redirect_uri: str) -> Awaitable[httpx.Response]:
        raise NotImplementedError

    def _token_error(self, payload: Dict[str, Any]) -> Optional[str]:
        return provider_error_message(payload)

    async def exchange_code(self, client: httpx.AsyncClient, code: str, flow: FlowKey = "connect") -> TokenGrant:
        """Trade an authorization code for an access token."""
        request = self._token_request(client, code, self.config.redirect_uri(flow))
        response, payload = await self._send(request, ProviderExchangeError, "token exchange")
        self._check_payload(response, payload, self._token_error, ProviderExchangeError, "token exchange")
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderExchangeError(f"{self.display_name} did not return an access token.", provider=self.provider)
        return TokenGrant(access_token=access_token)

    # ---- media listing -----------------------------------------------------

    @abstractmethod
    def _media_request(self, client: httpx.AsyncClient, access_token: str, page_size: int) -> Awaitable[httpx.Response]:
        raise NotImplementedError

    def _media_error(self, payload: Dict[str, Any]) -> Optional[str]:
        return provider_error_message(payload)

    @abstractmethod
    def _media_items(self, payload: Dict[str, Any]) -> List[Any]:
        raise NotImplementedError

    def page_size(self, limit: int) -> int:
        return max(1, min(int(limit), self.max_page_size))

    async def list_media(self, client: httpx.AsyncClient, access_token: str, limit: int) -> List[Any]:
        """Fetch one page of raw media items; any failure aborts the whole page."""
        request = self._media_request(client, access_token, self.page_size(limit))
        response, payload = await self._send(request, MediaImportError, "media listing")
        self._check_payload(response, payload, self._media_error, MediaImportError, "media listing")
        return self._media_items(payload)

    # ---- field mapping -----------------------------------------------------

    def media_url(self, item: Dict[str, Any]) -> Optional[str]:
        return first_text(item, self.media_url_rules)

    @abstractmethod
    def media_type(self, item: Dict[str, Any]) -> MemoryType:
        raise NotImplementedError

    def date_text(self, item: Dict[str, Any]) -> Optional[str]:
        if not self.timestamp_rule:
            return None
        moment = parse_timestamp(dig(item, self.timestamp_rule), self.timestamp_kind)
        return format_date_text(moment) if moment else None

    def map_media_item(self, item: Any) -> Optional[MemoryDraft]:
        """Map a raw provider item onto a memory draft, or None when unusable."""
        if not isinstance(item, dict):
            return None
        media_url = self.media_url(item)
        if not media_url:
            return None
        return MemoryDraft(
            type=self.media_type(item),
            media_url=media_url,
            caption=first_text(item, self.caption_rules) or self.placeholder_caption,
            date_text=self.date_text(item),
            location=first_text(item, self.location_rules),
        )

    # ---- login profile -----------------------------------------------------

    def _profile_request(self, client: httpx.AsyncClient, access_token: str) -> Awaitable[httpx.Response]:
        raise UnsupportedProviderError(f"{self.display_name} cannot be used to sign in.", provider=self.provider)

    def _profile_error(self, payload: Dict[str, Any]) -> Optional[str]:
        return provider_error_message(payload)

    def _profile_from_payload(self, payload: Dict[str, Any]) -> ProviderProfile:
        raise NotImplementedError

    async def fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> ProviderProfile:
        """Load the account identity used by the login flow."""
        if not self.config.supports_login:
            raise UnsupportedProviderError(f"{self.display_name} cannot be used to sign in.", provider=self.provider)
        request = self._profile_request(client, access_token)
        response, payload = await self._send(request, ProviderExchangeError, "profile lookup")
        self._check_payload(response, payload, self._profile_error, ProviderExchangeError, "profile lookup")
        profile = self._profile_from_payload(payload)
        if not profile.external_id:
            raise ProviderExchangeError(f"{self.display_name} did not return an account id.", provider=self.provider)
        return profile


class FacebookAdapter(BaseProviderAdapter):
    """Facebook Login + Graph API photos.

    Token exchange is a GET with query parameters. Media URL rules: the first
    (largest) ``images`` variant, then ``picture``.
    """

    placeholder_caption = "Imported from Facebook"
    media_url_rules = (("images", 0, "source"), ("picture",))
    caption_rules = (("name",),)
    location_rules = (("place", "name"),)
    timestamp_rule = ("created_time",)

    def _token_request(self, client, code, redirect_uri):
        return client.get(
            self.config.token_url,
            params={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    def _media_request(self, client, access_token, page_size):
        return client.get(
            self.config.media_url,
            params={
                "fields": "id,images,name,created_time,place",
                "limit": page_size,
                "access_token": access_token,
            },
        )

    def _media_items(self, payload):
        data = payload.get("data")
        return data if isinstance(data, list) else []

    def media_type(self, item):
        return "photo"

    def _profile_request(self, client, access_token):
        return client.get(
            self.config.user_info_url,
            params={"fields": "id,name,email,picture", "access_token": access_token},
        )

    def _profile_from_payload(self, payload):
        return ProviderProfile(
            provider=self.provider,
            external_id=str(payload.get("id") or ""),
            name=first_text(payload, (("name",),)),
            email=first_text(payload, (("email",),)),
            avatar=first_text(payload, (("picture", "data", "url"),)),
        )


class InstagramAdapter(BaseProviderAdapter):
    """Instagram API with form-encoded token exchange.

    Media URL rules: ``media_url``, then ``thumbnail_url`` (video covers).
    """

    placeholder_caption = "Imported from Instagram"
    media_url_rules = (("media_url",), ("thumbnail_url",))
    caption_rules = (("caption",),)
    timestamp_rule = ("timestamp",)

    def _token_request(self, client, code, redirect_uri):
        return client.post(
            self.config.token_url,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    def _token_error(self, payload):
        if payload.get("error_type"):
            return str(payload.get("error_message") or payload["error_type"])
        return provider_error_message(payload)

    def _media_request(self, client, access_token, page_size):
        return client.get(
            self.config.media_url,
            params={
                "fields": "id,media_type,media_url,thumbnail_url,caption,timestamp,permalink",
                "limit": page_size,
                "access_token": access_token,
            },
        )

    def _media_items(self, payload):
        data = payload.get("data")
        return data if isinstance(data, list) else []

    def media_type(self, item):
        return "video" if str(item.get("media_type") or "").upper() == "VIDEO" else "photo"

    def _profile_request(self, client, access_token):
        return client.get(
            self.config.user_info_url,
            params={"fields": "id,username", "access_token": access_token},
        )

    def _profile_from_payload(self, payload):
        return ProviderProfile(
            provider=self.provider,
            external_id=str(payload.get("id") or ""),
            name=first_text(payload, (("username",),)),
        )


def _tiktok_error(payload: Dict[str, Any]) -> Optional[str]:
    # TikTok wraps successful responses in error.code == "ok".
    error = payload.get("error")
    if isinstance(error, dict):
        code = str(error.get("code") or "")
        if code and code != "ok":
            return str(error.get("message") or code)
        return None
    return provider_error_message(payload)


class TikTokAdapter(BaseProviderAdapter):
    """TikTok Login Kit v2 and the video list endpoint.

    Uses ``client_key`` instead of ``client_id``. Media URL rules:
    ``cover_image_url``, ``embed_link``, ``share_url``; ``create_time`` is
    epoch seconds.
    """

    client_id_param = "client_key"
    max_page_size = 20
    placeholder_caption = "Imported from TikTok"
    media_url_rules = (("cover_image_url",), ("embed_link",), ("share_url",))
    caption_rules = (("title",), ("video_description",))
    timestamp_rule = ("create_time",)
    timestamp_kind = "epoch_seconds"

    def _token_request(self, client, code, redirect_uri):
        return client.post(
            self.config.token_url,
            data={
                "client_key": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )

    def _token_error(self, payload):
        return _tiktok_error(payload)

    def _media_request(self, client, access_token, page_size):
        return client.post(
            self.config.media_url,
            params={"fields": "id,title,video_description,create_time,cover_image_url,embed_link,share_url"},
            json={"max_count": page_size},
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def _media_error(self, payload):
        return _tiktok_error(payload)

    def _media_items(self, payload):
        videos = dig(payload, ("data", "videos"))
        return videos if isinstance(videos, list) else []

    def media_type(self, item):
        return "video"

    def _profile_request(self, client, access_token):
        return client.get(
            self.config.user_info_url,
            params={"fields": "open_id,display_name,avatar_url"},
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def _profile_error(self, payload):
        return _tiktok_error(payload)

    def _profile_from_payload(self, payload):
        return ProviderProfile(
            provider=self.provider,
            external_id=first_text(payload, (("data", "user", "open_id"),)) or "",
            name=first_text(payload, (("data", "user", "display_name"),)),
            avatar=first_text(payload, (("data", "user", "avatar_url"),)),
        )


class GooglePhotosAdapter(BaseProviderAdapter):
    """Google OAuth 2.0 + Photos Library media items.

    Scopes are space-joined and offline access is requested. The media URL is
    constructed from ``baseUrl`` with explicit size parameters.
    """

    scope_separator = " "
    extra_authorize_params = {"access_type": "offline", "prompt": "consent"}
    placeholder_caption = "Imported from Google Photos"
    media_url_rules = (("baseUrl",),)
    size_suffix = "=w800-h600"
    caption_rules = (("description",), ("filename",))
    timestamp_rule = ("mediaMetadata", "creationTime")

    def _token_request(self, client, code, redirect_uri):
        return client.post(
            self.config.token_url,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )

    def _media_request(self, client, access_token, page_size):
        return client.get(
            self.config.media_url,
            params={"pageSize": page_size},
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def _media_items(self, payload):
        items = payload.get("mediaItems")
        return items if isinstance(items, list) else []

    def media_url(self, item):
        base_url = first_text(item, self.media_url_rules)
        return f"{base_url}{self.size_suffix}" if base_url else None

    def media_type(self, item):
        return "video" if str(item.get("mimeType") or "").startswith("video/") else "photo"


ADAPTER_CLASSES: Dict[str, Type[BaseProviderAdapter]] = {
    "facebook": FacebookAdapter,
    "instagram": InstagramAdapter,
    "tiktok": TikTokAdapter,
    "photos": GooglePhotosAdapter,
}


def build_adapter(config: ProviderConfig) -> BaseProviderAdapter:
    adapter_cls = ADAPTER_CLASSES.get(config.provider)
    if adapter_cls is None:
        raise UnsupportedProviderError(f'App "{config.provider}" is not supported', provider=config.provider)
    return adapter_cls(config)
