import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from config import Settings
from services.connectors.providers import first_text, parse_timestamp
from services.connectors.registry import ProviderRegistry
from services.connectors.types import (
    MediaImportError,
    ProviderExchangeError,
    ProviderNotConfiguredError,
    UnsupportedProviderError,
)


REGISTRY = ProviderRegistry.from_settings(
    Settings(
        PUBLIC_API_URL="https://api.eternalme.test",
        OAUTH_FACEBOOK_CLIENT_ID="fb-client",
        OAUTH_FACEBOOK_CLIENT_SECRET="fb-secret",
        OAUTH_TIKTOK_CLIENT_ID="tt-client-key",
        OAUTH_TIKTOK_CLIENT_SECRET="tt-secret",
        OAUTH_GOOGLE_CLIENT_ID="google-client",
        OAUTH_GOOGLE_CLIENT_SECRET="google-secret",
    )
)


def _query(url: str):
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_registry_reports_configuration_per_provider():
    assert REGISTRY.config_status() == {
        "facebook": True,
        "instagram": True,
        "tiktok": True,
        "photos": True,
    }
    assert REGISTRY.login_config_status() == {"facebook": True, "instagram": True, "tiktok": True}


def test_instagram_falls_back_to_facebook_credentials():
    config = REGISTRY.get("instagram")
    assert config.client_id == "fb-client"
    assert config.configured


def test_unknown_and_unconfigured_providers_raise_typed_errors():
    with pytest.raises(UnsupportedProviderError) as exc_info:
        REGISTRY.get("myspace")
    assert exc_info.value.to_payload() == {"error": "unsupported_app", "message": 'App "myspace" is not supported'}

    bare = ProviderRegistry.from_settings(Settings())
    with pytest.raises(ProviderNotConfiguredError):
        bare.require_configured("photos")


def test_facebook_authorize_url_uses_comma_scopes_and_default_callback():
    url = REGISTRY.adapter("facebook").build_auth_url("state-blob")
    parsed = urlparse(url)
    query = _query(url)

    assert parsed.netloc == "www.facebook.com"
    assert query["client_id"] == "fb-client"
    assert query["scope"] == "public_profile,user_photos,user_videos"
    assert query["response_type"] == "code"
    assert query["state"] == "state-blob"
    assert query["redirect_uri"] == "https://api.eternalme.test/connect-callback/facebook"


def test_tiktok_authorize_url_uses_client_key():
    query = _query(REGISTRY.adapter("tiktok").build_auth_url("s"))
    assert query["client_key"] == "tt-client-key"
    assert "client_id" not in query
    assert query["scope"] == "user.info.basic,video.list"


def test_google_photos_authorize_url_requests_offline_access():
    query = _query(REGISTRY.adapter("photos").build_auth_url("s"))
    assert query["scope"] == "https://www.googleapis.com/auth/photoslibrary.readonly"
    assert query["access_type"] == "offline"
    assert query["prompt"] == "consent"


def test_login_flow_uses_login_scopes_and_callback():
    query = _query(REGISTRY.adapter("facebook").build_auth_url("s", "login"))
    assert query["scope"] == "public_profile,email"
    assert query["redirect_uri"] == "https://api.eternalme.test/auth/oauth/facebook/callback"


def test_facebook_mapping_prefers_largest_image_and_reads_place():
    adapter = REGISTRY.adapter("facebook")
    draft = adapter.map_media_item(
        {
            "id": "p1",
            "images": [{"source": "https://fb.test/large.jpg"}, {"source": "https://fb.test/small.jpg"}],
            "picture": "https://fb.test/thumb.jpg",
            "name": "Grandma's 90th",
            "created_time": "2023-11-04T10:00:00+0000",
            "place": {"name": "Lisbon"},
        }
    )
    assert draft.type == "photo"
    assert draft.media_url == "https://fb.test/large.jpg"
    assert draft.caption == "Grandma's 90th"
    assert draft.location == "Lisbon"
    assert draft.date_text == "Nov 4, 2023"

    fallback = adapter.map_media_item({"id": "p2", "images": [], "picture": "https://fb.test/thumb.jpg"})
    assert fallback.media_url == "https://fb.test/thumb.jpg"
    assert fallback.caption == "Imported from Facebook"
    assert fallback.date_text is None


def test_tiktok_mapping_reads_epoch_seconds():
    draft = REGISTRY.adapter("tiktok").map_media_item(
        {"id": "v1", "share_url": "https://tiktok.test/v1", "create_time": 1699092000}
    )
    assert draft.type == "video"
    assert draft.media_url == "https://tiktok.test/v1"
    assert draft.caption == "Imported from TikTok"
    assert draft.date_text == "Nov 4, 2023"


def test_google_photos_mapping_sizes_base_url_and_detects_video():
    adapter = REGISTRY.adapter("photos")
    draft = adapter.map_media_item(
        {
            "id": "g1",
            "baseUrl": "https://lh3.test/abc",
            "mimeType": "video/mp4",
            "filename": "beach.mp4",
            "mediaMetadata": {"creationTime": "2023-11-04T10:00:00Z"},
        }
    )
    assert draft.media_url == "https://lh3.test/abc=w800-h600"
    assert draft.type == "video"
    assert draft.caption == "beach.mp4"
    assert draft.date_text == "Nov 4, 2023"


def test_items_without_media_url_are_unusable():
    assert REGISTRY.adapter("instagram").map_media_item({"id": "x", "caption": "no media"}) is None
    assert REGISTRY.adapter("photos").map_media_item({"id": "x", "baseUrl": "   "}) is None
    assert REGISTRY.adapter("facebook").map_media_item("not-a-dict") is None


def test_page_size_is_clamped_per_provider():
    assert REGISTRY.adapter("tiktok").page_size(50) == 20
    assert REGISTRY.adapter("instagram").page_size(500) == 100
    assert REGISTRY.adapter("photos").page_size(0) == 1


def test_extraction_helpers_tolerate_bad_values():
    assert first_text({"a": {"b": "  "}}, (("a", "b"), ("c",))) is None
    assert first_text({"a": [{"b": "x"}]}, (("a", 3, "b"), ("a", 0, "b"))) == "x"
    assert parse_timestamp("yesterday", "iso") is None
    assert parse_timestamp(True, "epoch_seconds") is None
    assert parse_timestamp(1699092000000, "epoch_millis").day == 4


@pytest.mark.asyncio
async def test_facebook_exchange_is_a_get_with_query_parameters():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "fb-token", "token_type": "bearer"})

    async with _client(handler) as client:
        grant = await REGISTRY.adapter("facebook").exchange_code(client, "auth-code")

    assert grant.access_token == "fb-token"
    (request,) = seen
    assert request.method == "GET"
    assert request.url.params["code"] == "auth-code"
    assert request.url.params["client_secret"] == "fb-secret"


@pytest.mark.asyncio
async def test_exchange_without_access_token_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "bearer"})

    async with _client(handler) as client:
        with pytest.raises(ProviderExchangeError):
            await REGISTRY.adapter("photos").exchange_code(client, "code")


@pytest.mark.asyncio
async def test_exchange_transport_failure_maps_to_exchange_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler) as client:
        with pytest.raises(ProviderExchangeError) as exc_info:
            await REGISTRY.adapter("instagram").exchange_code(client, "code")
    assert exc_info.value.error_code == "exchange_failed"


@pytest.mark.asyncio
async def test_tiktok_exchange_posts_client_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "act.123", "open_id": "o1"})

    async with _client(handler) as client:
        await REGISTRY.adapter("tiktok").exchange_code(client, "code")

    body = parse_qs(seen[0].content.decode())
    assert seen[0].method == "POST"
    assert body["client_key"] == ["tt-client-key"]
    assert body["grant_type"] == ["authorization_code"]


@pytest.mark.asyncio
async def test_tiktok_media_listing_posts_max_count_with_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": {"videos": [{"id": "v1", "share_url": "https://tiktok.test/v1"}]},
                "error": {"code": "ok", "message": ""},
            },
        )

    async with _client(handler) as client:
        items = await REGISTRY.adapter("tiktok").list_media(client, "act.123", 50)

    assert items == [{"id": "v1", "share_url": "https://tiktok.test/v1"}]
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer act.123"
    assert "cover_image_url" in request.url.params["fields"]
    assert json.loads(request.content) == {"max_count": 20}


@pytest.mark.asyncio
async def test_tiktok_error_envelope_fails_the_import():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": {}, "error": {"code": "access_token_invalid", "message": "The access token is invalid"}},
        )

    async with _client(handler) as client:
        with pytest.raises(MediaImportError) as exc_info:
            await REGISTRY.adapter("tiktok").list_media(client, "stale", 10)
    assert exc_info.value.message == "The access token is invalid"
    assert exc_info.value.status_code == 500
