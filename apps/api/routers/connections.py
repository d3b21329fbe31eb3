"""
Provider connection endpoints: OAuth connect flow, demo toggles, and media import.
"""

import html
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel, Field

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from routers.connector_deps import (
    get_callback_handler,
    get_connection_store,
    get_media_importer,
    get_oauth_initiator,
    get_provider_registry,
)
from routers.rate_limit import rate_limit
from services.connectors.connection_store import ConnectionStore
from services.connectors.importer import MediaImporter
from services.connectors.oauth import OAuthCallbackHandler, OAuthInitiator
from services.connectors.registry import ProviderRegistry
from services.connectors.types import ConnectorError, OAuthRequiredError

logger = logging.getLogger(__name__)

router = APIRouter()


class ImportRequest(BaseModel):
    limit: int = Field(default=settings.IMPORT_DEFAULT_LIMIT, ge=1, le=100)


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8" />
    <title>{title}</title>
    <style>
      body {{ font-family: system-ui, sans-serif; display: flex; align-items: center;
             justify-content: center; height: 100vh; margin: 0; background: #faf7f2; }}
      .card {{ text-align: center; padding: 2rem 3rem; border-radius: 12px; background: #fff;
               box-shadow: 0 4px 24px rgba(0, 0, 0, 0.08); }}
      h1 {{ color: {accent}; }}
    </style>
  </head>
  <body>
    <div class="card">
      <h1>{title}</h1>
      <p>{message}</p>
      <p>You can close this window.</p>
    </div>
    <script>
      if (window.opener) {{
        window.opener.postMessage({{ type: "eternalme-connect", success: {success} }}, "*");
        setTimeout(function () {{ window.close(); }}, 1500);
      }}
    </script>
  </body>
</html>
"""


def render_success_page(display_name: str) -> str:
    return _PAGE_TEMPLATE.format(
        title="Connected!",
        accent="#2e7d32",
        message=f"Successfully connected {html.escape(display_name)}.",
        success="true",
    )


def render_failure_page(message: str) -> str:
    return _PAGE_TEMPLATE.format(
        title="Connection Failed",
        accent="#c62828",
        message=html.escape(message),
        success="false",
    )


@router.post("/connect-init/{provider}")
async def init_connection(
    provider: str,
    auth: AuthContext = Depends(get_auth_context),
    initiator: OAuthInitiator = Depends(get_oauth_initiator),
    _rate_limit: None = Depends(rate_limit("connect_init", limit=30, window_seconds=600)),
):
    """Start the connect flow and hand the authorization URL to the client."""
    url = await initiator.begin(auth.user_id, provider, "connect")
    return {"authorizationUrl": url}


@router.get("/connections/{provider}/connect")
async def connect_redirect(
    provider: str,
    auth: AuthContext = Depends(get_auth_context),
    initiator: OAuthInitiator = Depends(get_oauth_initiator),
    _rate_limit: None = Depends(rate_limit("connect_init", limit=30, window_seconds=600)),
):
    url = await initiator.begin(auth.user_id, provider, "connect")
    return RedirectResponse(url, status_code=307)


@router.get("/connect-callback/{provider}", response_class=HTMLResponse)
async def connect_callback(
    provider: str,
    request: Request,
    handler: OAuthCallbackHandler = Depends(get_callback_handler),
):
    """
    Provider redirect target for the connect flow.

    Rendered as a page for the popup window, so failures come back as HTML
    with status 400 instead of the JSON error envelope.
    """
    try:
        outcome = await handler.handle_callback(provider, dict(request.query_params), "connect")
    except ConnectorError as exc:
        logger.warning("connect_callback_failed provider=%s error=%s", provider, exc.error_code)
        return HTMLResponse(render_failure_page(exc.message), status_code=400)
    return HTMLResponse(render_success_page(outcome.display_name))


@router.get("/connections")
async def list_connections(
    auth: AuthContext = Depends(get_auth_context),
    store: ConnectionStore = Depends(get_connection_store),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    records = await store.list(auth.user_id)
    return {
        "connections": {record.provider: record.connected for record in records},
        "configStatus": registry.config_status(),
    }


@router.post("/connections/{provider}/toggle")
async def toggle_connection(
    provider: str,
    auth: AuthContext = Depends(get_auth_context),
    store: ConnectionStore = Depends(get_connection_store),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    """Demo-mode switch for providers without OAuth credentials."""
    config = registry.get(provider)
    if config.configured:
        raise OAuthRequiredError(
            f"This app requires OAuth authentication. Use /connect-init/{provider} to start the flow.",
            provider=provider,
        )
    record = await store.toggle(auth.user_id, provider)
    return {"providerId": provider, "connected": record.connected, "mode": "demo"}


@router.post("/connections/{provider}/import")
async def import_media(
    provider: str,
    request: Optional[ImportRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    importer: MediaImporter = Depends(get_media_importer),
):
    limit = request.limit if request else settings.IMPORT_DEFAULT_LIMIT
    result = await importer.import_media(auth.user_id, provider, limit)
    return {
        "success": True,
        "imported": result.imported,
        "memories": result.memories,
    }


@router.delete("/connections/{provider}")
async def disconnect(
    provider: str,
    auth: AuthContext = Depends(get_auth_context),
    store: ConnectionStore = Depends(get_connection_store),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    registry.get(provider)
    await store.set_connected(auth.user_id, provider, connected=False, clear_token=True)
    return {"success": True, "providerId": provider, "connected": False}
