"""FastAPI dependencies wiring the OAuth connection components."""

from typing import AsyncIterator

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from services.connectors.connection_store import ConnectionStore
from services.connectors.importer import MediaImporter
from services.connectors.oauth import OAuthCallbackHandler, OAuthInitiator
from services.connectors.registry import ProviderRegistry
from services.connectors.state_store import BaseStateTokenStore
from services.memories import MemoryWriter


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_state_store(request: Request) -> BaseStateTokenStore:
    return request.app.state.oauth_state_store


async def get_provider_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Per-request client for provider token and media endpoints."""
    async with httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS) as client:
        yield client


def get_connection_store(db: AsyncSession = Depends(get_db)) -> ConnectionStore:
    return ConnectionStore(db)


def get_oauth_initiator(
    registry: ProviderRegistry = Depends(get_provider_registry),
    state_store: BaseStateTokenStore = Depends(get_state_store),
) -> OAuthInitiator:
    return OAuthInitiator(registry, state_store)


def get_callback_handler(
    registry: ProviderRegistry = Depends(get_provider_registry),
    state_store: BaseStateTokenStore = Depends(get_state_store),
    http_client: httpx.AsyncClient = Depends(get_provider_http_client),
    connections: ConnectionStore = Depends(get_connection_store),
) -> OAuthCallbackHandler:
    return OAuthCallbackHandler(registry, state_store, http_client, connections)


def get_media_importer(
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    http_client: httpx.AsyncClient = Depends(get_provider_http_client),
) -> MediaImporter:
    return MediaImporter(registry, ConnectionStore(db), http_client, MemoryWriter(db))
