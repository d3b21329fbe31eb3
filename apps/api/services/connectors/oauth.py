"""OAuth handshake: authorization URL construction and callback processing."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import httpx

from services.connectors.connection_store import ConnectionStore
from services.connectors.registry import ProviderRegistry
from services.connectors.state_store import BaseStateTokenStore
from services.connectors.types import (
    CallbackOutcome,
    FlowKey,
    ProviderDeniedError,
    ProviderExchangeError,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)


class OAuthInitiator:
    def __init__(self, registry: ProviderRegistry, state_store: BaseStateTokenStore) -> None:
        self.registry = registry
        self.state_store = state_store

    async def begin(self, user_id: Optional[str], provider: str, flow: FlowKey = "connect") -> str:
        """Return the provider authorization URL bound to a fresh state token."""
        config = self.registry.require_configured(provider)
        if flow == "login" and not config.supports_login:
            raise UnsupportedProviderError(f'Provider "{provider}" is not supported', provider=provider)

        state = await self.state_store.issue(user_id, provider, flow)
        logger.info("oauth_begin provider=%s flow=%s user=%s", provider, flow, user_id or "-")
        return self.registry.adapter(provider).build_auth_url(state, flow)


class OAuthCallbackHandler:
    """Validates a provider redirect and completes the handshake.

    Gates run strictly in order: provider error, state, code exchange, and
    only then persistence. A failure at any gate leaves connections untouched.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        state_store: BaseStateTokenStore,
        http_client: httpx.AsyncClient,
        connections: Optional[ConnectionStore] = None,
    ) -> None:
        self.registry = registry
        self.state_store = state_store
        self.http_client = http_client
        self.connections = connections

    async def handle_callback(
        self,
        provider: str,
        params: Mapping[str, str],
        flow: FlowKey = "connect",
    ) -> CallbackOutcome:
        config = self.registry.get(provider)

        error = params.get("error")
        if error:
            message = params.get("error_description") or error
            logger.warning("OAuth provider error for %s: %s", provider, message)
            raise ProviderDeniedError(str(message), provider=provider)

        record = await self.state_store.validate(params.get("state"), provider, flow)

        self.registry.require_configured(provider)
        code = params.get("code")
        if not code:
            raise ProviderExchangeError("No authorization code received.", provider=provider)

        adapter = self.registry.adapter(provider)
        grant = await adapter.exchange_code(self.http_client, code, flow)

        if flow == "login":
            profile = await adapter.fetch_profile(self.http_client, grant.access_token)
            logger.info("oauth_login provider=%s external_id=%s", provider, profile.external_id)
            return CallbackOutcome(
                provider=provider,
                display_name=config.display_name,
                flow=flow,
                profile=profile,
            )

        if self.connections is None:
            raise RuntimeError("Connect callbacks require a connection store.")
        await self.connections.upsert(
            record.user_id,
            provider,
            connected=True,
            access_token=grant.access_token,
        )
        logger.info("oauth_connected provider=%s user=%s", provider, record.user_id)
        return CallbackOutcome(
            provider=provider,
            display_name=config.display_name,
            flow=flow,
            user_id=record.user_id,
        )
