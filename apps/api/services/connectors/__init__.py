"""Public connector utilities."""

from services.connectors.connection_store import ConnectionStore
from services.connectors.importer import MediaImporter
from services.connectors.oauth import OAuthCallbackHandler, OAuthInitiator
from services.connectors.registry import ProviderRegistry
from services.connectors.state_store import (
    BaseStateTokenStore,
    InMemoryStateTokenStore,
    RedisStateTokenStore,
    create_state_store,
)
from services.connectors.types import (
    CallbackOutcome,
    ConnectorError,
    ImportResult,
    MemoryDraft,
    ProviderConfig,
    StateValidationError,
)

__all__ = [
    "BaseStateTokenStore",
    "CallbackOutcome",
    "ConnectionStore",
    "ConnectorError",
    "ImportResult",
    "InMemoryStateTokenStore",
    "MediaImporter",
    "MemoryDraft",
    "OAuthCallbackHandler",
    "OAuthInitiator",
    "ProviderConfig",
    "ProviderRegistry",
    "RedisStateTokenStore",
    "StateValidationError",
    "create_state_store",
]
