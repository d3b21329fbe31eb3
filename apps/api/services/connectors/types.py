"""Connector provider contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple


ProviderKey = Literal["instagram", "facebook", "tiktok", "photos"]
FlowKey = Literal["connect", "login"]
MemoryType = Literal["photo", "video", "audio"]

SUPPORTED_PROVIDERS: Tuple[str, ...] = ("instagram", "facebook", "tiktok", "photos")
FLOWS: Tuple[str, ...] = ("connect", "login")


class ConnectorError(RuntimeError):
    """Base class for failures surfaced by the OAuth connection subsystem."""

    error_code = "connector_error"
    status_code = 400

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class UnsupportedProviderError(ConnectorError):
    """Provider id is not one this service knows about."""

    error_code = "unsupported_app"


class ProviderNotConfiguredError(ConnectorError):
    """Provider is supported but its OAuth credentials are missing."""

    error_code = "oauth_not_configured"


class OAuthRequiredError(ConnectorError):
    """Demo toggle attempted on a provider that has real OAuth credentials."""

    error_code = "oauth_required"


class ProviderDeniedError(ConnectorError):
    """Provider redirected back with an ``error`` parameter."""

    error_code = "provider_denied"


class StateValidationError(ConnectorError):
    """State blob was malformed, expired, unknown or bound to another provider."""

    error_code = "invalid_state"
    public_message = "Invalid or expired authorization state. Please try again."

    def __init__(self, provider: Optional[str] = None) -> None:
        super().__init__(self.public_message, provider=provider)


class ProviderExchangeError(ConnectorError):
    """Token endpoint rejected the code or could not be reached."""

    error_code = "exchange_failed"


class NotConnectedError(ConnectorError):
    """No active connection (with a token) exists for the user and provider."""

    error_code = "not_connected"


class ConnectionNotFoundError(ConnectorError):
    error_code = "connection_not_found"
    status_code = 404


class MediaImportError(ConnectorError):
    """Media listing call failed; nothing was imported."""

    error_code = "import_failed"
    status_code = 500


@dataclass(frozen=True)
class ProviderConfig:
    provider: ProviderKey
    display_name: str
    authorize_url: str
    token_url: str
    media_url: str
    scopes: Tuple[str, ...]
    client_id: str = ""
    client_secret: str = ""
    callback_url: str = ""
    user_info_url: Optional[str] = None
    login_scopes: Tuple[str, ...] = ()
    login_callback_url: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def supports_login(self) -> bool:
        return bool(self.user_info_url and self.login_scopes)

    def redirect_uri(self, flow: FlowKey) -> str:
        return self.login_callback_url if flow == "login" else self.callback_url

    def scopes_for(self, flow: FlowKey) -> Tuple[str, ...]:
        return self.login_scopes if flow == "login" else self.scopes


@dataclass(frozen=True)
class StateRecord:
    nonce: str
    provider: str
    flow: FlowKey
    issued_at: float
    user_id: Optional[str] = None


@dataclass(frozen=True)
class TokenGrant:
    access_token: str = field(repr=False)


@dataclass(frozen=True)
class ProviderProfile:
    provider: str
    external_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None


@dataclass(frozen=True)
class MemoryDraft:
    type: MemoryType
    media_url: str
    caption: str
    date_text: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class ConnectionRecord:
    user_id: str
    provider: str
    connected: bool
    access_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class CallbackOutcome:
    provider: str
    display_name: str
    flow: FlowKey
    user_id: Optional[str] = None
    profile: Optional[ProviderProfile] = None


@dataclass(frozen=True)
class ImportResult:
    provider: str
    imported: int
    memories: List[Dict[str, Any]]
    # Items the provider returned without a usable media URL.
    skipped: int = 0
