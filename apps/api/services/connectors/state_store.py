"""Single-use OAuth state tokens bound to a user, provider and flow."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
from jose import JWTError, jwt

from services.connectors.types import FLOWS, FlowKey, StateRecord, StateValidationError

logger = logging.getLogger(__name__)

STATE_TOKEN_TYPE = "oauth_state"
DEFAULT_STATE_TTL_SECONDS = 600
# Tolerated clock drift for tokens issued by another API instance.
MAX_FUTURE_SKEW_SECONDS = 60


class BaseStateTokenStore(ABC):
    """Issues signed state blobs and consumes the matching pending record once.

    The blob that travels through the provider is an HS256 JWT carrying the
    nonce, provider, flow, issue time and (for the connect flow) the user id.
    Every validation failure raises the same ``StateValidationError``; the
    specific cause is only logged.
    """

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self._clock = clock

    @abstractmethod
    async def _save(self, record: StateRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _consume(self, nonce: str) -> Optional[StateRecord]:
        """Atomically remove and return the pending record for ``nonce``."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    def _is_expired(self, issued_at: float, now: float) -> bool:
        return now - issued_at > self.ttl_seconds or issued_at - now > MAX_FUTURE_SKEW_SECONDS

    async def issue(self, user_id: Optional[str], provider: str, flow: FlowKey = "connect") -> str:
        """Register a pending handshake and return the opaque state blob."""
        if flow not in FLOWS:
            raise ValueError(f"Unknown OAuth flow: {flow}")
        if flow == "connect" and not user_id:
            raise ValueError("The connect flow requires a user id.")

        record = StateRecord(
            nonce=secrets.token_hex(16),
            provider=provider,
            flow=flow,
            issued_at=self._clock(),
            user_id=user_id,
        )
        await self._save(record)

        claims: Dict[str, Any] = {
            "typ": STATE_TOKEN_TYPE,
            "nonce": record.nonce,
            "provider": record.provider,
            "flow": record.flow,
            "issued_at": record.issued_at,
        }
        if user_id:
            claims["sub"] = user_id
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def _reject(self, reason: str, provider: str) -> StateValidationError:
        logger.warning("OAuth state rejected for %s: %s", provider, reason)
        return StateValidationError(provider=provider)

    def _decode(self, state: Any, provider: str) -> Dict[str, Any]:
        if not state or not isinstance(state, str):
            raise self._reject("missing state", provider)
        try:
            claims = jwt.decode(state, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise self._reject(f"undecodable state ({exc.__class__.__name__})", provider) from None

        issued_at = claims.get("issued_at")
        well_formed = (
            claims.get("typ") == STATE_TOKEN_TYPE
            and isinstance(claims.get("nonce"), str)
            and bool(claims.get("nonce"))
            and isinstance(claims.get("provider"), str)
            and claims.get("flow") in FLOWS
            and isinstance(issued_at, (int, float))
            and not isinstance(issued_at, bool)
            and isinstance(claims.get("sub", ""), str)
        )
        if not well_formed:
            raise self._reject("malformed claims", provider)
        return claims

    async def validate(self, state: Any, expected_provider: str, expected_flow: FlowKey = "connect") -> StateRecord:
        """Validate and consume a state blob returned by ``expected_provider``."""
        claims = self._decode(state, expected_provider)
        now = self._clock()

        if self._is_expired(float(claims["issued_at"]), now):
            raise self._reject("expired", expected_provider)
        if claims["provider"] != expected_provider:
            raise self._reject(f"issued for {claims['provider']}", expected_provider)
        if claims["flow"] != expected_flow:
            raise self._reject(f"flow {claims['flow']} presented to {expected_flow} callback", expected_provider)

        stored = await self._consume(claims["nonce"])
        if stored is None:
            raise self._reject("unknown or already used nonce", expected_provider)
        if (
            stored.provider != expected_provider
            or stored.flow != claims["flow"]
            or (stored.user_id or "") != claims.get("sub", "")
        ):
            raise self._reject("stored record does not match state", expected_provider)
        if self._is_expired(stored.issued_at, now):
            raise self._reject("expired", expected_provider)
        return stored


class InMemoryStateTokenStore(BaseStateTokenStore):
    """Process-local store; suitable for a single API instance."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._pending: Dict[str, StateRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def _sweep_expired(self, now: float) -> None:
        expired = [nonce for nonce, record in self._pending.items() if now - record.issued_at > self.ttl_seconds]
        for nonce in expired:
            del self._pending[nonce]

    async def _save(self, record: StateRecord) -> None:
        async with self._lock:
            self._sweep_expired(record.issued_at)
            self._pending[record.nonce] = record

    async def _consume(self, nonce: str) -> Optional[StateRecord]:
        async with self._lock:
            return self._pending.pop(nonce, None)


class RedisStateTokenStore(BaseStateTokenStore):
    """Shared store so several API instances can complete each other's handshakes."""

    key_prefix = "eternalme:oauth_state:"

    def __init__(self, client: redis.Redis, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStateTokenStore":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, nonce: str) -> str:
        return f"{self.key_prefix}{nonce}"

    async def _save(self, record: StateRecord) -> None:
        # Redis expires entries itself, so there is nothing to sweep.
        await self._client.set(self._key(record.nonce), json.dumps(asdict(record)), ex=self.ttl_seconds)

    async def _consume(self, nonce: str) -> Optional[StateRecord]:
        raw = await self._client.getdel(self._key(nonce))
        if not raw:
            return None
        try:
            return StateRecord(**json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding corrupt OAuth state record for nonce %s", nonce[:8])
            return None

    async def aclose(self) -> None:
        await self._client.aclose()


def create_state_store(settings: Any) -> BaseStateTokenStore:
    """Build the configured state store backend."""
    options = {
        "secret": settings.JWT_SECRET,
        "algorithm": settings.JWT_ALGORITHM,
        "ttl_seconds": settings.OAUTH_STATE_TTL_SECONDS,
    }
    if settings.OAUTH_STATE_BACKEND == "redis":
        return RedisStateTokenStore.from_url(settings.REDIS_URL, **options)
    return InMemoryStateTokenStore(**options)
