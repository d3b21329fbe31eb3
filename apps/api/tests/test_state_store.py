import asyncio
import base64
import json

import pytest
from jose import jwt

from services.connectors.state_store import (
    InMemoryStateTokenStore,
    RedisStateTokenStore,
    STATE_TOKEN_TYPE,
)
from services.connectors.types import StateRecord, StateValidationError


SECRET = "state-store-test-secret-value-0123456789"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Just enough of the redis.asyncio client for the state store."""

    def __init__(self):
        self.values = {}
        self.expirations = {}
        self.closed = False

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.expirations[key] = ex

    async def getdel(self, key):
        return self.values.pop(key, None)

    async def aclose(self):
        self.closed = True


def _store(clock=None, ttl_seconds=600):
    return InMemoryStateTokenStore(secret=SECRET, ttl_seconds=ttl_seconds, clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_state_validates_once_and_returns_bound_user():
    store = _store()
    state = await store.issue("user-1", "instagram", "connect")

    record = await store.validate(state, "instagram", "connect")
    assert record.user_id == "user-1"
    assert record.provider == "instagram"
    assert record.flow == "connect"

    with pytest.raises(StateValidationError):
        await store.validate(state, "instagram", "connect")
    assert len(store) == 0


@pytest.mark.asyncio
async def test_state_blob_is_signed_and_carries_binding_claims():
    store = _store()
    state = await store.issue("user-1", "tiktok", "connect")

    claims = jwt.decode(state, SECRET, algorithms=["HS256"])
    assert claims["typ"] == STATE_TOKEN_TYPE
    assert claims["provider"] == "tiktok"
    assert claims["flow"] == "connect"
    assert claims["sub"] == "user-1"
    assert len(claims["nonce"]) == 32


@pytest.mark.asyncio
async def test_login_state_has_no_user_binding():
    store = _store()
    state = await store.issue(None, "facebook", "login")

    record = await store.validate(state, "facebook", "login")
    assert record.user_id is None
    assert "sub" not in jwt.decode(state, SECRET, algorithms=["HS256"])


@pytest.mark.asyncio
async def test_connect_flow_requires_user_id():
    store = _store()
    with pytest.raises(ValueError):
        await store.issue(None, "instagram", "connect")


@pytest.mark.asyncio
async def test_expired_state_is_rejected():
    clock = FakeClock()
    store = _store(clock=clock, ttl_seconds=600)
    state = await store.issue("user-1", "photos", "connect")

    clock.now += 601
    with pytest.raises(StateValidationError):
        await store.validate(state, "photos", "connect")


@pytest.mark.asyncio
async def test_state_within_ttl_is_accepted():
    clock = FakeClock()
    store = _store(clock=clock, ttl_seconds=600)
    state = await store.issue("user-1", "photos", "connect")

    clock.now += 599
    record = await store.validate(state, "photos", "connect")
    assert record.provider == "photos"


@pytest.mark.asyncio
async def test_wrong_provider_is_rejected_without_burning_the_state():
    store = _store()
    state = await store.issue("user-1", "instagram", "connect")

    with pytest.raises(StateValidationError):
        await store.validate(state, "facebook", "connect")

    record = await store.validate(state, "instagram", "connect")
    assert record.user_id == "user-1"


@pytest.mark.asyncio
async def test_connect_state_cannot_complete_a_login():
    store = _store()
    state = await store.issue("user-1", "facebook", "connect")

    with pytest.raises(StateValidationError):
        await store.validate(state, "facebook", "login")


@pytest.mark.asyncio
async def test_tampered_and_foreign_states_are_rejected():
    store = _store()
    state = await store.issue("user-1", "instagram", "connect")
    header, _, signature = state.split(".")
    claims = jwt.get_unverified_claims(state)
    claims["sub"] = "user-2"
    swapped_payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    tampered = ".".join([header, swapped_payload, signature])

    forged = jwt.encode(
        {
            "typ": STATE_TOKEN_TYPE,
            "nonce": "0" * 32,
            "provider": "instagram",
            "flow": "connect",
            "issued_at": FakeClock().now,
            "sub": "user-1",
        },
        SECRET,
        algorithm="HS256",
    )
    foreign = jwt.encode({"typ": STATE_TOKEN_TYPE}, "some-other-secret-entirely-000000", algorithm="HS256")

    for bad_state in (tampered, forged, foreign, "", None, "not-a-jwt"):
        with pytest.raises(StateValidationError) as exc_info:
            await store.validate(bad_state, "instagram", "connect")
        assert exc_info.value.message == "Invalid or expired authorization state. Please try again."

    # The genuine state is still pending after all the rejects.
    assert (await store.validate(state, "instagram", "connect")).user_id == "user-1"


@pytest.mark.asyncio
async def test_concurrent_validation_succeeds_exactly_once():
    store = _store()
    state = await store.issue("user-1", "instagram", "connect")

    results = await asyncio.gather(
        *(store.validate(state, "instagram", "connect") for _ in range(8)),
        return_exceptions=True,
    )

    accepted = [result for result in results if isinstance(result, StateRecord)]
    rejected = [result for result in results if isinstance(result, StateValidationError)]
    assert len(accepted) == 1
    assert len(rejected) == 7


@pytest.mark.asyncio
async def test_expired_pending_records_are_swept_on_issue():
    clock = FakeClock()
    store = _store(clock=clock, ttl_seconds=600)
    await store.issue("user-1", "instagram", "connect")
    await store.issue("user-2", "instagram", "connect")
    assert len(store) == 2

    clock.now += 700
    await store.issue("user-3", "instagram", "connect")
    assert len(store) == 1


@pytest.mark.asyncio
async def test_redis_store_sets_ttl_and_consumes_once():
    client = FakeRedis()
    store = RedisStateTokenStore(client, secret=SECRET, ttl_seconds=300, clock=FakeClock())
    state = await store.issue("user-1", "tiktok", "connect")

    (key,) = client.values
    assert key.startswith("eternalme:oauth_state:")
    assert client.expirations[key] == 300
    assert json.loads(client.values[key])["provider"] == "tiktok"

    record = await store.validate(state, "tiktok", "connect")
    assert record.user_id == "user-1"
    assert client.values == {}

    with pytest.raises(StateValidationError):
        await store.validate(state, "tiktok", "connect")

    await store.aclose()
    assert client.closed
