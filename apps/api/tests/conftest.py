from typing import Callable, List

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import Settings, settings
from database import Base, get_db
from main import app
from models.user import User
from routers import rate_limit
from routers.connector_deps import get_provider_http_client
from services.connectors.registry import ProviderRegistry
from services.connectors.state_store import InMemoryStateTokenStore


TEST_USER_ID = "memory-keeper"
TEST_USER_EMAIL = "keeper@example.com"

# Google Photos stays unconfigured so demo toggles have a provider to act on.
PROVIDER_SETTINGS = Settings(
    OAUTH_FACEBOOK_CLIENT_ID="fb-client",
    OAUTH_FACEBOOK_CLIENT_SECRET="fb-secret",
    OAUTH_INSTAGRAM_CLIENT_ID="ig-client",
    OAUTH_INSTAGRAM_CLIENT_SECRET="ig-secret",
    OAUTH_TIKTOK_CLIENT_ID="tt-client-key",
    OAUTH_TIKTOK_CLIENT_SECRET="tt-secret",
)


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def isolated_oauth_components():
    """Fresh pending-state store and a credentialed registry per test."""
    previous_store = app.state.oauth_state_store
    previous_registry = app.state.provider_registry
    store = InMemoryStateTokenStore(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS,
    )
    app.state.oauth_state_store = store
    app.state.provider_registry = ProviderRegistry.from_settings(PROVIDER_SETTINGS)
    yield store
    app.state.oauth_state_store = previous_store
    app.state.provider_registry = previous_registry


@pytest.fixture
def provider_http():
    """Route provider HTTP calls made by the API through a mock handler.

    Returns an installer; the list it returns records every outbound request.
    """

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> List[httpx.Request]:
        sent: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return handler(request)

        async def override_http_client():
            async with httpx.AsyncClient(transport=httpx.MockTransport(recording_handler)) as client:
                yield client

        app.dependency_overrides[get_provider_http_client] = override_http_client
        return sent

    yield install
    app.dependency_overrides.pop(get_provider_http_client, None)


@pytest_asyncio.fixture
async def api_client(tmp_path):
    db_path = tmp_path / "eternalme.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        session.add(User(id=TEST_USER_ID, email=TEST_USER_EMAIL, name="Memory Keeper", handle="memory_keeper"))
        await session.commit()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()
