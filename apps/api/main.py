"""
EternalMe - FastAPI Backend
Main application entry point for provider connections, social login and health.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, auth, connections
from services.connectors.registry import ProviderRegistry
from services.connectors.state_store import create_state_store
from services.connectors.types import ConnectorError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting EternalMe API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except SQLAlchemyError as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    status = app.state.provider_registry.config_status()
    configured = [provider for provider, ready in status.items() if ready]
    demo = [provider for provider, ready in status.items() if not ready]
    if configured:
        print(f"🔐 OAuth configured for: {', '.join(configured)}")
    if demo:
        print(f"🧪 Demo-mode toggles for: {', '.join(demo)}")
    print(f"🎟️ OAuth state backend: {settings.OAUTH_STATE_BACKEND}")
    yield
    # Shutdown
    await app.state.oauth_state_store.aclose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="EternalMe API",
    description="Connect social accounts and import their media as memories",
    version="0.1.0",
    lifespan=lifespan,
)

# Process-wide OAuth components; one pending-state store per app instance.
app.state.provider_registry = ProviderRegistry.from_settings(settings)
app.state.oauth_state_store = create_state_store(settings)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConnectorError)
async def connector_error_handler(request: Request, exc: ConnectorError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(connections.router, tags=["Connections"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "EternalMe API",
        "version": "0.1.0",
        "status": "running"
    }
