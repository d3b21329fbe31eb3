"""
Authentication router for social login and current-user retrieval.
"""

import json
import logging
from typing import Dict, Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context
from routers.connector_deps import (
    get_callback_handler,
    get_connection_store,
    get_oauth_initiator,
    get_provider_registry,
)
from routers.rate_limit import rate_limit
from services.accounts import resolve_login_user
from services.connectors.connection_store import ConnectionStore
from services.connectors.oauth import OAuthCallbackHandler, OAuthInitiator
from services.connectors.registry import ProviderRegistry
from services.connectors.types import ConnectorError
from services.session_token import issue_session

logger = logging.getLogger(__name__)

router = APIRouter()


class CurrentUserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    handle: Optional[str] = None
    avatar: Optional[str] = None
    connections: Dict[str, bool] = {}


def _user_payload(user: User) -> Dict[str, Optional[str]]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "handle": user.handle,
        "avatar": user.avatar,
    }


def _frontend_error_redirect(message: str) -> RedirectResponse:
    query = urlencode({"oauth_error": message})
    return RedirectResponse(f"{settings.FRONTEND_URL}?{query}", status_code=307)


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    store: ConnectionStore = Depends(get_connection_store),
):
    """Get the signed-in user and their provider connection flags."""
    result = await db.execute(select(User).where(User.id == auth.user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    records = await store.list(user.id)
    return CurrentUserResponse(
        **_user_payload(user),
        connections={record.provider: record.connected for record in records},
    )


@router.get("/oauth/config")
async def oauth_config(registry: ProviderRegistry = Depends(get_provider_registry)):
    """Which providers can be used for social login right now."""
    return {"configStatus": registry.login_config_status()}


@router.post("/oauth/{provider}/init")
async def init_login(
    provider: str,
    initiator: OAuthInitiator = Depends(get_oauth_initiator),
    _rate_limit: None = Depends(rate_limit("login_init", limit=20, window_seconds=600)),
):
    url = await initiator.begin(None, provider, "login")
    return {"success": True, "oauthUrl": url}


@router.get("/oauth/{provider}/callback")
async def login_callback(
    provider: str,
    request: Request,
    handler: OAuthCallbackHandler = Depends(get_callback_handler),
    db: AsyncSession = Depends(get_db),
):
    """
    Provider redirect target for social login.

    Always lands the browser back on the frontend: failures carry
    ``oauth_error`` in the query string, success carries the session token
    in the fragment so it never reaches server logs.
    """
    try:
        outcome = await handler.handle_callback(provider, dict(request.query_params), "login")
    except ConnectorError as exc:
        logger.warning("login_callback_failed provider=%s error=%s", provider, exc.error_code)
        return _frontend_error_redirect(exc.message)

    user = await resolve_login_user(db, outcome.profile)
    session = issue_session(user.id, email=user.email)
    logger.info("oauth_login_complete provider=%s user=%s", provider, user.id)

    fragment = urlencode(
        {
            "session_token": session.token,
            "expires_at": session.expires_at,
            "user": json.dumps(_user_payload(user)),
        },
        quote_via=quote,
    )
    return RedirectResponse(f"{settings.FRONTEND_URL}?oauth_success=true#{fragment}", status_code=307)


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"message": "Logged out successfully"}
