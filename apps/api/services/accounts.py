"""Local user resolution for social login."""

from __future__ import annotations

import re
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.connectors.types import ProviderProfile

OAUTH_EMAIL_DOMAIN = "oauth.eternalme.app"
MAX_HANDLE_BASE_LENGTH = 20


def login_email(profile: ProviderProfile) -> str:
    """Providers without an email get a stable synthetic address."""
    if profile.email:
        return profile.email.strip().lower()
    return f"{profile.provider}_{profile.external_id}@{OAUTH_EMAIL_DOMAIN}"


def handle_base(name: str) -> str:
    base = re.sub(r"[^a-z0-9]", "_", (name or "").lower())[:MAX_HANDLE_BASE_LENGTH]
    return base or "user"


async def generate_unique_handle(db: AsyncSession, name: str) -> str:
    base = handle_base(name)
    handle = base
    suffix = 1
    while True:
        result = await db.execute(select(User.id).where(User.handle == handle))
        if result.scalar_one_or_none() is None:
            return handle
        handle = f"{base}_{suffix}"
        suffix += 1


async def resolve_login_user(db: AsyncSession, profile: ProviderProfile) -> User:
    """Find the user behind a provider identity, creating one on first sign-in."""
    email = login_email(profile)
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    display_name = profile.name or f"{profile.provider} User"
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        name=display_name,
        handle=await generate_unique_handle(db, profile.name or profile.provider),
        avatar=profile.avatar,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user
