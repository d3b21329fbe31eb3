"""Memory creation used by provider imports."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.memory import Memory
from services.connectors.types import MemoryDraft


class MemoryWriter:
    """Creates one committed memory per call; never touches existing rows.

    Returns the serialized memory rather than the ORM instance: a rollback
    after a later failed write expires every instance in the session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, user_id: str, draft: MemoryDraft) -> Dict[str, Any]:
        memory = Memory(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=draft.type,
            media_url=draft.media_url,
            caption=draft.caption,
            date_text=draft.date_text,
            location=draft.location,
        )
        self.db.add(memory)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(memory)
        return serialize_memory(memory)


def serialize_memory(memory: Memory) -> Dict[str, Any]:
    return {
        "id": memory.id,
        "userId": memory.user_id,
        "type": memory.type,
        "mediaUrl": memory.media_url,
        "caption": memory.caption,
        "dateText": memory.date_text,
        "location": memory.location,
        "duration": memory.duration,
        "likesCount": int(memory.likes_count or 0),
        "commentsCount": int(memory.comments_count or 0),
        "createdAt": memory.created_at.isoformat() if memory.created_at else None,
    }
