"""Per-user, per-provider connection persistence."""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.connection import Connection
from services.connectors.types import ConnectionNotFoundError, ConnectionRecord
from services.crypto import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)


class ConnectionStore:
    """Connection rows keyed by ``(user_id, provider)``.

    A token is only ever stored alongside ``connected=True``; every write that
    leaves a row disconnected clears it. Tokens are encrypted at rest and
    decrypt to the provider's original string.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, user_id: str, provider: str) -> Optional[Connection]:
        result = await self.db.execute(
            select(Connection).where(
                Connection.user_id == user_id,
                Connection.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_record(row: Connection) -> ConnectionRecord:
        token = None
        if row.connected and row.access_token_encrypted:
            token = decrypt_token(row.access_token_encrypted)
        return ConnectionRecord(
            user_id=row.user_id,
            provider=row.provider,
            connected=bool(row.connected),
            access_token=token,
        )

    async def get(self, user_id: str, provider: str) -> Optional[ConnectionRecord]:
        row = await self._get_row(user_id, provider)
        return self._to_record(row) if row else None

    async def list(self, user_id: str) -> List[ConnectionRecord]:
        result = await self.db.execute(
            select(Connection).where(Connection.user_id == user_id).order_by(Connection.provider)
        )
        return [self._to_record(row) for row in result.scalars().all()]

    async def _write(
        self,
        user_id: str,
        provider: str,
        *,
        connected: bool,
        encrypted_token: Optional[str],
    ) -> Connection:
        row = await self._get_row(user_id, provider)
        if row is None:
            row = Connection(
                id=str(uuid.uuid4()),
                user_id=user_id,
                provider=provider,
                connected=connected,
                access_token_encrypted=encrypted_token,
            )
            self.db.add(row)
            try:
                await self.db.commit()
                return row
            except IntegrityError:
                # A concurrent request created the row first; update theirs.
                await self.db.rollback()
                row = await self._get_row(user_id, provider)
                if row is None:
                    raise
        row.connected = connected
        row.access_token_encrypted = encrypted_token
        await self.db.commit()
        return row

    async def upsert(
        self,
        user_id: str,
        provider: str,
        *,
        connected: bool,
        access_token: Optional[str] = None,
    ) -> ConnectionRecord:
        """Create or overwrite the connection in a single row write."""
        if access_token and not connected:
            raise ValueError("A disconnected connection cannot hold an access token.")
        encrypted = encrypt_token(access_token) if access_token else None
        row = await self._write(user_id, provider, connected=connected, encrypted_token=encrypted)
        logger.info("connection_upsert user=%s provider=%s connected=%s", user_id, provider, connected)
        return self._to_record(row)

    async def set_connected(
        self,
        user_id: str,
        provider: str,
        *,
        connected: bool,
        clear_token: bool = True,
    ) -> ConnectionRecord:
        row = await self._get_row(user_id, provider)
        if row is None:
            raise ConnectionNotFoundError(f"No {provider} connection found.", provider=provider)
        row.connected = connected
        if clear_token or not connected:
            row.access_token_encrypted = None
        await self.db.commit()
        logger.info("connection_set user=%s provider=%s connected=%s", user_id, provider, connected)
        return self._to_record(row)

    async def toggle(self, user_id: str, provider: str) -> ConnectionRecord:
        """Demo-mode switch: first call connects, later calls flip. Never stores a token."""
        row = await self._get_row(user_id, provider)
        connected = True if row is None else not row.connected
        row = await self._write(user_id, provider, connected=connected, encrypted_token=None)
        return self._to_record(row)
