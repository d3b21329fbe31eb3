"""Import one page of provider media as local memories."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from services.connectors.connection_store import ConnectionStore
from services.connectors.registry import ProviderRegistry
from services.connectors.types import ImportResult, MemoryDraft, NotConnectedError

logger = logging.getLogger(__name__)


class MemoryWriterProtocol(Protocol):
    async def create(self, user_id: str, draft: MemoryDraft) -> Dict[str, Any]:
        ...


class MediaImporter:
    """Fetch remote media for a connected provider and create memories.

    The listing call is all-or-nothing: if it fails, nothing is written.
    Once it succeeds, each mapped item is written independently, so a
    result can hold fewer memories than the provider returned. Earlier
    imports are not deduplicated.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        connections: ConnectionStore,
        http_client: httpx.AsyncClient,
        memory_writer: MemoryWriterProtocol,
    ) -> None:
        self.registry = registry
        self.connections = connections
        self.http_client = http_client
        self.memory_writer = memory_writer

    async def import_media(self, user_id: str, provider: str, limit: int) -> ImportResult:
        adapter = self.registry.adapter(provider)

        connection = await self.connections.get(user_id, provider)
        if connection is None or not connection.connected or not connection.access_token:
            raise NotConnectedError(f"You need to connect your {provider} account first", provider=provider)

        items = await adapter.list_media(self.http_client, connection.access_token, limit)

        drafts: List[MemoryDraft] = []
        for item in items:
            draft = adapter.map_media_item(item)
            if draft is None:
                logger.info("Skipping %s item without usable media: %s", provider, _item_id(item))
                continue
            drafts.append(draft)

        memories: List[Dict[str, Any]] = []
        for draft in drafts:
            try:
                memories.append(await self.memory_writer.create(user_id, draft))
            except SQLAlchemyError:
                logger.exception("Could not store imported %s memory for user %s", provider, user_id)

        skipped = len(items) - len(drafts)
        logger.info(
            "media_import user=%s provider=%s fetched=%s imported=%s skipped=%s failed=%s",
            user_id,
            provider,
            len(items),
            len(memories),
            skipped,
            len(drafts) - len(memories),
        )
        return ImportResult(
            provider=provider,
            imported=len(memories),
            memories=memories,
            skipped=skipped,
        )


def _item_id(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("id") or "?")
    return "?"
