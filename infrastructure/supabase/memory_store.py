from __future__ import annotations

import logging
from typing import Dict, List

from supabase import AsyncClient

from domain.errors import RemoteOperationError
from domain.models import MemoryEntry
from domain.repositories import MemoryStore

from .backstory_store import SupabaseBackstoryStore
from .env_store import ENV_TABLE
from .errors import translated
from .mappers import memory_entry, memory_from_env


logger = logging.getLogger(__name__)

MEMORY_TABLE = "attar_memory"
MEMORY_COLUMNS = "*, attar_env(id, world_image_url, world_video_url, metadata)"


class SupabaseMemoryStore(MemoryStore):
    """
    `attar_memory` rows joined with their env.

    Until the first memory is written, every env stands in for one, so
    that the history is never empty once a day has passed.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client
        self._backstory = SupabaseBackstoryStore(client)

    @translated
    async def memories(self) -> List[MemoryEntry]:
        response = await (
            self._client.table(MEMORY_TABLE)
            .select(MEMORY_COLUMNS)
            .order("created_at", desc=True)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return await self._memories_from_envs()
        return [memory_entry(row, default_day=len(rows) - index) for index, row in enumerate(rows)]

    async def _memories_from_envs(self) -> List[MemoryEntry]:
        response = await (
            self._client.table(ENV_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return []

        identities: Dict[int, str] = {}
        try:
            identities = {entry.day: entry.text for entry in await self._backstory.backstory()}
        except RemoteOperationError as exc:
            logger.warning("Backstory unavailable for memory fallback: %s", exc.message)

        return [
            memory_from_env(row, default_day=len(rows) - index, identities=identities)
            for index, row in enumerate(rows)
        ]

    async def memory_count(self) -> int:
        try:
            count = await self._count(MEMORY_TABLE)
        except RemoteOperationError as exc:
            logger.warning("Memory count failed, counting envs instead: %s", exc.message)
            count = 0
        if count:
            return count
        return await self._count(ENV_TABLE)

    @translated
    async def _count(self, table: str) -> int:
        response = await self._client.table(table).select("*", count="exact", head=True).execute()
        return response.count or 0
