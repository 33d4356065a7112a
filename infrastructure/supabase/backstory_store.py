from __future__ import annotations

from typing import List, Optional

from supabase import AsyncClient

from domain.models import BackstoryEntry
from domain.repositories import BackstoryStore

from .errors import translated
from .mappers import backstory_entry


BACKSTORY_TABLE = "attar_backstory"


class SupabaseBackstoryStore(BackstoryStore):
    """
    Lines of `attar_backstory`. Rows carry no day; it is their position
    in creation order, starting at 1.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def backstory(self) -> List[BackstoryEntry]:
        response = await (
            self._client.table(BACKSTORY_TABLE)
            .select("*")
            .order("created_at")
            .execute()
        )
        rows = response.data or []
        return [backstory_entry(row, day=index + 1) for index, row in enumerate(rows)]

    @translated
    async def latest_backstory(self) -> Optional[BackstoryEntry]:
        response = await (
            self._client.table(BACKSTORY_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        count = await self.backstory_count()
        return backstory_entry(rows[0], day=count or 1)

    @translated
    async def backstory_count(self) -> int:
        response = await (
            self._client.table(BACKSTORY_TABLE)
            .select("*", count="exact", head=True)
            .execute()
        )
        return response.count or 0
