from __future__ import annotations

from typing import List, Optional

from supabase import AsyncClient

from domain.models import CurrentEnv, TimelineEntry
from domain.repositories import EnvStore

from .errors import translated
from .mappers import env_to_domain, timeline_entry


ENV_TABLE = "attar_env"


class SupabaseEnvStore(EnvStore):
    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def latest_env(self) -> Optional[CurrentEnv]:
        response = await (
            self._client.table(ENV_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return env_to_domain(rows[0])

    @translated
    async def env_by_day(self, day: int) -> Optional[CurrentEnv]:
        response = await (
            self._client.table(ENV_TABLE)
            .select("*")
            .eq("metadata->>day", str(day))
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return env_to_domain(rows[0], default_day=day)

    @translated
    async def timeline(self) -> List[TimelineEntry]:
        """All envs, newest first. Rows without a day count down from the total."""

        response = await (
            self._client.table(ENV_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .execute()
        )
        rows = response.data or []
        return [timeline_entry(row, default_day=len(rows) - index) for index, row in enumerate(rows)]
