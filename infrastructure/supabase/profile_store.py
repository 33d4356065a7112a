from __future__ import annotations

from typing import Any, Dict, Optional

from supabase import AsyncClient

from domain.errors import RemoteOperationError
from domain.models import Profile, ProfileDefaults
from domain.repositories import NEW_PROFILE_DEFAULTS, ProfileStore

from .errors import translated
from .mappers import profile_to_domain


PROFILE_TABLE = "attar_profile"


class SupabaseProfileStore(ProfileStore):
    """
    `ProfileStore` over the `attar_profile` table.

    Rows are looked up by `user_id` (the auth user), not by the profile's
    own primary key.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def fetch(self, principal_id: str) -> Optional[Profile]:
        response = await (
            self._client.table(PROFILE_TABLE)
            .select("*")
            .eq("user_id", principal_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return profile_to_domain(rows[0])

    @translated
    async def create_if_missing(
        self,
        principal_id: str,
        defaults: ProfileDefaults = NEW_PROFILE_DEFAULTS,
    ) -> Profile:
        # Another device may have created the row first; keep whichever exists.
        response = await (
            self._client.table(PROFILE_TABLE)
            .upsert(
                {
                    "user_id": principal_id,
                    "pseudoname": defaults.pseudoname,
                    "available_moons": defaults.available_moons,
                    "receive_letters": defaults.receive_letters,
                },
                on_conflict="user_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        rows = response.data or []
        if rows:
            return profile_to_domain(rows[0])

        existing = await self.fetch(principal_id)
        if existing is None:
            raise RemoteOperationError(f"Profile for {principal_id} could not be created.")
        return existing

    @translated
    async def update(self, principal_id: str, changes: Dict[str, Any]) -> Profile:
        response = await (
            self._client.table(PROFILE_TABLE)
            .update(changes)
            .eq("user_id", principal_id)
            .execute()
        )
        rows = response.data or []
        if not rows:
            raise RemoteOperationError(f"No profile found for {principal_id}.")
        return profile_to_domain(rows[0])
