from __future__ import annotations

from datetime import datetime
from typing import List

from supabase import AsyncClient

from domain.models import Letter, SendLetterResult, VoteRecord
from domain.repositories import RecordStore

from .errors import translated
from .mappers import letter_to_domain, send_letter_result


VOTES_TABLE = "attar_votes"
MAILBOX_TABLE = "attar_mailbox"


class SupabaseRecordStore(RecordStore):
    """
    Append-only vote and letter records in `attar_votes` / `attar_mailbox`.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def insert_vote(self, record: VoteRecord) -> None:
        await self._client.table(VOTES_TABLE).insert(
            {
                "user_id": record.user_id,
                "votable_type": record.votable_type.value,
                "votable_id": record.votable_id,
                "choice_index": record.choice_index,
                "moon_amount": record.moon_amount,
            }
        ).execute()

    @translated
    async def send_letter(self, principal_id: str, subject: str, content: str) -> SendLetterResult:
        # The procedure enforces the per-day letter limit server-side.
        response = await self._client.rpc(
            "send_letter",
            {"p_user_id": principal_id, "p_subject": subject, "p_content": content},
        ).execute()
        return send_letter_result(response.data)

    @translated
    async def published_letters(self, limit: int = 50) -> List[Letter]:
        response = await (
            self._client.table(MAILBOX_TABLE)
            .select("*")
            .eq("published", True)
            .order("received_moons", desc=True)
            .limit(limit)
            .execute()
        )
        return [letter_to_domain(row) for row in response.data or []]

    @translated
    async def letters_for(self, principal_id: str) -> List[Letter]:
        response = await (
            self._client.table(MAILBOX_TABLE)
            .select("*")
            .eq("user_id", principal_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [letter_to_domain(row) for row in response.data or []]

    @translated
    async def letter_count_since(self, principal_id: str, since: datetime) -> int:
        response = await (
            self._client.table(MAILBOX_TABLE)
            .select("*", count="exact", head=True)
            .eq("user_id", principal_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return response.count or 0
