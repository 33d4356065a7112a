from __future__ import annotations

from supabase import AsyncClient

from domain.models import LetterVoteResult
from domain.repositories import LedgerRpc

from .errors import translated
from .mappers import letter_vote_result


class SupabaseLedger(LedgerRpc):
    """
    Ledger operations implemented as Postgres stored procedures, called
    through the PostgREST RPC endpoint.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def spend(self, principal_id: str, amount: int) -> bool:
        response = await self._client.rpc(
            "spend_moons",
            {"p_user_id": principal_id, "p_amount": amount},
        ).execute()
        return bool(response.data)

    @translated
    async def vote_tally(self, target_id: str, choice_index: int, amount: int) -> None:
        await self._client.rpc(
            "add_vote_to_env",
            {"p_env_id": target_id, "p_choice_index": choice_index, "p_amount": amount},
        ).execute()

    @translated
    async def vote_on_letter(
        self,
        principal_id: str,
        letter_id: str,
        amount: int,
    ) -> LetterVoteResult:
        response = await self._client.rpc(
            "vote_on_letter",
            {"p_user_id": principal_id, "p_letter_id": letter_id, "p_moon_amount": amount},
        ).execute()
        return letter_vote_result(response.data)
