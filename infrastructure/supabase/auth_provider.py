from __future__ import annotations

from typing import Optional, Tuple

from supabase import AsyncClient

from domain.models import Session
from domain.repositories import AuthProvider

from .errors import translated
from .mappers import session_to_domain


class SupabaseAuthProvider(AuthProvider):
    """
    `AuthProvider` backed by the supabase-py async auth client.

    The auth client keeps the current session in memory, so one instance
    of this class corresponds to exactly one signed-in user.
    """

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @translated
    async def get_session(self) -> Optional[Session]:
        session = await self._client.auth.get_session()
        return session_to_domain(session)

    @translated
    async def refresh_session(self) -> Optional[Session]:
        response = await self._client.auth.refresh_session()
        return session_to_domain(response.session)

    @translated
    async def restore_session(self, refresh_token: str) -> Optional[Session]:
        response = await self._client.auth.refresh_session(refresh_token)
        return session_to_domain(response.session)

    @translated
    async def sign_in_with_password(self, email: str, password: str) -> Optional[Session]:
        response = await self._client.auth.sign_in_with_password(
            {"email": email, "password": password}
        )
        return session_to_domain(response.session)

    @translated
    async def sign_up(
        self,
        email: str,
        password: str,
        pseudoname: str,
    ) -> Tuple[Optional[str], Optional[Session]]:
        response = await self._client.auth.sign_up(
            {
                "email": email,
                "password": password,
                "options": {"data": {"pseudoname": pseudoname}},
            }
        )
        user_id = str(response.user.id) if response.user is not None else None
        return user_id, session_to_domain(response.session)

    @translated
    async def sign_out(self) -> None:
        await self._client.auth.sign_out()
