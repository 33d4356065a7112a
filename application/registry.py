from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple

from application.client import AttarClient, SessionTimings
from application.session_guardian import utcnow
from domain.models import Session
from domain.repositories import Backend, LinkedSession, LinkedSessionRepository


logger = logging.getLogger(__name__)

BackendFactory = Callable[[], Awaitable[Backend]]


class ClientRegistry:
    """
    Keeps one `AttarClient` per external chat identity.

    Each client gets its own backend (and therefore its own auth state).
    Refresh tokens are persisted through the `LinkedSessionRepository`
    whenever the guardian adopts or drops a session, so that users stay
    signed in across restarts.
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        linked_sessions: LinkedSessionRepository,
        *,
        timings: SessionTimings = SessionTimings(),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend_factory = backend_factory
        self._linked_sessions = linked_sessions
        self._timings = timings
        self._clock = clock
        self._clients: Dict[Tuple[str, str], AttarClient] = {}
        self._opening: Dict[Tuple[str, str], asyncio.Future[AttarClient]] = {}

    async def client_for(self, provider: str, provider_user_id: str) -> AttarClient:
        """
        Return the client for a chat identity, opening it on first use.

        A new client is only handed out once its linked session has been
        restored; concurrent callers for the same identity wait on the
        same opening task.
        """

        key = (provider, provider_user_id)
        client = self._clients.get(key)
        if client is not None:
            return client

        opening = self._opening.get(key)
        if opening is None:
            opening = asyncio.ensure_future(self._open(key))
            self._opening[key] = opening
            opening.add_done_callback(lambda done: self._finish_opening(key, done))
        return await asyncio.shield(opening)

    async def _open(self, key: Tuple[str, str]) -> AttarClient:
        provider, provider_user_id = key
        backend = await self._backend_factory()
        client = AttarClient(
            backend,
            timings=self._timings,
            clock=self._clock,
            on_session_change=self._persist_for(provider, provider_user_id),
        )

        linked = self._linked_sessions.find(provider, provider_user_id)
        if linked is not None:
            if not await client.guardian.restore(linked.refresh_token):
                logger.info("Linked session for %s:%s is no longer valid", provider, provider_user_id)
                self._linked_sessions.clear(provider, provider_user_id)

        client.guardian.start()
        self._clients[key] = client
        return client

    def _finish_opening(self, key: Tuple[str, str], done: asyncio.Future[AttarClient]) -> None:
        if self._opening.get(key) is done:
            del self._opening[key]

    def get(self, provider: str, provider_user_id: str) -> Optional[AttarClient]:
        return self._clients.get((provider, provider_user_id))

    async def forget(self, provider: str, provider_user_id: str) -> None:
        client = self._clients.pop((provider, provider_user_id), None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        for opening in list(self._opening.values()):
            opening.cancel()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()

    def _persist_for(self, provider: str, provider_user_id: str) -> Callable[[Optional[Session]], None]:
        def persist(session: Optional[Session]) -> None:
            if session is None:
                self._linked_sessions.clear(provider, provider_user_id)
                return
            self._linked_sessions.save(
                LinkedSession(
                    provider=provider,
                    provider_user_id=provider_user_id,
                    principal_id=session.user_id,
                    refresh_token=session.refresh_token,
                )
            )

        return persist
