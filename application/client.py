from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from application.client_state import ClientState
from application.coordinator import MutationCoordinator
from application.session_guardian import (
    DEFAULT_LOOKAHEAD,
    DEFAULT_QUIET_PERIOD,
    DEFAULT_REFRESH_INTERVAL,
    SessionGuardian,
    utcnow,
)
from domain.models import Session
from domain.repositories import Backend


@dataclass(frozen=True)
class SessionTimings:
    lookahead: timedelta = DEFAULT_LOOKAHEAD
    refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL
    quiet_period: timedelta = DEFAULT_QUIET_PERIOD


class AttarClient:
    """
    One end-user client: its state, its guardian and its coordinator,
    all talking to a single backend capability set.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        timings: SessionTimings = SessionTimings(),
        clock: Callable[[], datetime] = utcnow,
        on_session_change: Optional[Callable[[Optional[Session]], None]] = None,
    ) -> None:
        self.backend = backend
        self.clock = clock
        self.state = ClientState()
        self.guardian = SessionGuardian(
            self.state,
            backend.auth,
            backend.profiles,
            lookahead=timings.lookahead,
            refresh_interval=timings.refresh_interval,
            quiet_period=timings.quiet_period,
            clock=clock,
            on_session_change=on_session_change,
        )
        self.coordinator = MutationCoordinator(
            self.state,
            self.guardian,
            backend.ledger,
            backend.records,
        )

    async def close(self) -> None:
        await self.guardian.stop()
