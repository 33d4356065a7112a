from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Set

from application.client_state import ClientState
from domain.errors import AttarError
from domain.models import Profile, Session
from domain.repositories import NEW_PROFILE_DEFAULTS, AuthProvider, ProfileStore


logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = timedelta(minutes=5)
DEFAULT_REFRESH_INTERVAL = timedelta(minutes=30)
DEFAULT_QUIET_PERIOD = timedelta(minutes=5)

PROFILE_FIELDS = ("pseudoname", "avatar_url", "receive_letters")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthOutcome:
    """Result of an interactive auth operation (sign in / up / out)."""

    success: bool
    error_message: Optional[str] = None
    confirm_email: bool = False


class SessionGuardian:
    """
    Owns the session lifecycle of one client.

    Any operation that needs authentication asks `ensure_valid()` first.
    Sessions are refreshed proactively (periodic timer, foreground
    transitions, expiry lookahead) and reactively (`refresh()` after an
    auth failure). Remote failures never escape: they are logged and turned
    into a False result, and a failed refresh downgrades the client to
    signed-out.
    """

    def __init__(
        self,
        state: ClientState,
        auth: AuthProvider,
        profiles: ProfileStore,
        *,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        quiet_period: timedelta = DEFAULT_QUIET_PERIOD,
        clock: Callable[[], datetime] = utcnow,
        on_session_change: Optional[Callable[[Optional[Session]], None]] = None,
    ) -> None:
        self.state = state
        self._auth = auth
        self._profiles = profiles
        self._lookahead = lookahead
        self._refresh_interval = refresh_interval
        self._quiet_period = quiet_period
        self._clock = clock
        self._on_session_change = on_session_change
        self._inflight: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def needs_refresh(self) -> bool:
        session = self.state.session
        return session is None or session.expires_within(self._lookahead, self._clock())

    async def ensure_valid(self) -> bool:
        session = self.state.session
        if session is None:
            return False
        if session.expires_within(self._lookahead, self._clock()):
            return await self.refresh()
        return True

    async def refresh(self) -> bool:
        """
        Obtain a new session from the backend.

        Concurrent callers share a single in-flight refresh.
        """

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh_once())
        inflight = self._inflight
        try:
            return await inflight
        finally:
            if self._inflight is inflight and inflight.done():
                self._inflight = None

    async def _refresh_once(self) -> bool:
        session: Optional[Session] = None
        try:
            session = await self._auth.refresh_session()
        except AttarError as exc:
            logger.warning("Session refresh failed: %s", exc.message)

        now = self._clock()
        if session is None or session.is_expired(now):
            session = await self._read_current_session(now)
            if session is None:
                logger.info("No usable session after refresh; signing out locally")
                self._downgrade()
                return False

        self._adopt(session)
        self._spawn(self.reload_profile())
        return True

    async def _read_current_session(self, now: datetime) -> Optional[Session]:
        try:
            session = await self._auth.get_session()
        except AttarError as exc:
            logger.warning("Reading current session failed: %s", exc.message)
            return None
        if session is None or session.is_expired(now):
            return None
        return session

    # ------------------------------------------------------------------
    # Passive triggers
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """Body of the periodic timer."""

        if self.state.principal is None or not self.state.visible:
            return False
        return await self.refresh()

    async def on_visibility_change(self, visible: bool) -> bool:
        """
        Record a foreground/background transition.

        Becoming visible refreshes the session unless the last successful
        refresh is younger than the quiet period.
        """

        self.state.visible = visible
        if not visible or self.state.principal is None:
            return False

        last = self.state.last_refresh_at
        if last is not None and self._clock() - last < self._quiet_period:
            return False

        return await self.refresh()

    def start(self) -> None:
        if self._timer is None or self._timer.done():
            self._timer = asyncio.ensure_future(self._run_timer())

    async def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        await self.drain()

    async def _run_timer(self) -> None:
        interval = self._refresh_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            await self.tick()

    # ------------------------------------------------------------------
    # Interactive auth
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthOutcome:
        try:
            session = await self._auth.sign_in_with_password(email, password)
        except AttarError as exc:
            logger.info("Sign in failed for %s: %s", email, exc.message)
            self.state.error = exc.message
            return AuthOutcome(success=False, error_message=exc.message)

        if session is None:
            return AuthOutcome(success=False, error_message="Sign in did not return a session.")

        self._adopt(session)
        await self.reload_profile()
        return AuthOutcome(success=True)

    async def sign_up(self, email: str, password: str, pseudoname: Optional[str] = None) -> AuthOutcome:
        name = pseudoname or NEW_PROFILE_DEFAULTS.pseudoname
        try:
            user_id, session = await self._auth.sign_up(email, password, name)
        except AttarError as exc:
            logger.info("Sign up failed for %s: %s", email, exc.message)
            self.state.error = exc.message
            return AuthOutcome(success=False, error_message=exc.message)

        if session is None:
            # The backend wants the address confirmed before issuing a session.
            return AuthOutcome(success=user_id is not None, confirm_email=True)

        self._adopt(session)
        await self.reload_profile()
        return AuthOutcome(success=True)

    async def restore(self, refresh_token: str) -> bool:
        """Resume a persisted session; used when a host restarts."""

        try:
            session = await self._auth.restore_session(refresh_token)
        except AttarError as exc:
            logger.info("Could not restore session: %s", exc.message)
            session = None

        if session is None or session.is_expired(self._clock()):
            self._downgrade()
            return False

        self._adopt(session)
        await self.reload_profile()
        return True

    async def sign_out(self) -> AuthOutcome:
        error_message = None
        try:
            await self._auth.sign_out()
        except AttarError as exc:
            # The local session is dropped regardless of the remote answer.
            logger.warning("Remote sign out failed: %s", exc.message)
            error_message = exc.message

        self._downgrade()
        return AuthOutcome(success=error_message is None, error_message=error_message)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def reload_profile(self) -> Optional[Profile]:
        """
        Best-effort profile reload for the current principal.

        Creates the profile with the store's defaults when none exists.
        """

        principal = self.state.principal
        if principal is None:
            return None

        while True:
            seen_version = self.state.balance_version
            try:
                profile = await self._profiles.fetch(principal.id)
                if profile is None:
                    logger.info("Creating profile for %s", principal.id)
                    profile = await self._profiles.create_if_missing(principal.id)
            except AttarError as exc:
                logger.error("Profile reload failed for %s: %s", principal.id, exc.message)
                return None

            # The principal may have changed while the request was in flight.
            if self.state.principal is None or self.state.principal.id != principal.id:
                return None

            if self.state.set_profile(profile, seen_version) or self.state.pending_spend:
                return profile
            # A spend settled while the request was in flight; read again.
            logger.debug("Balance moved during profile reload for %s", principal.id)

    async def update_profile(self, changes: Dict[str, Any]) -> Optional[Profile]:
        principal = self.state.principal
        if principal is None:
            return None

        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Profile fields cannot be updated: {', '.join(sorted(unknown))}")

        payload = dict(changes)
        payload["updated_at"] = self._clock().isoformat()
        try:
            profile = await self._profiles.update(principal.id, payload)
        except AttarError as exc:
            logger.error("Profile update failed for %s: %s", principal.id, exc.message)
            self.state.error = exc.message
            return None

        self.state.set_profile(profile)
        return profile

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def schedule_profile_reload(self) -> None:
        self._spawn(self.reload_profile())

    async def drain(self) -> None:
        """Wait for every background task started so far."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _adopt(self, session: Session) -> None:
        previous = self.state.principal
        self.state.adopt_session(session, self._clock())
        if previous is not None and previous.id != session.user_id:
            self.state.set_profile(None)
        self._notify(session)

    def _downgrade(self) -> None:
        had_session = self.state.session is not None
        self.state.reset()
        if had_session:
            self._notify(None)

    def _notify(self, session: Optional[Session]) -> None:
        if self._on_session_change is not None:
            self._on_session_change(session)
