from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    BackstoryEntry,
    CurrentEnv,
    Letter,
    LetterVoteResult,
    MemoryEntry,
    Profile,
    ProfileDefaults,
    SendLetterResult,
    Session,
    TimelineEntry,
    VoteRecord,
)


# New principals start with 13 moons and an anonymous pen name.
NEW_PROFILE_DEFAULTS = ProfileDefaults(
    pseudoname="Anonymous",
    available_moons=13,
    receive_letters=True,
)


class AuthProvider(Protocol):
    """
    Abstraction over the backend's authentication service.

    Implementations must report session expiry as an absolute instant and
    raise only `domain.errors` types.
    """

    async def get_session(self) -> Optional[Session]:
        """Return the locally held session without a refresh round-trip."""

        ...

    async def refresh_session(self) -> Optional[Session]:
        """Exchange the refresh token for a new session."""

        ...

    async def restore_session(self, refresh_token: str) -> Optional[Session]:
        """Resume a session persisted elsewhere from its refresh token."""

        ...

    async def sign_in_with_password(self, email: str, password: str) -> Optional[Session]:
        ...

    async def sign_up(
        self,
        email: str,
        password: str,
        pseudoname: str,
    ) -> Tuple[Optional[str], Optional[Session]]:
        """
        Register a new account.

        Returns `(user_id, session)`; the session is None when the backend
        requires e-mail confirmation first.
        """

        ...

    async def sign_out(self) -> None:
        ...


class LedgerRpc(Protocol):
    """
    Atomic server-side operations on balances and tallies.
    """

    async def spend(self, principal_id: str, amount: int) -> bool:
        """
        Debit `amount` moons from the principal.

        Returns False when the backend rejects the spend (insufficient
        balance); the check and the decrement happen atomically server-side.
        """

        ...

    async def vote_tally(self, target_id: str, choice_index: int, amount: int) -> None:
        """Add `amount` to the aggregate tally of one choice on an env."""

        ...

    async def vote_on_letter(
        self,
        principal_id: str,
        letter_id: str,
        amount: int,
    ) -> LetterVoteResult:
        """Move moons from the principal to a letter in one transaction."""

        ...


class RecordStore(Protocol):
    """
    Append-only records keyed by principal. No transactional coupling to
    the ledger.
    """

    async def insert_vote(self, record: VoteRecord) -> None:
        ...

    async def send_letter(self, principal_id: str, subject: str, content: str) -> SendLetterResult:
        ...

    async def published_letters(self, limit: int = 50) -> List[Letter]:
        ...

    async def letters_for(self, principal_id: str) -> List[Letter]:
        ...

    async def letter_count_since(self, principal_id: str, since: datetime) -> int:
        ...


class ProfileStore(Protocol):
    async def fetch(self, principal_id: str) -> Optional[Profile]:
        """Return the profile for the principal, or None if none exists yet."""

        ...

    async def create_if_missing(
        self,
        principal_id: str,
        defaults: ProfileDefaults = NEW_PROFILE_DEFAULTS,
    ) -> Profile:
        ...

    async def update(self, principal_id: str, changes: Dict[str, Any]) -> Profile:
        ...


class EnvStore(Protocol):
    """Read-only access to the evolving environment and its timeline."""

    async def latest_env(self) -> Optional[CurrentEnv]:
        ...

    async def env_by_day(self, day: int) -> Optional[CurrentEnv]:
        ...

    async def timeline(self) -> List[TimelineEntry]:
        ...


class MemoryStore(Protocol):
    """Attar's day-by-day memories, newest first."""

    async def memories(self) -> List[MemoryEntry]:
        """
        Return every memory joined with its env.

        When no memory has been written yet, one entry per env is built
        instead, with the backstory line of that day as its identity.
        """

        ...

    async def memory_count(self) -> int:
        """Number of memories, or of envs while there are none."""

        ...


class BackstoryStore(Protocol):
    """The one sentence Attar adds to its own story each day."""

    async def backstory(self) -> List[BackstoryEntry]:
        """Every line, oldest first; day numbers follow that order."""

        ...

    async def latest_backstory(self) -> Optional[BackstoryEntry]:
        ...

    async def backstory_count(self) -> int:
        ...


@dataclass
class Backend:
    """The narrow capability set the client core calls through."""

    auth: AuthProvider
    ledger: LedgerRpc
    records: RecordStore
    profiles: ProfileStore
    envs: EnvStore
    memories: MemoryStore
    backstory: BackstoryStore


@dataclass
class LinkedSession:
    provider: str
    provider_user_id: str
    principal_id: str
    refresh_token: str


class LinkedSessionRepository(Protocol):
    """
    Maps external chat identities (Telegram/Discord) to persisted backend
    sessions so that a signed-in user survives a bot restart.
    """

    def find(self, provider: str, provider_user_id: str) -> Optional[LinkedSession]:
        ...

    def save(self, linked: LinkedSession) -> None:
        """Upsert the mapping for `(provider, provider_user_id)`."""

        ...

    def clear(self, provider: str, provider_user_id: str) -> None:
        """Remove any mapping for the given external identity (logout)."""

        ...
