"""In-memory stand-ins for the backend capabilities, shared by the test modules."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from domain.errors import RemoteOperationError
from domain.models import (
    BackstoryEntry,
    CurrentEnv,
    EnvChoice,
    Letter,
    LetterVoteResult,
    MemoryEntry,
    Profile,
    SendLetterResult,
    Session,
    TimelineEntry,
)
from domain.repositories import NEW_PROFILE_DEFAULTS, Backend, LinkedSession


START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_session(user_id: str, expires_at: datetime, serial: int = 0) -> Session:
    return Session(
        access_token=f"access-{user_id}-{serial}",
        refresh_token=f"refresh-{user_id}-{serial}",
        expires_at=expires_at,
        user_id=user_id,
        email=f"{user_id}@example.com",
    )


class FakeAuth:
    """
    Issues one-hour sessions. `refresh_results` queues what the next refresh
    calls answer (a Session, None or an exception); when empty a fresh
    session is issued for the current user.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.current: Optional[Session] = None
        self.accounts: Dict[str, tuple] = {}
        self.refresh_results: list = []
        self.refresh_calls = 0
        self.refresh_gate: Optional[asyncio.Event] = None
        self.restore_gate: Optional[asyncio.Event] = None
        self.restorable: Dict[str, Session] = {}
        self.confirm_email = False
        self.sign_out_error: Optional[Exception] = None
        self._serial = 0

    def issue(self, user_id: str) -> Session:
        self._serial += 1
        return make_session(user_id, self.clock() + timedelta(hours=1), self._serial)

    def add_account(self, email: str, password: str, user_id: str) -> None:
        self.accounts[email] = (password, user_id)

    async def get_session(self) -> Optional[Session]:
        return self.current

    async def refresh_session(self) -> Optional[Session]:
        self.refresh_calls += 1
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_results:
            result = self.refresh_results.pop(0)
            if isinstance(result, Exception):
                raise result
            session = result
        elif self.current is None:
            return None
        else:
            session = self.issue(self.current.user_id)
        if session is not None:
            self.current = session
        return session

    async def restore_session(self, refresh_token: str) -> Optional[Session]:
        if self.restore_gate is not None:
            await self.restore_gate.wait()
        session = self.restorable.get(refresh_token)
        if session is not None:
            self.current = session
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Optional[Session]:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise RemoteOperationError("Invalid login credentials", "invalid_credentials")
        self.current = self.issue(account[1])
        return self.current

    async def sign_up(self, email: str, password: str, pseudoname: str):
        if email in self.accounts:
            raise RemoteOperationError("User already registered", "user_already_exists")
        user_id = f"user-{len(self.accounts) + 1}"
        self.add_account(email, password, user_id)
        if self.confirm_email:
            return user_id, None
        self.current = self.issue(user_id)
        return user_id, self.current

    async def sign_out(self) -> None:
        self.current = None
        if self.sign_out_error is not None:
            raise self.sign_out_error


class FakeLedger:
    """
    Server-side balances live in `balances`, shared with `FakeProfiles`.
    Every call yields to the event loop once before touching the balances,
    like a real round trip would.
    """

    def __init__(self, balances: Dict[str, int]) -> None:
        self.balances = balances
        self.spend_calls: List[tuple] = []
        self.spend_errors: List[Exception] = []
        self.tally_calls: List[tuple] = []
        self.tally_error: Optional[Exception] = None
        self.letter_calls: List[tuple] = []
        self.letter_moons: Dict[str, int] = {}

    async def spend(self, principal_id: str, amount: int) -> bool:
        self.spend_calls.append((principal_id, amount))
        await asyncio.sleep(0)
        if self.spend_errors:
            raise self.spend_errors.pop(0)
        if self.balances.get(principal_id, 0) < amount:
            return False
        self.balances[principal_id] -= amount
        return True

    async def vote_tally(self, target_id: str, choice_index: int, amount: int) -> None:
        self.tally_calls.append((target_id, choice_index, amount))
        if self.tally_error is not None:
            raise self.tally_error

    async def vote_on_letter(self, principal_id: str, letter_id: str, amount: int) -> LetterVoteResult:
        self.letter_calls.append((principal_id, letter_id, amount))
        await asyncio.sleep(0)
        if self.balances.get(principal_id, 0) < amount:
            return LetterVoteResult(success=False, error="Insufficient moons")
        self.balances[principal_id] -= amount
        self.letter_moons[letter_id] = self.letter_moons.get(letter_id, 0) + amount
        return LetterVoteResult(success=True, new_balance=self.balances[principal_id])


class FakeProfiles:
    def __init__(self, balances: Dict[str, int]) -> None:
        self.balances = balances
        self.names: Dict[str, str] = {}
        self.created: List[str] = []
        self.updates: List[dict] = []
        self.fetch_error: Optional[Exception] = None

    def _profile(self, principal_id: str) -> Profile:
        return Profile(
            id=f"profile-{principal_id}",
            user_id=principal_id,
            pseudoname=self.names[principal_id],
            available_moons=self.balances.get(principal_id, 0),
        )

    async def fetch(self, principal_id: str) -> Optional[Profile]:
        await asyncio.sleep(0)
        if self.fetch_error is not None:
            raise self.fetch_error
        if principal_id not in self.names:
            return None
        return self._profile(principal_id)

    async def create_if_missing(self, principal_id: str, defaults=NEW_PROFILE_DEFAULTS) -> Profile:
        if principal_id not in self.names:
            self.created.append(principal_id)
            self.names[principal_id] = defaults.pseudoname
            self.balances.setdefault(principal_id, defaults.available_moons)
        return self._profile(principal_id)

    async def update(self, principal_id: str, changes: dict) -> Profile:
        self.updates.append(changes)
        if "pseudoname" in changes:
            self.names[principal_id] = changes["pseudoname"]
        return self._profile(principal_id)


class FakeRecords:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.votes: list = []
        self.insert_error: Optional[Exception] = None
        self.letters: List[Letter] = []
        self.sent_at: Dict[str, datetime] = {}

    async def insert_vote(self, record) -> None:
        if self.insert_error is not None:
            raise self.insert_error
        self.votes.append(record)

    async def send_letter(self, principal_id: str, subject: str, content: str) -> SendLetterResult:
        letter = Letter(
            id=f"letter-{len(self.letters) + 1}",
            user_id=principal_id,
            subject=subject,
            content=content,
        )
        self.letters.append(letter)
        self.sent_at[letter.id] = self.clock()
        return SendLetterResult(success=True, letter=letter)

    async def published_letters(self, limit: int = 50) -> List[Letter]:
        published = [letter for letter in self.letters if letter.published]
        published.sort(key=lambda letter: letter.received_moons, reverse=True)
        return published[:limit]

    async def letters_for(self, principal_id: str) -> List[Letter]:
        return [letter for letter in self.letters if letter.user_id == principal_id]

    async def letter_count_since(self, principal_id: str, since: datetime) -> int:
        return sum(
            1
            for letter in self.letters
            if letter.user_id == principal_id and self.sent_at[letter.id] >= since
        )


class FakeEnvs:
    def __init__(self) -> None:
        self.latest: Optional[CurrentEnv] = None
        self.by_day: Dict[int, CurrentEnv] = {}
        self.entries: List[TimelineEntry] = []

    async def latest_env(self) -> Optional[CurrentEnv]:
        return self.latest

    async def env_by_day(self, day: int) -> Optional[CurrentEnv]:
        return self.by_day.get(day)

    async def timeline(self) -> List[TimelineEntry]:
        return list(self.entries)


class FakeMemories:
    def __init__(self) -> None:
        self.entries: List[MemoryEntry] = []
        self.error: Optional[Exception] = None

    async def memories(self) -> List[MemoryEntry]:
        if self.error is not None:
            raise self.error
        return list(self.entries)

    async def memory_count(self) -> int:
        return len(self.entries)


class FakeBackstory:
    def __init__(self) -> None:
        self.lines: List[str] = []

    async def backstory(self) -> List[BackstoryEntry]:
        return [BackstoryEntry(day=index + 1, text=text) for index, text in enumerate(self.lines)]

    async def latest_backstory(self) -> Optional[BackstoryEntry]:
        if not self.lines:
            return None
        return BackstoryEntry(day=len(self.lines), text=self.lines[-1])

    async def backstory_count(self) -> int:
        return len(self.lines)


class InMemoryLinkedSessionRepository:
    def __init__(self) -> None:
        self.links: Dict[tuple, LinkedSession] = {}

    def find(self, provider: str, provider_user_id: str) -> Optional[LinkedSession]:
        return self.links.get((provider, provider_user_id))

    def save(self, linked: LinkedSession) -> None:
        self.links[(linked.provider, linked.provider_user_id)] = linked

    def clear(self, provider: str, provider_user_id: str) -> None:
        self.links.pop((provider, provider_user_id), None)


def make_backend(clock: FakeClock, balances: Optional[Dict[str, int]] = None) -> Backend:
    balances = {} if balances is None else balances
    return Backend(
        auth=FakeAuth(clock),
        ledger=FakeLedger(balances),
        records=FakeRecords(clock),
        profiles=FakeProfiles(balances),
        envs=FakeEnvs(),
        memories=FakeMemories(),
        backstory=FakeBackstory(),
    )


def make_env(env_id: str = "env-1", votes=(0, 0)) -> CurrentEnv:
    return CurrentEnv(
        id=env_id,
        day=3,
        title="The Flood",
        choices=[
            EnvChoice(id=f"choice-{index}", title=f"Option {index + 1}", description="", votes=count)
            for index, count in enumerate(votes)
        ],
    )
