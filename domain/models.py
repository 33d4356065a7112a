from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Session:
    """
    Authentication credential issued by the backend.

    `expires_at` is always an absolute, timezone-aware instant so that
    expiry checks never depend on when the session was received.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime
    user_id: str
    email: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def expires_within(self, window: timedelta, now: datetime) -> bool:
        return now + window >= self.expires_at


@dataclass(frozen=True)
class Principal:
    """Authenticated identity bound to at most one active session."""

    id: str
    email: Optional[str] = None

    @classmethod
    def from_session(cls, session: Session) -> "Principal":
        return cls(id=session.user_id, email=session.email)


@dataclass
class Profile:
    """
    Domain representation of an `attar_profile` row.

    `available_moons` is the authoritative balance as last read from the
    backend; the client's working copy lives in `ClientState.balance`.
    """

    id: str
    user_id: str
    pseudoname: str
    available_moons: int
    receive_letters: bool = True
    avatar_url: Optional[str] = None
    last_moon_refresh: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ProfileDefaults:
    """Values used when a profile has to be created for a new principal."""

    pseudoname: str
    available_moons: int
    receive_letters: bool


class SpendPurpose(str, Enum):
    ENV_DECISION = "env_decision"
    LETTER = "letter"


@dataclass(frozen=True)
class SpendIntent:
    """A pending balance decrement and the thing it pays for."""

    amount: int
    purpose: SpendPurpose
    target: Optional[str] = None


@dataclass(frozen=True)
class ResourceBalance:
    """
    Immutable snapshot of a principal's spendable moons.

    `apply` and `revert` return new values so that an optimistic spend and
    its compensation can be reasoned about without touching the network.
    """

    moons: int = 0

    def covers(self, amount: int) -> bool:
        return self.moons >= amount

    def apply(self, intent: SpendIntent) -> "ResourceBalance":
        return ResourceBalance(self.moons - intent.amount)

    def revert(self, intent: SpendIntent) -> "ResourceBalance":
        return ResourceBalance(self.moons + intent.amount)


@dataclass
class VoteTally:
    """Client-side cache of accumulated votes per choice for one target."""

    target_id: str
    amounts: Dict[str, int] = field(default_factory=dict)

    def add(self, choice_key: str, amount: int) -> None:
        self.amounts[choice_key] = self.amounts.get(choice_key, 0) + amount

    def total(self) -> int:
        return sum(self.amounts.values())

    def get(self, choice_key: str) -> int:
        return self.amounts.get(choice_key, 0)


@dataclass(frozen=True)
class VoteRecord:
    """Immutable row appended to `attar_votes`."""

    user_id: str
    votable_type: SpendPurpose
    votable_id: str
    moon_amount: int
    choice_index: Optional[int] = None


@dataclass
class Letter:
    id: str
    user_id: str
    subject: str
    content: str
    received_moons: int = 0
    published: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SendLetterResult:
    success: bool
    error: Optional[str] = None
    letter: Optional[Letter] = None


@dataclass
class LetterVoteResult:
    success: bool
    error: Optional[str] = None
    new_balance: Optional[int] = None


@dataclass
class EnvChoice:
    id: str
    title: str
    description: str
    votes: int


@dataclass
class CurrentEnv:
    id: str
    day: int
    title: str
    entity_image_url: Optional[str] = None
    world_image_url: Optional[str] = None
    world_video_url: Optional[str] = None
    choices: List[EnvChoice] = field(default_factory=list)
    env_description: str = ""

    def tally(self) -> VoteTally:
        tally = VoteTally(target_id=self.id)
        for choice in self.choices:
            tally.add(choice.id, choice.votes)
        return tally

    def choice_key(self, index: int) -> str:
        return self.choices[index].id


@dataclass
class TimelineChoice:
    title: str
    description: str
    vote_count: int
    vote_percentage: int = 0


@dataclass
class TimelineEntry:
    id: str
    day: int
    title: str
    env_description: str = ""
    entity_image_url: Optional[str] = None
    world_image_url: Optional[str] = None
    world_video_url: Optional[str] = None
    choices: List[TimelineChoice] = field(default_factory=list)
    winning_choice: Optional[TimelineChoice] = None
    created_at: Optional[str] = None


@dataclass
class KnowledgeItem:
    type: str
    value: str


@dataclass
class MemoryEntry:
    """What Attar kept from one day, joined with that day's env."""

    id: str
    day: int
    identity: Optional[str] = None
    new_knowledge: List[KnowledgeItem] = field(default_factory=list)
    # Pen names of the letter writers Attar heard from.
    interactions: List[str] = field(default_factory=list)
    capability_ids: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    env_id: Optional[str] = None
    env_image_url: Optional[str] = None
    env_video_url: Optional[str] = None
    env_title: Optional[str] = None
    env_description: Optional[str] = None


@dataclass
class BackstoryEntry:
    day: int
    text: str
    reasoning: Optional[str] = None


class MutationState(str, Enum):
    IDLE = "idle"
    VALIDATING_SESSION = "validating_session"
    REFRESHING = "refreshing"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    REMOTE_CALL = "remote_call"
    REFRESH_RETRY = "refresh_retry"
    ROLLBACK = "rollback"
    COMMITTED = "committed"
    FAILED = "failed"


def choice_key_for_index(index: int) -> str:
    return f"choice-{index}"


def choice_index_for_key(choice_key: str) -> int:
    """
    Reverse of `choice_key_for_index`.

    Raises ValueError for keys that were not produced by the env mapping.
    """

    prefix, _, index = choice_key.partition("-")
    if prefix != "choice" or not index.isdigit():
        raise ValueError(f"Invalid choice key: {choice_key}")
    return int(index)
