from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional

from domain.models import (
    CurrentEnv,
    Letter,
    Principal,
    Profile,
    ResourceBalance,
    Session,
    SpendIntent,
    VoteTally,
)


@dataclass
class ClientState:
    """
    Everything one signed-in client knows about itself.

    Shared by reference between the `SessionGuardian` and the
    `MutationCoordinator`; only those two write to it. A fresh instance
    is the anonymous state and `reset()` returns to it on sign-out.
    """

    session: Optional[Session] = None
    principal: Optional[Principal] = None
    profile: Optional[Profile] = None
    balance: ResourceBalance = field(default_factory=ResourceBalance)
    tallies: Dict[str, VoteTally] = field(default_factory=dict)
    letters: Dict[str, Letter] = field(default_factory=dict)
    current_env: Optional[CurrentEnv] = None
    visible: bool = True
    pending_spend: int = 0
    balance_stale: bool = False
    balance_version: int = 0
    last_refresh_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    def adopt_session(self, session: Session, now: datetime) -> None:
        if self.principal is not None and self.principal.id != session.user_id:
            # Spends still in flight belong to the previous principal.
            self.pending_spend = 0
            self.balance_stale = False
            self.balance_version += 1
        self.session = session
        self.principal = Principal.from_session(session)
        self.last_refresh_at = now
        self.error = None

    def set_profile(self, profile: Optional[Profile], seen_version: Optional[int] = None) -> bool:
        self.profile = profile
        if profile is None:
            self.balance = ResourceBalance()
            return True
        return self.adopt_server_balance(profile.available_moons, seen_version)

    def adopt_server_balance(self, moons: int, seen_version: Optional[int] = None) -> bool:
        """
        Take the backend's balance as the working copy.

        While optimistic spends are in flight the value is dropped and the
        balance is marked stale instead, so that `apply`/`revert` stay exact.
        `seen_version` is the `balance_version` read before the request went
        out; a value read before a spend started or settled is dropped too.
        """

        moved = seen_version is not None and seen_version != self.balance_version
        if self.pending_spend or moved:
            self.balance_stale = True
            return False
        self.balance = ResourceBalance(moons)
        self.balance_stale = False
        return True

    def apply_spend(self, intent: SpendIntent) -> None:
        self.pending_spend += intent.amount
        self.balance_version += 1
        self.balance = self.balance.apply(intent)

    def settle_spend(self, intent: SpendIntent, *, revert: bool = False) -> bool:
        """
        Finish an optimistic spend, reverting it on failure.

        Returns True when a server balance was dropped meanwhile and nothing
        else is in flight, i.e. the balance should be re-read.
        """

        self.pending_spend = max(0, self.pending_spend - intent.amount)
        self.balance_version += 1
        if revert:
            self.balance = self.balance.revert(intent)
        return self.pending_spend == 0 and self.balance_stale

    def cache_env(self, env: CurrentEnv) -> VoteTally:
        self.current_env = env
        tally = env.tally()
        self.tallies[env.id] = tally
        return tally

    def tally_for(self, target_id: str) -> VoteTally:
        tally = self.tallies.get(target_id)
        if tally is None:
            tally = VoteTally(target_id=target_id)
            self.tallies[target_id] = tally
        return tally

    def cache_letters(self, letters: Iterable[Letter]) -> None:
        for letter in letters:
            self.letters[letter.id] = letter

    def add_letter_moons(self, letter_id: str, amount: int) -> None:
        letter = self.letters.get(letter_id)
        if letter is not None:
            letter.received_moons += amount

    def reset(self) -> None:
        self.session = None
        self.principal = None
        self.profile = None
        self.balance = ResourceBalance()
        self.pending_spend = 0
        self.balance_stale = False
        self.tallies.clear()
        self.letters.clear()
        self.current_env = None
        self.last_refresh_at = None
        self.error = None
