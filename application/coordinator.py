from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from application.client_state import ClientState
from application.retry import DEFAULT_MAX_RETRIES, call_with_auth_retry
from application.session_guardian import SessionGuardian
from domain.errors import (
    AttarError,
    InsufficientBalance,
    InvalidRequest,
    PartialCommitDrift,
    RemoteOperationError,
    SessionExpired,
)
from domain.models import (
    LetterVoteResult,
    MutationState,
    Principal,
    ResourceBalance,
    SendLetterResult,
    SpendIntent,
    SpendPurpose,
    VoteRecord,
    choice_index_for_key,
)
from domain.repositories import LedgerRpc, RecordStore


logger = logging.getLogger(__name__)

# Remote part of a spend. Returns whatever the backend answered; a plain
# False means the ledger rejected the debit.
SpendAction = Callable[[Principal, SpendIntent], Awaitable[Any]]


@dataclass
class MutationResult:
    """Outcome of one mutation attempt. Never raised, always returned."""

    success: bool
    state: MutationState
    error_message: Optional[str] = None
    error: Optional[AttarError] = None
    balance: ResourceBalance = field(default_factory=ResourceBalance)
    history: List[MutationState] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    retries: int = 0
    data: Any = None


class _Attempt:
    """Tracks the state machine of a single mutation."""

    def __init__(self, intent: SpendIntent, principal_id: Optional[str] = None) -> None:
        self.intent = intent
        self.principal_id = principal_id
        self.state = MutationState.IDLE
        self.history: List[MutationState] = [MutationState.IDLE]
        self.retries = 0

    def move(self, state: MutationState) -> None:
        self.state = state
        self.history.append(state)

    def on_retry(self, attempt: int) -> None:
        self.retries = attempt
        self.move(MutationState.REFRESH_RETRY)
        self.move(MutationState.REMOTE_CALL)


class MutationCoordinator:
    """
    Applies balance-decrementing actions optimistically and reconciles them.

    The local balance is decremented before the remote call and restored
    if the call fails. Auth failures get exactly one refresh-and-retry via
    `call_with_auth_retry`. Mutations are not serialized: two spends may
    both pass the local check, and the backend ledger rejects the one that
    would overdraw, which then rolls back here.

    Profile reloads that land while a spend is in flight do not touch the
    working balance; it is re-read once nothing is pending.
    """

    def __init__(
        self,
        state: ClientState,
        guardian: SessionGuardian,
        ledger: LedgerRpc,
        records: RecordStore,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        reconcile_in_background: bool = True,
    ) -> None:
        self.state = state
        self._guardian = guardian
        self._ledger = ledger
        self._records = records
        self._max_retries = max_retries
        self._reconcile = reconcile_in_background

    async def spend(
        self,
        amount: int,
        action: Optional[SpendAction] = None,
        *,
        purpose: SpendPurpose = SpendPurpose.ENV_DECISION,
        target: Optional[str] = None,
    ) -> MutationResult:
        intent = SpendIntent(amount=amount, purpose=purpose, target=target)
        principal = self.state.principal
        attempt = _Attempt(intent, principal.id if principal else None)

        if amount <= 0:
            return self._fail(attempt, InvalidRequest("Amount must be greater than zero."))
        if self.state.principal is None or self.state.profile is None:
            return self._fail(attempt, SessionExpired("Not logged in"))
        if not self.state.balance.covers(amount):
            return self._fail(attempt, InsufficientBalance())

        attempt.move(MutationState.VALIDATING_SESSION)
        if self._guardian.needs_refresh():
            attempt.move(MutationState.REFRESHING)
        if not await self._guardian.ensure_valid():
            return self._fail(attempt, SessionExpired())

        self.state.apply_spend(intent)
        attempt.move(MutationState.OPTIMISTIC_APPLIED)

        remote = action or self._ledger_spend

        async def call(principal: Principal) -> Any:
            return await remote(principal, intent)

        attempt.move(MutationState.REMOTE_CALL)
        try:
            answer = await call_with_auth_retry(
                call,
                self._guardian,
                max_retries=self._max_retries,
                on_retry=attempt.on_retry,
            )
        except AttarError as exc:
            logger.error("Spend of %d moons failed: %s", amount, exc.message)
            return self._rollback(attempt, exc)

        if answer is False:
            logger.info("Ledger rejected spend of %d moons", amount)
            return self._rollback(attempt, InsufficientBalance())

        attempt.move(MutationState.COMMITTED)
        if self._owns(attempt):
            self.state.settle_spend(intent)
        if self._reconcile:
            self._guardian.schedule_profile_reload()

        return MutationResult(
            success=True,
            state=attempt.state,
            balance=self.state.balance,
            history=attempt.history,
            retries=attempt.retries,
            data=answer,
        )

    async def vote_on_choice(self, target_id: str, choice_key: str, amount: int) -> MutationResult:
        """
        Spend moons on one choice of an env.

        After the spend commits, the vote record and the tally increment are
        dispatched together. A failed tally is logged as drift and does not
        undo the vote.
        """

        try:
            choice_index = choice_index_for_key(choice_key)
        except ValueError as exc:
            attempt = _Attempt(SpendIntent(amount, SpendPurpose.ENV_DECISION, target_id))
            return self._fail(attempt, InvalidRequest(str(exc)))

        result = await self.spend(amount, purpose=SpendPurpose.ENV_DECISION, target=target_id)
        if not result.success:
            return result

        self.state.tally_for(target_id).add(choice_key, amount)

        async def insert_vote(principal: Principal) -> None:
            await self._records.insert_vote(
                VoteRecord(
                    user_id=principal.id,
                    votable_type=SpendPurpose.ENV_DECISION,
                    votable_id=target_id,
                    choice_index=choice_index,
                    moon_amount=amount,
                )
            )

        async def add_tally(principal: Principal) -> None:
            await self._ledger.vote_tally(target_id, choice_index, amount)

        vote_outcome, tally_outcome = await asyncio.gather(
            self._with_retry(insert_vote),
            self._with_retry(add_tally),
            return_exceptions=True,
        )

        if isinstance(vote_outcome, AttarError):
            # The moons are already gone server-side; the balance stays as is.
            logger.error("Error recording vote on %s: %s", target_id, vote_outcome.message)
            result.success = False
            result.error = vote_outcome
            result.error_message = vote_outcome.message
            return result
        if isinstance(vote_outcome, BaseException):
            raise vote_outcome

        if isinstance(tally_outcome, AttarError):
            drift = PartialCommitDrift(
                f"Vote recorded but tally for {choice_key} on {target_id} not updated: "
                f"{tally_outcome.message}"
            )
            logger.warning(drift.message)
            result.warnings.append(drift.message)
        elif isinstance(tally_outcome, BaseException):
            raise tally_outcome

        return result

    async def vote_on_letter(self, letter_id: str, amount: int) -> MutationResult:
        """Send moons to a letter through the atomic `vote_on_letter` RPC."""

        async def remote(principal: Principal, intent: SpendIntent) -> Any:
            outcome: LetterVoteResult = await self._ledger.vote_on_letter(
                principal.id, letter_id, intent.amount
            )
            if not outcome.success:
                raise RemoteOperationError(outcome.error or "Vote on letter failed.")
            return outcome

        result = await self.spend(amount, remote, purpose=SpendPurpose.LETTER, target=letter_id)
        if not result.success:
            return result

        outcome = result.data
        if outcome.new_balance is not None and self.state.adopt_server_balance(outcome.new_balance):
            result.balance = self.state.balance
        self.state.add_letter_moons(letter_id, amount)
        return result

    async def send_letter(self, subject: str, content: str) -> SendLetterResult:
        if self.state.principal is None:
            return SendLetterResult(success=False, error="Not logged in")
        if not await self._guardian.ensure_valid():
            return SendLetterResult(success=False, error=SessionExpired().message)

        async def call(principal: Principal) -> SendLetterResult:
            return await self._records.send_letter(principal.id, subject, content)

        try:
            result = await self._with_retry(call)
        except AttarError as exc:
            logger.error("Error sending letter: %s", exc.message)
            return SendLetterResult(success=False, error=exc.message)

        if result.success and result.letter is not None:
            self.state.cache_letters([result.letter])
        return result

    async def _ledger_spend(self, principal: Principal, intent: SpendIntent) -> bool:
        return await self._ledger.spend(principal.id, intent.amount)

    async def _with_retry(self, call: Callable[[Principal], Awaitable[Any]]) -> Any:
        return await call_with_auth_retry(call, self._guardian, max_retries=self._max_retries)

    def _rollback(self, attempt: _Attempt, error: AttarError) -> MutationResult:
        attempt.move(MutationState.ROLLBACK)
        # A failed refresh may already have reset the state to signed-out.
        if self._owns(attempt):
            stale = self.state.settle_spend(attempt.intent, revert=True)
            if stale and self._reconcile:
                self._guardian.schedule_profile_reload()
        return self._fail(attempt, error)

    def _owns(self, attempt: _Attempt) -> bool:
        principal = self.state.principal
        return principal is not None and principal.id == attempt.principal_id

    def _fail(self, attempt: _Attempt, error: AttarError) -> MutationResult:
        attempt.move(MutationState.FAILED)
        return MutationResult(
            success=False,
            state=attempt.state,
            error_message=error.message,
            error=error,
            balance=self.state.balance,
            history=attempt.history,
            retries=attempt.retries,
        )
