from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from application.client import AttarClient
from application.registry import ClientRegistry
from domain.errors import AttarError
from domain.models import CurrentEnv, Letter, MemoryEntry, TimelineEntry


logger = logging.getLogger(__name__)

NOT_LOGGED_IN = "You are not logged in. Use login <email> <password> first."
NO_BACKSTORY = "Attar has not told its story yet."


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    provider: str
    provider_user_id: str
    display_name: str = ""


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool
    error_message: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        if not self.success:
            return self.error_message or "Something went wrong."
        return "\n".join(self.lines + self.warnings)


def _validate_positive_amount(amount: int) -> Optional[str]:
    if amount <= 0:
        return "Amount must be greater than zero."
    return None


async def _foreground(external_ctx: ExternalContext, registry: ClientRegistry) -> AttarClient:
    """Resolve the caller's client; every command counts as the user looking."""

    client = await registry.client_for(external_ctx.provider, external_ctx.provider_user_id)
    await client.guardian.on_visibility_change(True)
    return client


def _format_env(env: CurrentEnv) -> List[str]:
    lines = [f"Day {env.day}: {env.title}"]
    if env.env_description:
        lines.append(env.env_description)
    for number, choice in enumerate(env.choices, start=1):
        lines.append(f"{number}. {choice.title} ({choice.votes} moons)")
        if choice.description:
            lines.append(f"   {choice.description}")
    return lines


def _format_letter(letter: Letter) -> str:
    return f"[{letter.id}] {letter.subject} ({letter.received_moons} moons)"


def _format_timeline_entry(entry: TimelineEntry) -> str:
    if entry.winning_choice is None:
        return f"Day {entry.day}: {entry.title}"
    winner = entry.winning_choice
    return f"Day {entry.day}: {entry.title} -> {winner.title} ({winner.vote_percentage}%)"


def _format_memory(memory: MemoryEntry) -> List[str]:
    lines = [f"Day {memory.day}: {memory.env_title or 'Untitled'}"]
    if memory.identity:
        lines.append(f"  {memory.identity}")
    if memory.new_knowledge:
        learned = ", ".join(f"{item.value} ({item.type})" for item in memory.new_knowledge)
        lines.append(f"  Learned: {learned}")
    if memory.interactions:
        lines.append(f"  Letters from: {', '.join(memory.interactions)}")
    return lines


async def login(
    external_ctx: ExternalContext,
    email: str,
    password: str,
    registry: ClientRegistry,
) -> OperationResult:
    client = await registry.client_for(external_ctx.provider, external_ctx.provider_user_id)
    outcome = await client.guardian.sign_in(email, password)
    if not outcome.success:
        return OperationResult(success=False, error_message=outcome.error_message or "Login failed.")

    profile = client.state.profile
    name = profile.pseudoname if profile else email
    return OperationResult(
        success=True,
        lines=[f"Welcome, {name}. You have {client.state.balance.moons} moons."],
    )


async def signup(
    external_ctx: ExternalContext,
    email: str,
    password: str,
    registry: ClientRegistry,
    pseudoname: Optional[str] = None,
) -> OperationResult:
    client = await registry.client_for(external_ctx.provider, external_ctx.provider_user_id)
    outcome = await client.guardian.sign_up(email, password, pseudoname or external_ctx.display_name)
    if not outcome.success:
        return OperationResult(success=False, error_message=outcome.error_message or "Sign up failed.")
    if outcome.confirm_email:
        return OperationResult(success=True, lines=["Check your inbox to confirm your e-mail, then log in."])
    return OperationResult(
        success=True,
        lines=[f"Account created. You have {client.state.balance.moons} moons."],
    )


async def logout(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = registry.get(external_ctx.provider, external_ctx.provider_user_id)
    if client is None or not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    outcome = await client.guardian.sign_out()
    await registry.forget(external_ctx.provider, external_ctx.provider_user_id)
    lines = ["Logged out."]
    if outcome.error_message:
        lines.append(f"(The server said: {outcome.error_message})")
    return OperationResult(success=True, lines=lines)


async def show_balance(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    if not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)
    return OperationResult(success=True, lines=[f"You have {client.state.balance.moons} moons."])


async def set_pseudoname(
    external_ctx: ExternalContext,
    pseudoname: str,
    registry: ClientRegistry,
) -> OperationResult:
    pseudoname = pseudoname.strip()
    if not pseudoname:
        return OperationResult(success=False, error_message="Pen name cannot be empty.")

    client = await _foreground(external_ctx, registry)
    if not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    profile = await client.guardian.update_profile({"pseudoname": pseudoname})
    if profile is None:
        return OperationResult(success=False, error_message=client.state.error or "Update failed.")
    return OperationResult(success=True, lines=[f"You are now known as {profile.pseudoname}."])


async def show_current_env(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        env = await client.backend.envs.latest_env()
    except AttarError as exc:
        logger.error("Error fetching latest env: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if env is None:
        return OperationResult(success=False, error_message="Attar has not woken up yet.")

    client.state.cache_env(env)
    return OperationResult(success=True, lines=_format_env(env))


async def vote(
    external_ctx: ExternalContext,
    choice_number: int,
    amount: int,
    registry: ClientRegistry,
    env_id: Optional[str] = None,
) -> OperationResult:
    """
    Spend `amount` moons on choice `choice_number` (1-based) of the current
    env, or of `env_id` when the caller already knows it.
    """

    error = _validate_positive_amount(amount)
    if error:
        return OperationResult(success=False, error_message=error)

    client = await _foreground(external_ctx, registry)
    if not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    env = client.state.current_env
    if env is None or (env_id is not None and env.id != env_id):
        try:
            env = await client.backend.envs.latest_env()
        except AttarError as exc:
            return OperationResult(success=False, error_message=exc.message)
        if env is None:
            return OperationResult(success=False, error_message="There is nothing to vote on yet.")
        client.state.cache_env(env)

    if env_id is not None and env.id != env_id:
        return OperationResult(success=False, error_message="That vote has already closed.")
    if not 1 <= choice_number <= len(env.choices):
        return OperationResult(success=False, error_message=f"Pick a choice between 1 and {len(env.choices)}.")

    choice = env.choices[choice_number - 1]
    result = await client.coordinator.vote_on_choice(env.id, choice.id, amount)
    if not result.success:
        return OperationResult(success=False, error_message=result.error_message)

    choice.votes = client.state.tally_for(env.id).get(choice.id)
    return OperationResult(
        success=True,
        lines=[
            f"{external_ctx.display_name or 'You'} put {amount} moons on \"{choice.title}\".",
            f"You have {client.state.balance.moons} moons left.",
        ],
        warnings=[] if not result.warnings else ["The tally will catch up shortly."],
    )


async def send_letter(
    external_ctx: ExternalContext,
    subject: str,
    content: str,
    registry: ClientRegistry,
) -> OperationResult:
    subject, content = subject.strip(), content.strip()
    if not subject or not content:
        return OperationResult(success=False, error_message="A letter needs a subject and some content.")

    client = await _foreground(external_ctx, registry)
    if not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    result = await client.coordinator.send_letter(subject, content)
    if not result.success:
        return OperationResult(success=False, error_message=result.error or "Sending the letter failed.")
    return OperationResult(success=True, lines=[f"Your letter \"{subject}\" is on its way to Attar."])


async def letters_sent_today(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    principal = client.state.principal
    if principal is None:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    midnight = client.clock().replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        count = await client.backend.records.letter_count_since(principal.id, midnight)
    except AttarError as exc:
        return OperationResult(success=False, error_message=exc.message)
    return OperationResult(success=True, lines=[f"You sent {count} letter(s) today."])


async def list_letters(
    external_ctx: ExternalContext,
    registry: ClientRegistry,
    limit: int = 10,
) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        letters = await client.backend.records.published_letters(limit)
    except AttarError as exc:
        logger.error("Error fetching letters: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if not letters:
        return OperationResult(success=True, lines=["No letters have been published yet."])

    client.state.cache_letters(letters)
    return OperationResult(success=True, lines=[_format_letter(letter) for letter in letters])


async def my_letters(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    principal = client.state.principal
    if principal is None:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    try:
        letters = await client.backend.records.letters_for(principal.id)
    except AttarError as exc:
        return OperationResult(success=False, error_message=exc.message)

    if not letters:
        return OperationResult(success=True, lines=["You have not written any letters yet."])
    client.state.cache_letters(letters)
    return OperationResult(success=True, lines=[_format_letter(letter) for letter in letters])


async def cheer_letter(
    external_ctx: ExternalContext,
    letter_id: str,
    amount: int,
    registry: ClientRegistry,
) -> OperationResult:
    error = _validate_positive_amount(amount)
    if error:
        return OperationResult(success=False, error_message=error)

    client = await _foreground(external_ctx, registry)
    if not client.state.is_authenticated:
        return OperationResult(success=False, error_message=NOT_LOGGED_IN)

    result = await client.coordinator.vote_on_letter(letter_id, amount)
    if not result.success:
        return OperationResult(success=False, error_message=result.error_message)

    lines = [f"You sent {amount} moons to letter {letter_id}."]
    letter = client.state.letters.get(letter_id)
    if letter is not None:
        lines.append(f"It now holds {letter.received_moons} moons.")
    lines.append(f"You have {client.state.balance.moons} moons left.")
    return OperationResult(success=True, lines=lines)


async def show_timeline(
    external_ctx: ExternalContext,
    registry: ClientRegistry,
    limit: int = 10,
) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        entries = await client.backend.envs.timeline()
    except AttarError as exc:
        logger.error("Error fetching timeline: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if not entries:
        return OperationResult(success=True, lines=["The timeline is empty."])
    return OperationResult(success=True, lines=[_format_timeline_entry(e) for e in entries[:limit]])


async def show_env_day(
    external_ctx: ExternalContext,
    day: int,
    registry: ClientRegistry,
) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        env = await client.backend.envs.env_by_day(day)
    except AttarError as exc:
        logger.error("Error fetching env for day %d: %s", day, exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if env is None:
        return OperationResult(success=False, error_message=f"Nothing happened on day {day}.")
    return OperationResult(success=True, lines=_format_env(env))


async def show_memories(
    external_ctx: ExternalContext,
    registry: ClientRegistry,
    limit: int = 3,
) -> OperationResult:
    """The most recent days Attar remembers, newest first."""

    client = await _foreground(external_ctx, registry)
    try:
        count = await client.backend.memories.memory_count()
        memories = await client.backend.memories.memories()
    except AttarError as exc:
        logger.error("Error fetching memories: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if not memories:
        return OperationResult(success=True, lines=["Attar has no memories yet."])
    lines = [f"Attar remembers {count} day(s)."]
    for memory in memories[:limit]:
        lines.extend(_format_memory(memory))
    return OperationResult(success=True, lines=lines)


async def show_backstory(
    external_ctx: ExternalContext,
    registry: ClientRegistry,
    limit: int = 10,
) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        count = await client.backend.backstory.backstory_count()
        entries = await client.backend.backstory.backstory() if count else []
    except AttarError as exc:
        logger.error("Error fetching backstory: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if not entries:
        return OperationResult(success=True, lines=[NO_BACKSTORY])
    lines = [f"Attar's story, {count} day(s) so far:"]
    lines.extend(f"Day {entry.day}: {entry.text}" for entry in entries[-limit:])
    return OperationResult(success=True, lines=lines)


async def show_latest_backstory(external_ctx: ExternalContext, registry: ClientRegistry) -> OperationResult:
    client = await _foreground(external_ctx, registry)
    try:
        entry = await client.backend.backstory.latest_backstory()
    except AttarError as exc:
        logger.error("Error fetching latest backstory: %s", exc.message)
        return OperationResult(success=False, error_message=exc.message)

    if entry is None:
        return OperationResult(success=True, lines=[NO_BACKSTORY])
    return OperationResult(success=True, lines=[f"Day {entry.day}: {entry.text}"])
