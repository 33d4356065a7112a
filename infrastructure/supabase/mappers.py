from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from domain.models import (
    BackstoryEntry,
    CurrentEnv,
    EnvChoice,
    KnowledgeItem,
    Letter,
    LetterVoteResult,
    MemoryEntry,
    Profile,
    SendLetterResult,
    Session,
    TimelineChoice,
    TimelineEntry,
    choice_key_for_index,
)


def session_to_domain(session: Any) -> Optional[Session]:
    """
    Convert a supabase-py auth session into a domain `Session`.

    The auth client reports `expires_at` as epoch seconds; when it is missing
    it is derived from `expires_in`.
    """

    if session is None:
        return None

    expires_at = getattr(session, "expires_at", None)
    if expires_at is not None:
        expiry = datetime.fromtimestamp(int(expires_at), tz=timezone.utc)
    else:
        expires_in = int(getattr(session, "expires_in", 0) or 0)
        expiry = datetime.fromtimestamp(
            datetime.now(timezone.utc).timestamp() + expires_in, tz=timezone.utc
        )

    user = getattr(session, "user", None)
    return Session(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=expiry,
        user_id=str(user.id) if user is not None else "",
        email=getattr(user, "email", None) if user is not None else None,
    )


def profile_to_domain(row: Dict[str, Any]) -> Profile:
    return Profile(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        pseudoname=row.get("pseudoname") or "Anonymous",
        available_moons=int(row.get("available_moons") or 0),
        receive_letters=bool(row.get("receive_letters", True)),
        avatar_url=row.get("avatar_url"),
        last_moon_refresh=row.get("last_moon_refresh"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def letter_to_domain(row: Dict[str, Any]) -> Letter:
    return Letter(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        subject=row.get("subject") or "",
        content=row.get("content") or "",
        received_moons=int(row.get("received_moons") or 0),
        published=bool(row.get("published", False)),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def send_letter_result(data: Any) -> SendLetterResult:
    """Map the JSON returned by the `send_letter` stored procedure."""

    if not isinstance(data, dict):
        return SendLetterResult(success=False, error="Unexpected response from send_letter.")
    letter = data.get("letter")
    return SendLetterResult(
        success=bool(data.get("success")),
        error=data.get("error"),
        letter=letter_to_domain(letter) if isinstance(letter, dict) else None,
    )


def letter_vote_result(data: Any) -> LetterVoteResult:
    """Map the JSON returned by the `vote_on_letter` stored procedure."""

    if not isinstance(data, dict):
        return LetterVoteResult(success=False, error="Unexpected response from vote_on_letter.")
    new_balance = data.get("new_balance")
    return LetterVoteResult(
        success=bool(data.get("success")),
        error=data.get("error"),
        new_balance=int(new_balance) if new_balance is not None else None,
    )


def _metadata(row: Dict[str, Any]) -> Dict[str, Any]:
    return row.get("metadata") or {}


def _raw_choices(row: Dict[str, Any]) -> List[Dict[str, Any]]:
    decisions = row.get("decisions") or {}
    return decisions.get("choices") or []


def env_to_domain(row: Dict[str, Any], default_day: int = 0) -> CurrentEnv:
    metadata = _metadata(row)
    choices = [
        EnvChoice(
            id=choice_key_for_index(index),
            title=raw.get("title") or f"Choice {index + 1}",
            description=raw.get("description") or "",
            votes=int(raw.get("vote_count") or 0),
        )
        for index, raw in enumerate(_raw_choices(row))
    ]
    return CurrentEnv(
        id=str(row["id"]),
        day=metadata.get("day", default_day),
        title=metadata.get("title") or "Attar",
        entity_image_url=row.get("entity_image_url"),
        world_image_url=row.get("world_image_url"),
        world_video_url=row.get("world_video_url"),
        choices=choices,
        env_description=metadata.get("env_description") or "",
    )


def timeline_entry(row: Dict[str, Any], default_day: int) -> TimelineEntry:
    """
    Build a timeline entry with vote percentages and the winning choice.

    Percentages are rounded half up per choice and stay 0 when nobody
    voted. Ties go to the later choice.
    """

    metadata = _metadata(row)
    choices = [
        TimelineChoice(
            title=raw.get("title") or "",
            description=raw.get("description") or "",
            vote_count=int(raw.get("vote_count") or 0),
        )
        for raw in _raw_choices(row)
    ]

    total = sum(choice.vote_count for choice in choices)
    if total > 0:
        for choice in choices:
            choice.vote_percentage = math.floor(choice.vote_count / total * 100 + 0.5)

    winner: Optional[TimelineChoice] = None
    for choice in choices:
        if winner is None or choice.vote_count >= winner.vote_count:
            winner = choice

    return TimelineEntry(
        id=str(row["id"]),
        day=metadata.get("day", default_day),
        title=metadata.get("title") or "Untitled",
        env_description=metadata.get("env_description") or "",
        entity_image_url=row.get("entity_image_url"),
        world_image_url=row.get("world_image_url"),
        world_video_url=row.get("world_video_url"),
        choices=choices,
        winning_choice=winner,
        created_at=row.get("created_at"),
    )


def _day(metadata: Dict[str, Any], default_day: int) -> int:
    day = metadata.get("day")
    return default_day if day is None else int(day)


def knowledge_item(raw: Any) -> KnowledgeItem:
    """Knowledge rows are loosely shaped; plain strings count as themes."""

    if not isinstance(raw, dict):
        return KnowledgeItem(type="theme", value=str(raw))
    value = raw.get("value") or raw.get("topic") or raw.get("name") or str(raw)
    return KnowledgeItem(type=raw.get("type") or "theme", value=value)


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def memory_entry(row: Dict[str, Any], default_day: int) -> MemoryEntry:
    env = row.get("attar_env") or {}
    metadata = env.get("metadata") or {}
    return MemoryEntry(
        id=str(row["id"]),
        day=_day(metadata, default_day),
        identity=row.get("identity") or None,
        new_knowledge=[knowledge_item(raw) for raw in _list(row.get("new_knowledge"))],
        interactions=[name for name in _list(row.get("interactions")) if isinstance(name, str)],
        capability_ids=[str(cap) for cap in _list(row.get("capability_ids"))],
        created_at=row.get("created_at"),
        env_id=row.get("env_id"),
        env_image_url=env.get("world_image_url") or None,
        env_video_url=env.get("world_video_url") or None,
        env_title=metadata.get("title") or None,
        env_description=metadata.get("env_description") or None,
    )


def memory_from_env(
    row: Dict[str, Any],
    default_day: int,
    identities: Dict[int, str],
) -> MemoryEntry:
    """Stand-in memory for an env, for days before memories were written."""

    metadata = _metadata(row)
    day = _day(metadata, default_day)
    return MemoryEntry(
        id=str(row["id"]),
        day=day,
        identity=identities.get(day) or None,
        created_at=row.get("created_at"),
        env_id=str(row["id"]),
        env_image_url=row.get("world_image_url"),
        env_video_url=row.get("world_video_url"),
        env_title=metadata.get("title") or None,
        env_description=metadata.get("env_description") or None,
    )


def backstory_entry(row: Dict[str, Any], day: int) -> BackstoryEntry:
    return BackstoryEntry(day=day, text=row.get("sentence") or "", reasoning=row.get("reasoning"))
