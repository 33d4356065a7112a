from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv

from application.client import SessionTimings


SESSION_STORES = ("sqlite", "postgres")


@dataclass(frozen=True)
class Settings:
    """
    Process configuration read from the environment (and `.env`).

    Tokens for the chat front-ends are optional here; each entry point
    checks the one it needs.
    """

    supabase_url: str
    supabase_anon_key: str
    discord_token: Optional[str] = None
    telegram_token: Optional[str] = None
    session_store: str = "sqlite"
    db_path: str = "attar_sessions.db"
    database_url: Optional[str] = None
    timings: SessionTimings = SessionTimings()
    log_level: str = "INFO"


def _seconds(env: Mapping[str, str], name: str, default: timedelta) -> timedelta:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a whole number of seconds, got {raw!r}.") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive.")
    return timedelta(seconds=value)


def settings_from_env(env: Mapping[str, str]) -> Settings:
    supabase_url = env.get("SUPABASE_URL")
    supabase_anon_key = env.get("SUPABASE_ANON_KEY")
    if not supabase_url or not supabase_anon_key:
        raise RuntimeError(
            "Missing Supabase environment variables. "
            "Please set SUPABASE_URL and SUPABASE_ANON_KEY in your .env file."
        )

    session_store = env.get("SESSION_STORE", "sqlite").lower()
    if session_store not in SESSION_STORES:
        raise RuntimeError(f"SESSION_STORE must be one of {', '.join(SESSION_STORES)}.")
    database_url = env.get("DATABASE_URL") or None
    if session_store == "postgres" and not database_url:
        raise RuntimeError("DATABASE_URL is required when SESSION_STORE=postgres.")

    defaults = SessionTimings()
    timings = SessionTimings(
        lookahead=_seconds(env, "SESSION_LOOKAHEAD_SECONDS", defaults.lookahead),
        refresh_interval=_seconds(env, "SESSION_REFRESH_INTERVAL_SECONDS", defaults.refresh_interval),
        quiet_period=_seconds(env, "SESSION_QUIET_PERIOD_SECONDS", defaults.quiet_period),
    )

    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=supabase_anon_key,
        discord_token=env.get("DISCORD_TOKEN") or None,
        telegram_token=env.get("TELEGRAM_TOKEN") or None,
        session_store=session_store,
        db_path=env.get("DB_PATH", "attar_sessions.db"),
        database_url=database_url,
        timings=timings,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def load_settings() -> Settings:
    load_dotenv()
    return settings_from_env(os.environ)
