from __future__ import annotations

import logging

from application.registry import ClientRegistry
from domain.repositories import Backend, LinkedSessionRepository
from infrastructure.config import Settings
from infrastructure.db.linked_session_repository_postgres import PostgresLinkedSessionRepository
from infrastructure.db.linked_session_repository_sqlite import SqliteLinkedSessionRepository
from infrastructure.supabase.backend import create_backend


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def linked_session_repository(settings: Settings) -> LinkedSessionRepository:
    if settings.session_store == "postgres":
        return PostgresLinkedSessionRepository(settings.database_url)
    return SqliteLinkedSessionRepository(settings.db_path)


def build_registry(settings: Settings) -> ClientRegistry:
    """Wire a `ClientRegistry` that gives every chat user their own Supabase client."""

    async def backend_factory() -> Backend:
        return await create_backend(settings.supabase_url, settings.supabase_anon_key)

    return ClientRegistry(
        backend_factory,
        linked_session_repository(settings),
        timings=settings.timings,
    )
