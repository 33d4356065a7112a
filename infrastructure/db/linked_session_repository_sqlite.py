from __future__ import annotations

import sqlite3
from typing import Optional

from domain.repositories import LinkedSession, LinkedSessionRepository


class SqliteLinkedSessionRepository(LinkedSessionRepository):
    """
    SQLite-backed implementation of `LinkedSessionRepository`.

    Stores mappings from (provider, provider_user_id) to the principal and
    its latest refresh token in a `linked_sessions` table.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS linked_sessions (
                    provider TEXT NOT NULL,
                    provider_user_id TEXT NOT NULL,
                    principal_id TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    PRIMARY KEY (provider, provider_user_id)
                )
                """
            )
            conn.commit()

    def find(self, provider: str, provider_user_id: str) -> Optional[LinkedSession]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT principal_id, refresh_token
                FROM linked_sessions
                WHERE provider = ? AND provider_user_id = ?
                """,
                (provider, provider_user_id),
            )
            row = cur.fetchone()
            if not row:
                return None
            return LinkedSession(
                provider=provider,
                provider_user_id=provider_user_id,
                principal_id=str(row[0]),
                refresh_token=str(row[1]),
            )

    def save(self, linked: LinkedSession) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO linked_sessions (provider, provider_user_id, principal_id, refresh_token)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (provider, provider_user_id)
                DO UPDATE SET principal_id = excluded.principal_id,
                              refresh_token = excluded.refresh_token
                """,
                (
                    linked.provider,
                    linked.provider_user_id,
                    linked.principal_id,
                    linked.refresh_token,
                ),
            )
            conn.commit()

    def clear(self, provider: str, provider_user_id: str) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                DELETE FROM linked_sessions
                WHERE provider = ? AND provider_user_id = ?
                """,
                (provider, provider_user_id),
            )
            conn.commit()
