from __future__ import annotations

from typing import Optional

import psycopg2

from domain.repositories import LinkedSession, LinkedSessionRepository


class PostgresLinkedSessionRepository(LinkedSessionRepository):
    """
    Postgres-backed implementation of `LinkedSessionRepository`.

    Used when several bot processes share one session table. The
    `linked_sessions` table is created on first use.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(self._dsn)

    def _ensure_table(self) -> None:
        """
        Schema (minimal):
          - provider TEXT
          - provider_user_id TEXT
          - principal_id TEXT  -- auth user id
          - refresh_token TEXT
          - updated_at TIMESTAMPTZ
        """

        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS linked_sessions (
                        provider TEXT NOT NULL,
                        provider_user_id TEXT NOT NULL,
                        principal_id TEXT NOT NULL,
                        refresh_token TEXT NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        PRIMARY KEY (provider, provider_user_id)
                    )
                    """
                )
                conn.commit()

    def find(self, provider: str, provider_user_id: str) -> Optional[LinkedSession]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT principal_id, refresh_token
                    FROM linked_sessions
                    WHERE provider = %s AND provider_user_id = %s
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
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO linked_sessions (provider, provider_user_id, principal_id, refresh_token)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (provider, provider_user_id)
                    DO UPDATE SET principal_id = EXCLUDED.principal_id,
                                  refresh_token = EXCLUDED.refresh_token,
                                  updated_at = now()
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
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM linked_sessions
                    WHERE provider = %s AND provider_user_id = %s
                    """,
                    (provider, provider_user_id),
                )
                conn.commit()
