import os
import tempfile
import unittest
from datetime import timedelta

from domain.errors import (
    AuthTransientError,
    RemoteOperationError,
    SessionExpired,
    is_auth_failure,
    translate_backend_error,
)
from domain.repositories import LinkedSession
from infrastructure.config import settings_from_env
from infrastructure.db.linked_session_repository_sqlite import SqliteLinkedSessionRepository
from interfaces.telegram.callback_data import (
    encode_cheer_letter,
    encode_vote_choice,
    parse_cheer_letter,
    parse_vote_choice,
)


BASE_ENV = {"SUPABASE_URL": "https://attar.supabase.co", "SUPABASE_ANON_KEY": "anon"}


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = settings_from_env(BASE_ENV)

        self.assertEqual(settings.session_store, "sqlite")
        self.assertEqual(settings.db_path, "attar_sessions.db")
        self.assertEqual(settings.timings.lookahead, timedelta(minutes=5))
        self.assertEqual(settings.timings.refresh_interval, timedelta(minutes=30))
        self.assertIsNone(settings.discord_token)
        self.assertEqual(settings.log_level, "INFO")

    def test_overrides(self):
        env = dict(
            BASE_ENV,
            SESSION_LOOKAHEAD_SECONDS="60",
            SESSION_QUIET_PERIOD_SECONDS="10",
            TELEGRAM_TOKEN="tg",
            LOG_LEVEL="debug",
        )

        settings = settings_from_env(env)

        self.assertEqual(settings.timings.lookahead, timedelta(seconds=60))
        self.assertEqual(settings.timings.quiet_period, timedelta(seconds=10))
        self.assertEqual(settings.telegram_token, "tg")
        self.assertEqual(settings.log_level, "DEBUG")

    def test_missing_supabase_settings(self):
        with self.assertRaises(RuntimeError):
            settings_from_env({"SUPABASE_URL": "https://attar.supabase.co"})

    def test_postgres_store_needs_database_url(self):
        with self.assertRaises(RuntimeError):
            settings_from_env(dict(BASE_ENV, SESSION_STORE="postgres"))

    def test_bad_durations(self):
        for value in ("soon", "0", "-5"):
            with self.assertRaises(RuntimeError):
                settings_from_env(dict(BASE_ENV, SESSION_REFRESH_INTERVAL_SECONDS=value))


class SqliteLinkedSessionRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.repo = SqliteLinkedSessionRepository(self.db_path)

    def tearDown(self) -> None:
        os.remove(self.db_path)

    def test_save_find_and_clear(self):
        self.assertIsNone(self.repo.find("telegram", "1"))

        self.repo.save(LinkedSession("telegram", "1", "user-1", "token-a"))
        self.repo.save(LinkedSession("telegram", "1", "user-1", "token-b"))

        linked = self.repo.find("telegram", "1")
        self.assertEqual(linked.refresh_token, "token-b")
        self.assertIsNone(self.repo.find("discord", "1"))

        self.repo.clear("telegram", "1")
        self.assertIsNone(self.repo.find("telegram", "1"))


class CallbackDataTests(unittest.TestCase):
    def test_vote_choice(self):
        data = encode_vote_choice("2f1c9a1e-8a57-4f0e-9d3b-6f2b1f0f8e11", 2, 3)

        self.assertEqual(parse_vote_choice(data), ("2f1c9a1e-8a57-4f0e-9d3b-6f2b1f0f8e11", 2, 3))

    def test_cheer_letter(self):
        self.assertEqual(parse_cheer_letter(encode_cheer_letter("letter-1", 1)), ("letter-1", 1))

    def test_rejects_foreign_data(self):
        with self.assertRaises(ValueError):
            parse_vote_choice("cheer:letter-1:1")
        with self.assertRaises(ValueError):
            parse_cheer_letter("cheer:letter-1:lots")

    def test_rejects_oversized_data(self):
        with self.assertRaises(ValueError):
            encode_cheer_letter("x" * 64, 1)


class ErrorClassificationTests(unittest.TestCase):
    def test_auth_signals(self):
        class Unauthorized(Exception):
            status = 401

        self.assertTrue(is_auth_failure(Unauthorized("nope")))
        self.assertTrue(is_auth_failure(RemoteOperationError("x", "PGRST301")))
        self.assertTrue(is_auth_failure(Exception("invalid claim: missing sub claim")))
        self.assertFalse(is_auth_failure(Exception("duplicate key value")))

    def test_translate(self):
        self.assertIsInstance(translate_backend_error(Exception("JWT expired")), AuthTransientError)
        self.assertIsInstance(translate_backend_error(Exception("connection reset")), RemoteOperationError)
        expired = SessionExpired()
        self.assertIs(translate_backend_error(expired), expired)


if __name__ == "__main__":
    unittest.main()
