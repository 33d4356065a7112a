import unittest

from application.client_state import ClientState
from application.retry import call_with_auth_retry
from application.session_guardian import SessionGuardian
from domain.errors import AuthTransientError, RemoteOperationError, SessionExpired

from fakes import FakeClock, make_backend


class CallWithAuthRetryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        backend = make_backend(self.clock, {"user-1": 5})
        self.auth = backend.auth
        self.auth.add_account("ada@example.com", "secret", "user-1")
        self.state = ClientState()
        self.guardian = SessionGuardian(self.state, self.auth, backend.profiles, clock=self.clock)
        await self.guardian.sign_in("ada@example.com", "secret")
        self.calls = []

    async def asyncTearDown(self) -> None:
        await self.guardian.stop()

    def _failing(self, *errors):
        pending = list(errors)

        async def call(principal):
            self.calls.append(principal.id)
            if pending:
                raise pending.pop(0)
            return "ok"

        return call

    async def test_success_needs_no_refresh(self):
        result = await call_with_auth_retry(self._failing(), self.guardian)

        self.assertEqual(result, "ok")
        self.assertEqual(self.calls, ["user-1"])
        self.assertEqual(self.auth.refresh_calls, 0)

    async def test_auth_error_refreshes_and_retries_once(self):
        retries = []

        result = await call_with_auth_retry(
            self._failing(AuthTransientError("JWT expired")),
            self.guardian,
            on_retry=retries.append,
        )

        self.assertEqual(result, "ok")
        self.assertEqual(len(self.calls), 2)
        self.assertEqual(retries, [1])
        self.assertEqual(self.auth.refresh_calls, 1)

    async def test_second_auth_error_becomes_session_expired(self):
        with self.assertRaises(SessionExpired):
            await call_with_auth_retry(
                self._failing(AuthTransientError("JWT expired"), AuthTransientError("JWT expired")),
                self.guardian,
            )
        self.assertEqual(len(self.calls), 2)

    async def test_failed_refresh_stops_retrying(self):
        self.clock.advance(hours=2)
        self.auth.refresh_results.append(RemoteOperationError("refresh token revoked"))

        with self.assertRaises(SessionExpired):
            await call_with_auth_retry(self._failing(AuthTransientError("JWT expired")), self.guardian)
        self.assertEqual(len(self.calls), 1)
        self.assertIsNone(self.state.principal)

    async def test_other_errors_are_not_retried(self):
        with self.assertRaises(RemoteOperationError):
            await call_with_auth_retry(self._failing(RemoteOperationError("boom")), self.guardian)
        self.assertEqual(len(self.calls), 1)
        self.assertEqual(self.auth.refresh_calls, 0)

    async def test_zero_retries_fails_immediately(self):
        with self.assertRaises(SessionExpired):
            await call_with_auth_retry(
                self._failing(AuthTransientError("JWT expired")),
                self.guardian,
                max_retries=0,
            )
        self.assertEqual(self.auth.refresh_calls, 0)

    async def test_requires_a_principal(self):
        await self.guardian.sign_out()

        with self.assertRaises(SessionExpired):
            await call_with_auth_retry(self._failing(), self.guardian)
        self.assertEqual(self.calls, [])


if __name__ == "__main__":
    unittest.main()
