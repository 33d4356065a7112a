import asyncio
import unittest
from datetime import timedelta

from application.registry import ClientRegistry
from domain.models import Session
from domain.repositories import LinkedSession

from fakes import FakeClock, InMemoryLinkedSessionRepository, make_backend, make_session


class ClientRegistryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.balances = {"user-1": 10}
        self.backends = []
        self.linked = InMemoryLinkedSessionRepository()
        self.restorable = {}
        self.restore_gate = None
        self.registry = self._registry()

    def _registry(self) -> ClientRegistry:
        async def factory():
            backend = make_backend(self.clock, self.balances)
            backend.auth.add_account("ada@example.com", "secret", "user-1")
            backend.profiles.names["user-1"] = "Ada"
            backend.auth.restorable.update(self.restorable)
            backend.auth.restore_gate = self.restore_gate
            self.backends.append(backend)
            return backend

        return ClientRegistry(factory, self.linked, clock=self.clock)

    async def asyncTearDown(self) -> None:
        await self.registry.close()

    async def test_same_identity_gets_same_client(self):
        first = await self.registry.client_for("telegram", "42")
        second = await self.registry.client_for("telegram", "42")
        other = await self.registry.client_for("discord", "42")

        self.assertIs(first, second)
        self.assertIsNot(first, other)
        self.assertEqual(len(self.backends), 2)

    async def test_sign_in_persists_refresh_token(self):
        client = await self.registry.client_for("telegram", "42")

        await client.guardian.sign_in("ada@example.com", "secret")

        linked = self.linked.find("telegram", "42")
        self.assertEqual(linked.principal_id, "user-1")
        self.assertEqual(linked.refresh_token, client.state.session.refresh_token)

    async def test_refresh_updates_persisted_token(self):
        client = await self.registry.client_for("telegram", "42")
        await client.guardian.sign_in("ada@example.com", "secret")
        first_token = self.linked.find("telegram", "42").refresh_token

        await client.guardian.refresh()

        self.assertNotEqual(self.linked.find("telegram", "42").refresh_token, first_token)

    async def test_sign_out_clears_persisted_session(self):
        client = await self.registry.client_for("telegram", "42")
        await client.guardian.sign_in("ada@example.com", "secret")

        await client.guardian.sign_out()

        self.assertIsNone(self.linked.find("telegram", "42"))

    async def test_new_registry_restores_linked_session(self):
        session: Session = make_session("user-1", self.clock.now + timedelta(hours=1), serial=7)
        self.linked.save(LinkedSession("discord", "99", "user-1", session.refresh_token))

        self.restorable[session.refresh_token] = session

        registry = self._registry()
        try:
            client = await registry.client_for("discord", "99")
        finally:
            await registry.close()

        self.assertEqual(client.state.principal.id, "user-1")
        self.assertEqual(client.state.balance.moons, 10)

    async def test_stale_linked_session_is_cleared(self):
        self.linked.save(LinkedSession("discord", "99", "user-1", "revoked-token"))

        client = await self.registry.client_for("discord", "99")

        self.assertIsNone(client.state.principal)
        self.assertIsNone(self.linked.find("discord", "99"))

    async def test_concurrent_callers_wait_for_restore(self):
        session = make_session("user-1", self.clock.now + timedelta(hours=1), serial=3)
        self.linked.save(LinkedSession("telegram", "42", "user-1", session.refresh_token))
        self.restorable[session.refresh_token] = session
        self.restore_gate = asyncio.Event()

        first = asyncio.ensure_future(self.registry.client_for("telegram", "42"))
        second = asyncio.ensure_future(self.registry.client_for("telegram", "42"))
        for _ in range(5):
            await asyncio.sleep(0)

        self.assertFalse(first.done())
        self.assertFalse(second.done())
        self.assertIsNone(self.registry.get("telegram", "42"))

        self.restore_gate.set()
        one, two = await asyncio.gather(first, second)

        self.assertIs(one, two)
        self.assertEqual(one.state.principal.id, "user-1")
        self.assertEqual(len(self.backends), 1)

    async def test_failed_open_is_not_cached(self):
        attempts = []

        async def factory():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("backend unavailable")
            return make_backend(self.clock, self.balances)

        registry = ClientRegistry(factory, self.linked, clock=self.clock)
        try:
            with self.assertRaises(RuntimeError):
                await registry.client_for("telegram", "42")
            client = await registry.client_for("telegram", "42")
        finally:
            await registry.close()

        self.assertIsNone(client.state.principal)
        self.assertEqual(len(attempts), 2)

    async def test_forget_drops_the_client(self):
        client = await self.registry.client_for("telegram", "42")

        await self.registry.forget("telegram", "42")

        self.assertIsNone(self.registry.get("telegram", "42"))
        self.assertIsNot(await self.registry.client_for("telegram", "42"), client)


if __name__ == "__main__":
    unittest.main()
