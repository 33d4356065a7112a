from __future__ import annotations

from supabase import AsyncClient, acreate_client

from domain.repositories import Backend

from .auth_provider import SupabaseAuthProvider
from .backstory_store import SupabaseBackstoryStore
from .env_store import SupabaseEnvStore
from .ledger import SupabaseLedger
from .memory_store import SupabaseMemoryStore
from .profile_store import SupabaseProfileStore
from .record_store import SupabaseRecordStore


def backend_for_client(client: AsyncClient) -> Backend:
    return Backend(
        auth=SupabaseAuthProvider(client),
        ledger=SupabaseLedger(client),
        records=SupabaseRecordStore(client),
        profiles=SupabaseProfileStore(client),
        envs=SupabaseEnvStore(client),
        memories=SupabaseMemoryStore(client),
        backstory=SupabaseBackstoryStore(client),
    )


async def create_backend(url: str, key: str) -> Backend:
    """
    Create a fresh Supabase client and wrap it as a `Backend`.

    Each call yields an independent auth state; hosts serving several
    users create one backend per user.
    """

    client = await acreate_client(url, key)
    return backend_for_client(client)
