"""Idempotency store implementations."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from contracts_portal.core.idempotency import (
    IdempotencyStoreError,
    InMemoryIdempotencyStore,
    SupabaseIdempotencyStore,
)
from tests.fakes import FakeSupabase

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
TTL = timedelta(hours=24)


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestInMemoryStore:
    async def test_first_set_wins(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        assert await store.set_if_absent("payments:k1", NOW, TTL) is True
        assert await store.set_if_absent("payments:k1", NOW, TTL) is False

        record = await store.get("payments:k1")
        assert record.processed_at == NOW
        assert record.expires_at == NOW + TTL

    async def test_missing_key(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        assert await store.get("payments:nope") is None

    async def test_expired_record_is_reusable(self):
        clock = MutableClock(NOW)
        store = InMemoryIdempotencyStore(clock=clock)
        await store.set_if_absent("k", NOW, TTL)

        clock.now = NOW + TTL + timedelta(seconds=1)
        assert await store.get("k") is None
        assert await store.set_if_absent("k", clock.now, TTL) is True

    async def test_release(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        await store.set_if_absent("k", NOW, TTL)
        await store.release("k")
        assert await store.get("k") is None
        assert await store.set_if_absent("k", NOW, TTL) is True

    async def test_release_with_owner_only_removes_own_record(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        await store.set_if_absent("k", NOW, TTL, owner="delivery-b")
        await store.release("k", owner="delivery-a")
        record = await store.get("k")
        assert record is not None
        assert record.owner == "delivery-b"

        await store.release("k", owner="delivery-b")
        assert await store.get("k") is None

    async def test_purges_expired_records(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        await store.set_if_absent("old", NOW - TTL * 2, TTL)
        await store.set_if_absent("new", NOW, TTL)
        assert len(store) == 1

    async def test_concurrent_set_has_one_winner(self):
        store = InMemoryIdempotencyStore(clock=lambda: NOW)
        results = await asyncio.gather(*[store.set_if_absent("k", NOW, TTL) for _ in range(10)])
        assert results.count(True) == 1


class TestSupabaseStore:
    @pytest.fixture
    def store(self, fake_supabase):
        return SupabaseIdempotencyStore(fake_supabase, clock=lambda: NOW)

    async def test_set_then_duplicate(self, store, fake_supabase):
        assert await store.set_if_absent("payments:k1", NOW, TTL) is True
        assert await store.set_if_absent("payments:k1", NOW, TTL) is False
        assert len(fake_supabase.tables["webhook_idempotency_keys"]) == 1

    async def test_get_parses_timestamps(self, store):
        await store.set_if_absent("payments:k1", NOW, TTL)
        record = await store.get("payments:k1")
        assert record.key == "payments:k1"
        assert record.processed_at == NOW
        assert record.expires_at == NOW + TTL

    async def test_get_ignores_expired_row(self, fake_supabase):
        fake_supabase.tables["webhook_idempotency_keys"] = [{
            "key": "k",
            "processed_at": (NOW - TTL * 2).isoformat(),
            "expires_at": (NOW - TTL).isoformat(),
        }]
        store = SupabaseIdempotencyStore(fake_supabase, clock=lambda: NOW)
        assert await store.get("k") is None

    async def test_expired_row_is_replaced(self, fake_supabase):
        fake_supabase.tables["webhook_idempotency_keys"] = [{
            "key": "k",
            "processed_at": (NOW - TTL * 2).isoformat(),
            "expires_at": (NOW - TTL).isoformat(),
        }]
        store = SupabaseIdempotencyStore(fake_supabase, clock=lambda: NOW)
        assert await store.set_if_absent("k", NOW, TTL) is True

        rows = fake_supabase.tables["webhook_idempotency_keys"]
        assert len(rows) == 1
        assert rows[0]["processed_at"] == NOW.isoformat()

    async def test_live_row_is_kept(self, store, fake_supabase):
        await store.set_if_absent("k", NOW, TTL)
        later = NOW + timedelta(minutes=5)
        assert await store.set_if_absent("k", later, TTL) is False
        assert fake_supabase.tables["webhook_idempotency_keys"][0]["processed_at"] == NOW.isoformat()

    async def test_release(self, store, fake_supabase):
        await store.set_if_absent("k", NOW, TTL)
        await store.release("k")
        assert fake_supabase.tables["webhook_idempotency_keys"] == []

    async def test_release_with_owner_only_removes_own_row(self, store, fake_supabase):
        await store.set_if_absent("k", NOW, TTL, owner="delivery-b")
        await store.release("k", owner="delivery-a")
        rows = fake_supabase.tables["webhook_idempotency_keys"]
        assert [r["processed_by"] for r in rows] == ["delivery-b"]
        assert (await store.get("k")).owner == "delivery-b"

        await store.release("k", owner="delivery-b")
        assert fake_supabase.tables["webhook_idempotency_keys"] == []

    async def test_errors_become_store_errors(self, store, fake_supabase):
        fake_supabase.fail = ConnectionError("connection refused")
        with pytest.raises(IdempotencyStoreError):
            await store.get("k")
        with pytest.raises(IdempotencyStoreError):
            await store.set_if_absent("k", NOW, TTL)
        with pytest.raises(IdempotencyStoreError):
            await store.release("k")

    async def test_other_api_errors_are_not_duplicates(self, store, fake_supabase):
        from postgrest.exceptions import APIError

        fake_supabase.fail = APIError({"message": "permission denied", "code": "42501", "details": None, "hint": None})
        with pytest.raises(IdempotencyStoreError):
            await store.set_if_absent("k", NOW, TTL)
