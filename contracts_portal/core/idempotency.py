"""
Idempotency stores for webhook deliveries.

A store records `key -> processed_at` with a retention window. set_if_absent()
must be atomic: when two deliveries race on the same key, exactly one of them
gets True.

Each write may carry an owner token. release(key, owner) only removes a record
written by that owner, so a late cleanup can never erase a newer delivery's record.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from postgrest.exceptions import APIError
from pydantic import TypeAdapter
from supabase import Client

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

Clock = Callable[[], datetime]

_datetime_adapter = TypeAdapter(datetime)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyStoreError(Exception):
    """The store could not be reached or returned an unexpected error."""


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    processed_at: datetime
    expires_at: datetime
    owner: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class IdempotencyStore(Protocol):
    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        ...

    async def set_if_absent(self, key: str, now: datetime, ttl: timedelta, owner: Optional[str] = None) -> bool:
        """Record key unless a live record exists. True when this call recorded it."""
        ...

    async def release(self, key: str, owner: Optional[str] = None) -> None:
        """Remove key. With an owner, only a record written by that owner is removed."""
        ...


class InMemoryIdempotencyStore:
    """Single-process store. Only suitable for development and tests."""

    def __init__(self, clock: Clock = utcnow):
        self._records: Dict[str, IdempotencyRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        async with self._lock:
            record = self._records.get(key)
            if record is not None and record.is_expired(self._clock()):
                del self._records[key]
                return None
            return record

    async def set_if_absent(self, key: str, now: datetime, ttl: timedelta, owner: Optional[str] = None) -> bool:
        async with self._lock:
            existing = self._records.get(key)
            if existing is not None and not existing.is_expired(now):
                return False
            self._records[key] = IdempotencyRecord(key=key, processed_at=now, expires_at=now + ttl, owner=owner)
            self._purge(now)
            return True

    async def release(self, key: str, owner: Optional[str] = None) -> None:
        async with self._lock:
            record = self._records.get(key)
            if record is None or (owner is not None and record.owner != owner):
                return
            del self._records[key]

    def _purge(self, now: datetime) -> None:
        for key in [k for k, r in self._records.items() if r.is_expired(now)]:
            del self._records[key]

    def __len__(self) -> int:
        return len(self._records)


class SupabaseIdempotencyStore:
    """
    Postgres-backed store using the webhook_idempotency_keys table.

    Expected table:
    - key: text (primary key)
    - processed_at: timestamptz (not null)
    - expires_at: timestamptz (not null)
    - processed_by: text (nullable), owner token of the delivery that wrote the row

    The primary key gives compare-and-set semantics: a concurrent insert of the
    same key fails with a unique violation, which is reported as "already present".
    """

    def __init__(self, supabase: Client, table: str = "webhook_idempotency_keys", clock: Clock = utcnow):
        self.supabase = supabase
        self.table = table
        self._clock = clock

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        return await asyncio.to_thread(self._get, key)

    async def set_if_absent(self, key: str, now: datetime, ttl: timedelta, owner: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self._set_if_absent, key, now, ttl, owner)

    async def release(self, key: str, owner: Optional[str] = None) -> None:
        await asyncio.to_thread(self._release, key, owner)

    def _get(self, key: str) -> Optional[IdempotencyRecord]:
        try:
            result = self.supabase.table(self.table)\
                .select("key, processed_at, expires_at, processed_by")\
                .eq("key", key)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise IdempotencyStoreError(f"Failed to read idempotency key: {e}") from e
        if not result.data:
            return None
        row = result.data[0]
        record = IdempotencyRecord(
            key=row["key"],
            processed_at=_datetime_adapter.validate_python(row["processed_at"]),
            expires_at=_datetime_adapter.validate_python(row["expires_at"]),
            owner=row.get("processed_by"),
        )
        if record.is_expired(self._clock()):
            return None
        return record

    def _set_if_absent(self, key: str, now: datetime, ttl: timedelta, owner: Optional[str]) -> bool:
        try:
            # Clear an expired record so the key can be reused after the retention window
            self.supabase.table(self.table)\
                .delete()\
                .eq("key", key)\
                .lt("expires_at", now.isoformat())\
                .execute()
            self.supabase.table(self.table).insert({
                "key": key,
                "processed_at": now.isoformat(),
                "expires_at": (now + ttl).isoformat(),
                "processed_by": owner,
            }).execute()
            return True
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                return False
            raise IdempotencyStoreError(f"Failed to record idempotency key: {e.message}") from e
        except Exception as e:
            raise IdempotencyStoreError(f"Failed to record idempotency key: {e}") from e

    def _release(self, key: str, owner: Optional[str]) -> None:
        query = self.supabase.table(self.table).delete().eq("key", key)
        if owner is not None:
            query = query.eq("processed_by", owner)
        try:
            query.execute()
        except Exception as e:
            raise IdempotencyStoreError(f"Failed to release idempotency key: {e}") from e
