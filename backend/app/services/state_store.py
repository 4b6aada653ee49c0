"""
backend/app/services/state_store.py

Purpose:
    Small async key-value stores for ingest state that must survive between
    batch cycles: the per-combination TTL map and the odds fingerprints.
    The in-memory store is process-local; the MongoDB store shares state
    across instances and restarts.

Dependencies:
    - app.database
    - app.utils
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Iterable, Protocol

import app.database as _db
from app.config import settings
from app.utils import ensure_utc, utcnow


class StateStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, key: str, value: Any) -> None: ...


class InMemoryStateStore:
    """dict-backed store; a single lock serializes access from concurrent tasks."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            return self._data.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        async with self._lock:
            return {k: self._data[k] for k in keys if k in self._data}

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = value


class MongoStateStore:
    """One document per key: {_id: key, value, updated_at}."""

    def __init__(self, collection: str) -> None:
        self._collection = collection

    @property
    def _coll(self):
        return _db.db[self._collection]

    async def get(self, key: str) -> Any | None:
        doc = await self._coll.find_one({"_id": key}, {"value": 1})
        return doc.get("value") if doc else None

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        docs = await self._coll.find({"_id": {"$in": keys}}, {"value": 1}).to_list(length=len(keys))
        return {doc["_id"]: doc.get("value") for doc in docs}

    async def set(self, key: str, value: Any) -> None:
        await self._coll.update_one(
            {"_id": key},
            {"$set": {"value": value, "updated_at": utcnow()}},
            upsert=True,
        )


def build_state_store(collection: str) -> StateStore:
    if settings.STATE_BACKEND.strip().lower() == "mongo":
        return MongoStateStore(collection)
    return InMemoryStateStore()


class TtlGate:
    """Per-key "fetched recently" gate.

    ``try_acquire`` checks and marks in one step so two concurrent callers
    can never both pass for the same key within the TTL.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def try_acquire(self, key: str, ttl_seconds: float, now: datetime | None = None) -> bool:
        now = now or utcnow()
        async with self._lock:
            if ttl_seconds > 0:
                last = await self._store.get(key)
                if last is not None and (now - ensure_utc(last)).total_seconds() < ttl_seconds:
                    return False
            await self._store.set(key, now)
            return True

    async def last_fetched_at(self, key: str) -> datetime | None:
        last = await self._store.get(key)
        return ensure_utc(last) if last is not None else None


_ttl_gate: TtlGate | None = None


def get_ttl_gate() -> TtlGate:
    """Process-wide TTL gate shared by every batch run."""
    global _ttl_gate
    if _ttl_gate is None:
        _ttl_gate = TtlGate(build_state_store("ingest_state"))
    return _ttl_gate
