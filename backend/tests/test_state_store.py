"""
backend/tests/test_state_store.py

Purpose:
    Key-value state backends and the per-combination TTL gate.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, "backend")

from app.services import state_store as state_module
from app.services.state_store import InMemoryStateStore, MongoStateStore, TtlGate


class _Cursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    async def to_list(self, length: int | None = None):
        return self._docs[:length] if length is not None else list(self._docs)


class _StateCollection:
    def __init__(self):
        self.docs: dict[str, dict] = {}

    async def find_one(self, query: dict, projection: dict | None = None):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    def find(self, query: dict, projection: dict | None = None):
        keys = query["_id"]["$in"]
        return _Cursor([dict(self.docs[k]) for k in keys if k in self.docs])

    async def update_one(self, query: dict, update: dict, upsert: bool = False):
        doc = self.docs.setdefault(query["_id"], {"_id": query["_id"]})
        doc.update(update["$set"])


class _FakeDB:
    def __init__(self):
        self.collections: dict[str, _StateCollection] = {}

    def __getitem__(self, name: str) -> _StateCollection:
        return self.collections.setdefault(name, _StateCollection())


@pytest.mark.asyncio
async def test_ttl_gate_blocks_within_ttl_and_reopens_after(fixed_now):
    gate = TtlGate(InMemoryStateStore())
    key = "basketball_nba|us|h2h"

    assert await gate.try_acquire(key, 60, fixed_now) is True
    assert await gate.try_acquire(key, 60, fixed_now + timedelta(seconds=30)) is False
    assert await gate.try_acquire("basketball_nba|us|totals", 60, fixed_now) is True
    assert await gate.try_acquire(key, 60, fixed_now + timedelta(seconds=61)) is True
    assert await gate.last_fetched_at(key) == fixed_now + timedelta(seconds=61)


@pytest.mark.asyncio
async def test_zero_ttl_always_passes(fixed_now):
    gate = TtlGate(InMemoryStateStore())
    assert await gate.try_acquire("k", 0, fixed_now) is True
    assert await gate.try_acquire("k", 0, fixed_now) is True


@pytest.mark.asyncio
async def test_concurrent_acquire_admits_exactly_one(fixed_now):
    gate = TtlGate(InMemoryStateStore())
    results = await asyncio.gather(*(gate.try_acquire("k", 60, fixed_now) for _ in range(5)))
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_in_memory_store_get_many():
    store = InMemoryStateStore()
    await store.set("a", 1)
    await store.set("b", 2)
    assert await store.get_many(["a", "b", "c"]) == {"a": 1, "b": 2}
    assert await store.get("c") is None


@pytest.mark.asyncio
async def test_mongo_store_round_trips_through_collection(monkeypatch, fixed_now):
    fake_db = _FakeDB()
    monkeypatch.setattr(state_module._db, "db", fake_db, raising=False)

    store = MongoStateStore("ingest_state")
    await store.set("a", fixed_now.replace(tzinfo=None))
    await store.set("b", "digest")

    assert await store.get("b") == "digest"
    assert await store.get("missing") is None
    assert await store.get_many(["a", "b", "c"]) == {"a": fixed_now.replace(tzinfo=None), "b": "digest"}
    assert "updated_at" in fake_db.collections["ingest_state"].docs["a"]

    # Naive datetimes read back from Mongo are treated as UTC.
    gate = TtlGate(store)
    assert await gate.try_acquire("a", 60, fixed_now + timedelta(seconds=10)) is False
    assert await gate.last_fetched_at("a") == fixed_now


def test_build_state_store_honors_backend_setting(monkeypatch):
    monkeypatch.setattr(state_module.settings, "STATE_BACKEND", "mongo")
    assert isinstance(state_module.build_state_store("x"), MongoStateStore)
    monkeypatch.setattr(state_module.settings, "STATE_BACKEND", "memory")
    assert isinstance(state_module.build_state_store("x"), InMemoryStateStore)
