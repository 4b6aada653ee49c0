"""
backend/tests/test_fingerprint_service.py

Purpose:
    Best-price fingerprints and the per-cycle change detector.
"""

from __future__ import annotations

import hashlib
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, "backend")

from app.models.odds import Line, MarketKind, NaturalKey, Outcome
from app.services.fingerprint_service import (
    ChangeDetector,
    FingerprintStore,
    compute_best_price_hash,
    fingerprint_key,
)
from app.services.state_store import InMemoryStateStore

ML = MarketKind.MONEYLINE


class _CountingStore(InMemoryStateStore):
    def __init__(self):
        super().__init__()
        self.get_many_calls: list[list[str]] = []

    async def get_many(self, keys):
        keys = list(keys)
        self.get_many_calls.append(keys)
        return await super().get_many(keys)


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode()).hexdigest()


def test_moneyline_hash_uses_best_price_per_side():
    lines = [
        Line("BookX", ML, Outcome.A, 2.10),
        Line("BookY", ML, Outcome.A, 2.05),
        Line("BookY", ML, Outcome.B, 1.90),
        Line("BookZ", MarketKind.TOTAL, Outcome.OVER, 5.0, 200.5),
    ]
    assert compute_best_price_hash(lines) == _sha1("A:2.1|B:1.9")


def test_moneyline_hash_with_missing_side():
    assert compute_best_price_hash([Line("BookX", ML, Outcome.A, 2.10)]) == _sha1("A:2.1|B:0.0")


def test_hash_ignores_non_best_price_moves():
    before = [Line("BookX", ML, Outcome.A, 2.10), Line("BookY", ML, Outcome.A, 1.95), Line("BookY", ML, Outcome.B, 1.9)]
    after = [Line("BookX", ML, Outcome.A, 2.10), Line("BookY", ML, Outcome.A, 2.00), Line("BookY", ML, Outcome.B, 1.9)]
    assert compute_best_price_hash(before) == compute_best_price_hash(after)


def test_lined_market_hash_changes_when_the_line_moves():
    spread = MarketKind.SPREAD
    at_35 = [Line("BookX", spread, Outcome.A, 1.91, -3.5), Line("BookY", spread, Outcome.B, 1.91, -3.5)]
    at_40 = [Line("BookX", spread, Outcome.A, 1.91, -4.0), Line("BookY", spread, Outcome.B, 1.91, -4.0)]
    assert compute_best_price_hash(at_35, spread) != compute_best_price_hash(at_40, spread)


def test_fingerprint_key_is_per_market():
    key = NaturalKey("Basketball", "NBA", " Knicks ", "Celtics", datetime(2026, 1, 10, 18, tzinfo=timezone.utc))
    assert fingerprint_key(key, ML) == "Knicks@Celtics:2026-01-10T18:00:00+00:00:NBA:Basketball:ML"
    assert fingerprint_key(key, ML) != fingerprint_key(key, MarketKind.TOTAL)


@pytest.mark.asyncio
async def test_change_detector_prefetches_once_and_skips_unchanged():
    backend = _CountingStore()
    store = FingerprintStore(backend)
    await store.upsert("k1", "aaa")

    detector = ChangeDetector(store)
    await detector.prefetch(["k1", "k2", "k1"])

    assert backend.get_many_calls == [["k1", "k2"]]
    assert detector.should_skip("k1", "aaa") is True
    assert detector.should_skip("k1", "bbb") is False
    assert detector.should_skip("k2", "aaa") is False

    await detector.commit("k2", "ccc")
    assert detector.should_skip("k2", "ccc") is True
    assert await store.batch_lookup(["k2"]) == {"k2": "ccc"}


@pytest.mark.asyncio
async def test_prefetch_with_no_keys_does_not_hit_the_store():
    backend = _CountingStore()
    await ChangeDetector(FingerprintStore(backend)).prefetch([])
    assert backend.get_many_calls == []
