"""Odds fingerprints: skip storage writes when an event's best prices did not move."""

import hashlib
import logging
from typing import Iterable

from app.models.odds import Line, MarketKind, NaturalKey, is_valid_price
from app.services.state_store import StateStore, build_state_store

logger = logging.getLogger("arbscan.fingerprint_service")


def fingerprint_key(natural_key: NaturalKey, market: MarketKind) -> str:
    return f"{natural_key.as_string()}:{market.value}"


def _best_by_side(lines: Iterable[Line], market: MarketKind) -> dict:
    best: dict = {}
    for line in lines:
        if line.market is not market or not is_valid_price(line.decimal):
            continue
        slot = (line.line, line.outcome)
        best[slot] = max(best.get(slot, 0.0), line.decimal)
    return best


def compute_best_price_hash(lines: Iterable[Line], market: MarketKind = MarketKind.MONEYLINE) -> str:
    """sha1 of the best price per side.

    Moneyline digests ``"A:<bestA>|B:<bestB>"`` (0.0 for a side nobody quotes).
    Spread/total digests the same shape per line value, sorted, so a moved
    line is never mistaken for an unchanged price.
    """
    best = _best_by_side(lines, market)
    side_x, side_y = market.sides
    if market is MarketKind.MONEYLINE:
        payload = f"A:{best.get((None, side_x), 0.0)}|B:{best.get((None, side_y), 0.0)}"
    else:
        parts = []
        for value in sorted({slot[0] for slot in best}):
            parts.append(
                f"{value}/{side_x.value}:{best.get((value, side_x), 0.0)}"
                f"|{side_y.value}:{best.get((value, side_y), 0.0)}"
            )
        payload = ";".join(parts)
    return hashlib.sha1(payload.encode()).hexdigest()


class FingerprintStore:
    """batch_lookup/upsert contract over any StateStore backend."""

    def __init__(self, backend: StateStore) -> None:
        self._backend = backend

    async def batch_lookup(self, keys: Iterable[str]) -> dict[str, str]:
        found = await self._backend.get_many(list(dict.fromkeys(keys)))
        return {k: v for k, v in found.items() if isinstance(v, str)}

    async def upsert(self, key: str, digest: str) -> None:
        await self._backend.set(key, digest)


class ChangeDetector:
    """Per-cycle view of stored fingerprints.

    prefetch() does the single batched read; should_skip() is then answered
    locally and commit() writes through to the store.
    """

    def __init__(self, store: FingerprintStore) -> None:
        self._store = store
        self._known: dict[str, str] = {}

    async def prefetch(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        self._known.update(await self._store.batch_lookup(keys))

    def should_skip(self, key: str, digest: str) -> bool:
        previous = self._known.get(key)
        return previous is not None and previous == digest

    async def commit(self, key: str, digest: str) -> None:
        logger.debug("Fingerprint %s -> %s", key, digest[:10])
        await self._store.upsert(key, digest)
        self._known[key] = digest


_fingerprint_store: FingerprintStore | None = None


def get_fingerprint_store() -> FingerprintStore:
    global _fingerprint_store
    if _fingerprint_store is None:
        _fingerprint_store = FingerprintStore(build_state_store("odds_fingerprints"))
    return _fingerprint_store
