"""
backend/app/services/ingest_service.py

Purpose:
    Writes normalized provider events into storage for one market kind:
    fingerprint check first, then event/market resolution and the odds
    upsert, then the fingerprint commit.

Dependencies:
    - app.services.odds_repository
    - app.services.fingerprint_service
    - app.monitoring.odds_metrics
"""

from __future__ import annotations

import logging
from typing import TypedDict

from app.models.odds import CanonicalEvent, MarketKind
from app.monitoring.odds_metrics import METRIC_FINGERPRINT_SKIPS, METRIC_ODDS_WRITTEN
from app.services.fingerprint_service import ChangeDetector, compute_best_price_hash, fingerprint_key
from app.services.odds_repository import OddsRepository

logger = logging.getLogger("arbscan.ingest_service")


class IngestStats(TypedDict):
    events: int
    odds: int
    unchanged: int


class IngestService:
    def __init__(self, repository: OddsRepository | None = None):
        self.repo = repository or OddsRepository()

    async def write_market(
        self,
        events: list[CanonicalEvent],
        market: MarketKind,
        detector: ChangeDetector | None = None,
        dry_run: bool = False,
    ) -> IngestStats:
        """Persist every event's ``market`` lines; unchanged events are skipped.

        In dry-run mode nothing is written and no fingerprint is committed;
        the returned counts are what a real run would have written.
        """
        stats: IngestStats = {"events": 0, "odds": 0, "unchanged": 0}

        if detector is not None:
            await detector.prefetch(fingerprint_key(ev.natural_key, market) for ev in events)

        for event in events:
            lines = event.lines_for(market)
            if not lines:
                continue

            key = fingerprint_key(event.natural_key, market)
            digest = compute_best_price_hash(lines, market)
            if detector is not None and detector.should_skip(key, digest):
                stats["unchanged"] += 1
                METRIC_FINGERPRINT_SKIPS.labels(market=market.value).inc()
                continue

            if dry_run:
                stats["events"] += 1
                stats["odds"] += len(lines)
                continue

            event_id = await self.repo.find_or_create_event(event.natural_key, sport_key=event.sport_key)
            handle = await self.repo.find_or_create_market(event_id, market)
            written = await self.repo.upsert_odds(handle, lines)
            if detector is not None:
                await detector.commit(key, digest)

            stats["events"] += 1
            stats["odds"] += written
            METRIC_ODDS_WRITTEN.labels(market=market.value).inc(written)

        logger.debug(
            "%s write: %d events, %d odds, %d unchanged%s",
            market.value, stats["events"], stats["odds"], stats["unchanged"],
            " (dry run)" if dry_run else "",
        )
        return stats
