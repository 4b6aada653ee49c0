"""
backend/app/services/batch_scheduler.py

Purpose:
    Batch odds ingestion over the sport x market cross-product. Each
    combination is TTL-gated, runs under a bounded worker pool and retries
    provider rate limits with exponential backoff. A quota-exhausted provider
    stops every combination that has not started yet; work already in flight
    finishes on its own.

    Per-combination notes:
        ttl-skip   fetched within the TTL, provider not called
        no-events  provider returned nothing inside the window
        no-arb     arb-only ingestion filtered every event out
        no-change  every event's best prices match the stored fingerprint
        skipped    dry run, or not started after quota exhaustion
        error      any failure inside the combination (message truncated)

Dependencies:
    - app.providers.odds_api
    - app.services.ingest_service
    - app.services.state_store
    - app.services.fingerprint_service
    - app.monitoring.odds_metrics
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, NotRequired, TypedDict

from pymongo.errors import PyMongoError

from app.config import settings
from app.models.odds import CanonicalEvent, MarketKind
from app.monitoring.odds_metrics import METRIC_BATCH_LATENCY, METRIC_COMBO_OUTCOMES, observe_latency
from app.providers.base import BaseProvider, ProviderError
from app.services.arbitrage_service import has_two_way_arb
from app.services.fingerprint_service import ChangeDetector, FingerprintStore, get_fingerprint_store
from app.services.ingest_service import IngestService
from app.services.odds_repository import OddsRepository, StorageUnavailableError
from app.services.state_store import TtlGate, get_ttl_gate
from app.utils import truncate, utcnow

logger = logging.getLogger("arbscan.batch_scheduler")

NOTE_TTL_SKIP = "ttl-skip"
NOTE_NO_EVENTS = "no-events"
NOTE_NO_ARB = "no-arb"
NOTE_NO_CHANGE = "no-change"
NOTE_SKIPPED = "skipped"
NOTE_ERROR = "error"


def _default_markets() -> list[MarketKind]:
    return [MarketKind.parse(m) for m in settings.default_markets]


@dataclass
class BatchRequest:
    sports: list[str] = field(default_factory=lambda: settings.default_sports)
    markets: list[MarketKind] = field(default_factory=_default_markets)
    bookmakers: list[str] = field(default_factory=lambda: settings.default_bookmakers)
    region: str = field(default_factory=lambda: settings.ODDS_API_REGION)
    hours: float = field(default_factory=lambda: settings.INGEST_DEFAULT_WINDOW_HOURS)
    ttl_seconds: float = field(default_factory=lambda: settings.INGEST_DEFAULT_TTL_SECONDS)
    concurrency: int = field(default_factory=lambda: settings.INGEST_DEFAULT_CONCURRENCY)
    dry_run: bool = False
    arb_only: bool = field(default_factory=lambda: settings.INGEST_ARB_ONLY)


class ComboDetail(TypedDict):
    sport: str
    region: str
    market: str
    events_processed: int
    odds_written: int
    note: NotRequired[str]
    error: NotRequired[str]


class BatchResult(TypedDict):
    ok: bool
    total_events: int
    total_odds: int
    errors: list[str]
    details: list[ComboDetail]
    combinations: int
    stopped_early: bool
    dry_run: bool
    window_from: datetime
    window_to: datetime


def combo_key(sport: str, region: str, market: MarketKind) -> str:
    return f"{sport}|{region}|{market.provider_key}"


def in_window(events: list[CanonicalEvent], start: datetime, end: datetime) -> list[CanonicalEvent]:
    return [ev for ev in events if start <= ev.starts_at <= end]


class BatchScheduler:
    def __init__(
        self,
        provider: BaseProvider | None = None,
        repository: OddsRepository | None = None,
        ttl_gate: TtlGate | None = None,
        fingerprint_store: FingerprintStore | None = None,
        *,
        backoff_base: float | None = None,
        max_retries: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if provider is None:
            from app.providers.odds_api import odds_provider
            provider = odds_provider
        self.provider = provider
        self.repo = repository or OddsRepository()
        self.ingest = IngestService(self.repo)
        self.ttl_gate = ttl_gate or get_ttl_gate()
        self.fingerprints = fingerprint_store or get_fingerprint_store()
        self.backoff_base = settings.INGEST_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.max_retries = settings.INGEST_MAX_RATE_LIMIT_RETRIES if max_retries is None else max_retries
        self._sleep = sleep

    async def run_batch(self, request: BatchRequest, now: datetime | None = None) -> BatchResult:
        if not await self.repo.ping():
            raise StorageUnavailableError("Storage unreachable; batch not started")

        now = now or utcnow()
        window = (now, now + timedelta(hours=request.hours))
        combos = [(sport, market) for sport in request.sports for market in request.markets]
        semaphore = asyncio.Semaphore(max(1, int(request.concurrency)))
        quota_exhausted = asyncio.Event()
        detector = ChangeDetector(self.fingerprints)

        logger.info(
            "Batch start: %d combinations (%d sports x %d markets), window %.1fh, ttl %ss, concurrency %d%s",
            len(combos), len(request.sports), len(request.markets), request.hours,
            request.ttl_seconds, request.concurrency, ", dry run" if request.dry_run else "",
        )

        with observe_latency(METRIC_BATCH_LATENCY):
            details = await asyncio.gather(*(
                self._run_combo(sport, market, request, window, semaphore, quota_exhausted, detector, now)
                for sport, market in combos
            ))

        errors = [
            f"{d['sport']}/{d['market']}: {d['error']}"
            for d in details if d.get("note") == NOTE_ERROR
        ]
        result: BatchResult = {
            "ok": not errors,
            "total_events": sum(d["events_processed"] for d in details),
            "total_odds": sum(d["odds_written"] for d in details),
            "errors": errors,
            "details": list(details),
            "combinations": len(combos),
            "stopped_early": quota_exhausted.is_set(),
            "dry_run": request.dry_run,
            "window_from": window[0],
            "window_to": window[1],
        }
        logger.info(
            "Batch done: %d events, %d odds, %d errors%s",
            result["total_events"], result["total_odds"], len(errors),
            " (stopped early: provider quota exhausted)" if result["stopped_early"] else "",
        )
        return result

    async def _run_combo(
        self,
        sport: str,
        market: MarketKind,
        request: BatchRequest,
        window: tuple[datetime, datetime],
        semaphore: asyncio.Semaphore,
        quota_exhausted: asyncio.Event,
        detector: ChangeDetector,
        now: datetime,
    ) -> ComboDetail:
        detail: ComboDetail = {
            "sport": sport,
            "region": request.region,
            "market": market.provider_key,
            "events_processed": 0,
            "odds_written": 0,
        }
        async with semaphore:
            try:
                if quota_exhausted.is_set():
                    detail["note"] = NOTE_SKIPPED
                elif not await self.ttl_gate.try_acquire(
                    combo_key(sport, request.region, market), request.ttl_seconds, now,
                ):
                    detail["note"] = NOTE_TTL_SKIP
                else:
                    await self._ingest_combo(detail, sport, market, request, window, quota_exhausted, detector)
            except Exception as exc:
                logger.exception("Combination %s/%s failed", sport, market.value)
                detail["events_processed"] = 0
                detail["odds_written"] = 0
                detail["note"] = NOTE_ERROR
                detail["error"] = truncate(str(exc) or type(exc).__name__)

        METRIC_COMBO_OUTCOMES.labels(market=market.value, note=detail.get("note", "ok")).inc()
        return detail

    async def _ingest_combo(
        self,
        detail: ComboDetail,
        sport: str,
        market: MarketKind,
        request: BatchRequest,
        window: tuple[datetime, datetime],
        quota_exhausted: asyncio.Event,
        detector: ChangeDetector,
    ) -> None:
        try:
            events = await self._fetch_with_backoff(sport, market, request, window)
        except ProviderError as exc:
            if exc.is_quota_exhausted:
                quota_exhausted.set()
                logger.error("Provider quota exhausted on %s/%s; stopping remaining work", sport, market.value)
            else:
                logger.warning("Fetch failed for %s/%s: %s", sport, market.value, exc)
            detail["note"] = NOTE_ERROR
            detail["error"] = truncate(str(exc))
            return

        events = in_window(events, *window)
        if not events:
            detail["note"] = NOTE_NO_EVENTS
            return

        if request.arb_only:
            events = [ev for ev in events if has_two_way_arb(ev.lines, market)]
            if not events:
                detail["note"] = NOTE_NO_ARB
                return

        try:
            stats = await self.ingest.write_market(events, market, detector, dry_run=request.dry_run)
        except PyMongoError as exc:
            logger.error("Storage write failed for %s/%s: %s", sport, market.value, exc)
            detail["note"] = NOTE_ERROR
            detail["error"] = truncate(str(exc))
            return

        detail["events_processed"] = stats["events"]
        detail["odds_written"] = stats["odds"]
        if stats["events"] == 0 and stats["unchanged"] > 0:
            detail["note"] = NOTE_NO_CHANGE
        elif request.dry_run:
            detail["note"] = NOTE_SKIPPED

    async def _fetch_with_backoff(
        self,
        sport: str,
        market: MarketKind,
        request: BatchRequest,
        window: tuple[datetime, datetime],
    ) -> list[CanonicalEvent]:
        attempt = 0
        while True:
            try:
                return await self.provider.fetch_odds(
                    sport,
                    request.region,
                    [market],
                    time_window=window,
                    bookmakers=request.bookmakers or None,
                )
            except ProviderError as exc:
                if not exc.is_rate_limited or attempt >= self.max_retries:
                    raise
                delay = self.backoff_base * 2 ** attempt
                attempt += 1
                logger.warning(
                    "Rate limited on %s/%s, retry %d/%d in %.2fs",
                    sport, market.value, attempt, self.max_retries, delay,
                )
                await self._sleep(delay)


_scheduler: BatchScheduler | None = None


def get_batch_scheduler() -> BatchScheduler:
    """Process-wide scheduler sharing the TTL gate and fingerprint store."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BatchScheduler()
    return _scheduler
