"""
backend/app/routers/ingest.py

Purpose:
    Ingestion triggers: the multi-sport batch (``/api/ingest-all``) and the
    single sport/market fetch (``/api/ingest-odds``). Partial failures come
    back as 200 with ``ok=false``; only a storage outage at batch start
    returns 503.

Dependencies:
    - app.services.batch_scheduler
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.config import settings, split_csv
from app.models.ingest import IngestResponse
from app.models.odds import MarketKind
from app.services.batch_scheduler import BatchRequest, BatchScheduler, get_batch_scheduler
from app.services.odds_repository import StorageUnavailableError

router = APIRouter(prefix="/api", tags=["ingest"])
logger = logging.getLogger("arbscan.routers.ingest")

_TRUTHY = {"1", "true", "yes", "on"}


def parse_markets(raw: str | None) -> list[MarketKind]:
    values = split_csv(raw) or settings.default_markets
    try:
        return list(dict.fromkeys(MarketKind.parse(v) for v in values))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _storage_down(exc: StorageUnavailableError) -> JSONResponse:
    logger.error("Ingest refused: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"ok": False, "errors": ["Database not reachable"]},
    )


@router.post("/ingest-all", response_model=IngestResponse)
async def ingest_all(
    sports: str | None = Query(None, description="CSV of provider sport keys"),
    markets: str | None = Query(None, description="CSV of h2h,spreads,totals"),
    bookmakers: str | None = Query(None, description="CSV of bookmaker keys"),
    hours: float | None = Query(None, gt=0, le=24 * 14),
    ttl: int | None = Query(None, ge=0),
    concurrency: int | None = Query(None, ge=1, le=10),
    dry_run: str | None = Query(None, alias="dryRun"),
    scheduler: BatchScheduler = Depends(get_batch_scheduler),
):
    request = BatchRequest(
        markets=parse_markets(markets),
        dry_run=(dry_run or "").strip().lower() in _TRUTHY,
    )
    if split_csv(sports):
        request.sports = split_csv(sports)
    if split_csv(bookmakers):
        request.bookmakers = split_csv(bookmakers)
    if hours is not None:
        request.hours = hours
    if ttl is not None:
        request.ttl_seconds = ttl
    if concurrency is not None:
        request.concurrency = concurrency

    try:
        result = await scheduler.run_batch(request)
    except StorageUnavailableError as exc:
        return _storage_down(exc)
    return IngestResponse.from_result(result)


@router.post("/ingest-odds", response_model=IngestResponse)
async def ingest_odds(
    sport: str = Query(..., min_length=1),
    region: str | None = Query(None),
    market: str = Query("h2h"),
    scheduler: BatchScheduler = Depends(get_batch_scheduler),
):
    """One sport, one market, no TTL gate."""
    request = BatchRequest(
        sports=[sport.strip()],
        markets=parse_markets(market)[:1],
        ttl_seconds=0,
        concurrency=1,
    )
    if region:
        request.region = region.strip()

    try:
        result = await scheduler.run_batch(request)
    except StorageUnavailableError as exc:
        return _storage_down(exc)
    return IngestResponse.from_result(result)
