"""
backend/app/routers/opportunities.py

Purpose:
    Read API for ranked two-way arbitrage opportunities and the equal-payout
    stake calculator.

Dependencies:
    - app.services.opportunity_service
    - app.services.arbitrage_service
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.config import settings, split_csv
from app.models.odds import MarketKind
from app.models.opportunity import (
    OpportunityListResponse,
    OpportunityResponse,
    StakeSplitResponse,
)
from app.services.arbitrage_service import stake_split
from app.services.odds_repository import OddsRepository, get_odds_repository
from app.services.opportunity_service import OpportunityFilters, query_opportunities

router = APIRouter(prefix="/api/opportunities", tags=["opportunities"])
logger = logging.getLogger("arbscan.routers.opportunities")


@router.get("", response_model=OpportunityListResponse)
async def list_opportunities(
    sports: str | None = Query(None),
    markets: str | None = Query(None, description="CSV of h2h,spreads,totals (or ML,SPREAD,TOTAL)"),
    bookmakers: str | None = Query(None),
    min_roi_percent: float | None = Query(None, alias="minRoiPercent", ge=0),
    freshness_minutes: float | None = Query(None, alias="freshnessMinutes", gt=0),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    repo: OddsRepository = Depends(get_odds_repository),
):
    try:
        market_kinds = list(dict.fromkeys(MarketKind.parse(m) for m in split_csv(markets)))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    filters = OpportunityFilters(
        sports=split_csv(sports),
        bookmakers=split_csv(bookmakers),
        limit=min(limit, settings.OPPORTUNITY_MAX_LIMIT),
        offset=offset,
    )
    if market_kinds:
        filters.markets = market_kinds
    if min_roi_percent is not None:
        filters.min_roi_percent = min_roi_percent
    if freshness_minutes is not None:
        filters.freshness_minutes = freshness_minutes

    page = await query_opportunities(filters, repo)
    return OpportunityListResponse(
        opportunities=[OpportunityResponse.from_opportunity(o) for o in page["opportunities"]],
        total=page["total"],
        summary=page["summary"],
        available_bookmakers=page["available_bookmakers"],
    )


@router.get("/stake-split", response_model=StakeSplitResponse)
async def get_stake_split(
    capital: float = Query(..., ge=0),
    price_a: float = Query(..., alias="priceA", gt=1.0),
    price_b: float = Query(..., alias="priceB", gt=1.0),
):
    try:
        split = stake_split(capital, price_a, price_b)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return StakeSplitResponse.from_split(split)
