"""
backend/app/services/opportunity_service.py

Purpose:
    Read side of the arbitrage pipeline. Loads upcoming events with their
    stored quotes, drops stale quotes and non-allowed books before matching,
    runs the two-way matcher per event and returns a ranked, paginated page
    of opportunities for the presentation layer.

Dependencies:
    - app.services.odds_repository
    - app.services.arbitrage_service
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypedDict

from app.config import settings
from app.models.odds import MarketKind, Outcome, StoredEvent, quoted_line
from app.monitoring.odds_metrics import METRIC_OPPORTUNITIES
from app.services.arbitrage_service import ArbPair, Leg, american_odds, find_two_way_arbs, line_key
from app.services.odds_repository import OddsRepository
from app.utils import utcnow

logger = logging.getLogger("arbscan.opportunity_service")


@dataclass
class OpportunityFilters:
    sports: list[str] = field(default_factory=list)
    markets: list[MarketKind] = field(default_factory=lambda: list(MarketKind))
    bookmakers: list[str] = field(default_factory=list)
    min_roi_percent: float = field(default_factory=lambda: settings.OPPORTUNITY_DEFAULT_MIN_ROI_PERCENT)
    freshness_minutes: float = field(default_factory=lambda: settings.OPPORTUNITY_DEFAULT_FRESHNESS_MINUTES)
    limit: int = 50
    offset: int = 0
    horizon_hours: float = field(default_factory=lambda: settings.OPPORTUNITY_HORIZON_HOURS)


@dataclass(frozen=True)
class OpportunityLeg:
    book: str
    outcome: Outcome
    decimal: float
    american: str
    line: float | None = None

    @classmethod
    def from_leg(cls, leg: Leg) -> "OpportunityLeg":
        return cls(
            book=leg.book,
            outcome=leg.outcome,
            decimal=leg.decimal,
            american=american_odds(leg.decimal),
            line=quoted_line(leg.market, leg.outcome, leg.line),
        )


@dataclass(frozen=True)
class RankedOpportunity:
    id: str
    event_id: str
    sport: str
    league: str
    starts_at: datetime
    team_a: str
    team_b: str
    market: MarketKind
    line: float | None
    roi_percent: float
    legs: tuple[OpportunityLeg, OpportunityLeg]


class OpportunityPage(TypedDict):
    opportunities: list[RankedOpportunity]
    total: int
    summary: dict[str, Any]
    available_bookmakers: list[str]


def opportunity_id(event_id: str, pair: ArbPair) -> str:
    return f"{event_id}:{pair.market.value}:{line_key(pair.market, pair.line)}"


def _sort_key(opp: RankedOpportunity) -> tuple:
    return (
        -opp.roi_percent,
        opp.event_id,
        opp.market.value,
        float("-inf") if opp.line is None else opp.line,
        opp.id,
    )


def rank_event(
    event: StoredEvent,
    now: datetime,
    freshness: timedelta,
    allowed_books: set[str] | None,
    markets: set[MarketKind],
    counters: dict[str, int],
    seen_books: set[str],
) -> list[RankedOpportunity]:
    """Match one stored event. ``allowed_books`` holds lower-cased names; None allows all."""
    legs: list[Leg] = []
    for quote in event.quotes:
        if quote.market not in markets:
            continue
        if now - quote.last_seen_at > freshness:
            counters["stale_quotes_dropped"] += 1
            continue
        seen_books.add(quote.book)
        if allowed_books is not None and quote.book.lower() not in allowed_books:
            continue
        legs.append(Leg(quote.book, quote.market, quote.outcome, quote.decimal, quote.line))
    counters["quotes_considered"] += len(legs)

    out = []
    for pair in find_two_way_arbs(legs):
        out.append(
            RankedOpportunity(
                id=opportunity_id(event.id, pair),
                event_id=event.id,
                sport=event.sport,
                league=event.league,
                starts_at=event.starts_at,
                team_a=event.team_a,
                team_b=event.team_b,
                market=pair.market,
                line=pair.line,
                roi_percent=pair.roi_percent,
                legs=(OpportunityLeg.from_leg(pair.leg_a), OpportunityLeg.from_leg(pair.leg_b)),
            )
        )
    return out


async def query_opportunities(
    filters: OpportunityFilters,
    repository: OddsRepository | None = None,
    now: datetime | None = None,
) -> OpportunityPage:
    repo = repository or OddsRepository()
    now = now or utcnow()
    markets = set(filters.markets or MarketKind)
    freshness = timedelta(minutes=max(0.0, float(filters.freshness_minutes)))
    allowed_books = {b.strip().lower() for b in filters.bookmakers if b.strip()} or None
    limit = max(1, min(int(filters.limit), settings.OPPORTUNITY_MAX_LIMIT))
    offset = max(0, int(filters.offset))

    events = await repo.query_events(
        now,
        now + timedelta(hours=filters.horizon_hours),
        sports=filters.sports or None,
        markets=sorted(markets, key=lambda m: m.value),
    )

    counters = {"quotes_considered": 0, "stale_quotes_dropped": 0}
    seen_books: set[str] = set()
    found: list[RankedOpportunity] = []
    for event in events:
        found.extend(rank_event(event, now, freshness, allowed_books, markets, counters, seen_books))

    matching = [opp for opp in found if opp.roi_percent >= filters.min_roi_percent]
    matching.sort(key=_sort_key)
    page = matching[offset:offset + limit]

    for opp in page:
        METRIC_OPPORTUNITIES.labels(market=opp.market.value).inc()

    by_market: dict[str, int] = {}
    for opp in matching:
        by_market[opp.market.value] = by_market.get(opp.market.value, 0) + 1

    summary = {
        "events_scanned": len(events),
        "quotes_considered": counters["quotes_considered"],
        "stale_quotes_dropped": counters["stale_quotes_dropped"],
        "opportunities_found": len(found),
        "opportunities_matching": len(matching),
        "returned": len(page),
        "by_market": by_market,
        "best_roi_percent": matching[0].roi_percent if matching else 0.0,
        "filters": {
            "sports": filters.sports,
            "markets": [m.value for m in filters.markets],
            "bookmakers": filters.bookmakers,
            "min_roi_percent": filters.min_roi_percent,
            "freshness_minutes": filters.freshness_minutes,
            "limit": limit,
            "offset": offset,
        },
        "generated_at": now,
    }
    logger.debug(
        "Opportunities: %d events, %d found, %d above %.2f%%",
        len(events), len(found), len(matching), filters.min_roi_percent,
    )
    return {
        "opportunities": page,
        "total": len(matching),
        "summary": summary,
        "available_bookmakers": sorted(seen_books, key=str.lower),
    }
