"""
backend/app/services/arbitrage_service.py

Purpose:
    Two-way arbitrage math: ROI of a price pair, cross-book matching of legs
    grouped by (market, line), the equal-payout stake split, and a cheap
    pre-check the batch scheduler uses to shortlist events.

    Everything here is synchronous and CPU-only.

Dependencies:
    - app.models.odds
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from app.models.odds import Line, MarketKind, Outcome, is_valid_price

ML_LINE_KEY = "ML"


@dataclass(frozen=True)
class Leg:
    book: str
    market: MarketKind
    outcome: Outcome
    decimal: float
    line: float | None = None

    @classmethod
    def from_line(cls, line: Line) -> "Leg":
        return cls(line.book, line.market, line.outcome, line.decimal, line.line)


@dataclass(frozen=True)
class ArbPair:
    market: MarketKind
    line: float | None
    leg_a: Leg  # A or OVER side
    leg_b: Leg  # B or UNDER side
    roi: float

    @property
    def roi_percent(self) -> float:
        return self.roi * 100.0


@dataclass(frozen=True)
class StakeSplit:
    capital: float
    stake_a: float
    stake_b: float
    payout: float
    profit: float
    roi: float


def line_key(market: MarketKind, line: float | None) -> str | float | None:
    """Grouping key: moneyline quotes share one group, lined markets group by exact value."""
    if market is MarketKind.MONEYLINE:
        return ML_LINE_KEY
    return line


def implied_sum(a: float, b: float) -> float:
    return 1.0 / a + 1.0 / b


def roi(a: float, b: float) -> float:
    """ROI on total capital for decimal prices a and b; 0.0 when no guaranteed profit exists."""
    if not (is_valid_price(a) and is_valid_price(b)):
        return 0.0
    k = implied_sum(a, b)
    if k >= 1.0:
        return 0.0
    return 1.0 / k - 1.0


def roi_pct(a: float, b: float) -> float:
    return roi(a, b) * 100.0


def stake_split(capital: float, price_a: float, price_b: float) -> StakeSplit:
    """Split capital so both outcomes pay out the same amount.

    stake_i = C * (1/p_i) / k with k = 1/p_a + 1/p_b, payout C/k either way.
    This equalizes payout; it is not a risk-weighted or Kelly allocation.
    """
    if capital < 0:
        raise ValueError("capital must be non-negative")
    if not (is_valid_price(price_a) and is_valid_price(price_b)):
        raise ValueError("decimal prices must be finite and greater than 1.0")
    k = implied_sum(price_a, price_b)
    stake_a = capital * (1.0 / price_a) / k
    stake_b = capital * (1.0 / price_b) / k
    payout = capital / k
    return StakeSplit(
        capital=capital,
        stake_a=stake_a,
        stake_b=stake_b,
        payout=payout,
        profit=payout - capital,
        roi=1.0 / k - 1.0,
    )


def american_odds(decimal: float) -> str:
    """Decimal to American odds for display ("+110", "-120")."""
    if not is_valid_price(decimal):
        return ""
    if decimal >= 2.0:
        return f"+{round((decimal - 1.0) * 100)}"
    return f"{round(-100 / (decimal - 1.0))}"


def _group_by_market_line(legs: Iterable[Leg]) -> dict[tuple[MarketKind, str | float | None], list[Leg]]:
    groups: dict[tuple[MarketKind, str | float | None], list[Leg]] = defaultdict(list)
    for leg in legs:
        if not is_valid_price(leg.decimal):
            continue
        if leg.outcome not in leg.market.sides:
            continue
        if leg.market.has_line and leg.line is None:
            continue
        groups[(leg.market, line_key(leg.market, leg.line))].append(leg)
    return groups


def _best_candidates(side_legs: list[Leg]) -> list[Leg]:
    """All legs sharing the maximum price, ordered by book name."""
    if not side_legs:
        return []
    best = max(leg.decimal for leg in side_legs)
    return sorted((leg for leg in side_legs if leg.decimal == best), key=lambda leg: leg.book)


def _pick_cross_book(best_x: list[Leg], best_y: list[Leg]) -> tuple[Leg, Leg] | None:
    for leg_x in best_x:
        for leg_y in best_y:
            if leg_x.book != leg_y.book:
                return leg_x, leg_y
    return None


def find_two_way_arbs(legs: Iterable[Leg]) -> list[ArbPair]:
    """Match the best opposing prices per (market, line) across books.

    Legs pair only when the market matches and, for spreads/totals, the line
    values are exactly equal. When both best prices sit at the same book the
    group yields nothing, unless another book quotes the same best price.
    Result is sorted by ROI, highest first; only strictly positive ROI is kept.
    """
    pairs: list[ArbPair] = []
    for (market, key), group in _group_by_market_line(legs).items():
        side_x, side_y = market.sides
        best_x = _best_candidates([leg for leg in group if leg.outcome is side_x])
        best_y = _best_candidates([leg for leg in group if leg.outcome is side_y])
        if not best_x or not best_y:
            continue
        picked = _pick_cross_book(best_x, best_y)
        if picked is None:
            continue
        leg_x, leg_y = picked
        edge = roi(leg_x.decimal, leg_y.decimal)
        if edge <= 0.0:
            continue
        pairs.append(
            ArbPair(
                market=market,
                line=None if market is MarketKind.MONEYLINE else key,
                leg_a=leg_x,
                leg_b=leg_y,
                roi=edge,
            )
        )

    pairs.sort(key=lambda p: (-p.roi, p.market.value, _sortable_line(p.line), p.leg_a.book, p.leg_b.book))
    return pairs


def _sortable_line(line: float | None) -> float:
    return float("-inf") if line is None else line


def has_two_way_arb(lines: Iterable[Line], market: MarketKind | None = None) -> bool:
    """Cheap shortlist test: best price per side per (market, line) sums below 1.

    Ignores book identity; the authoritative check happens at query time in
    find_two_way_arbs against stored data.
    """
    best: dict[tuple[MarketKind, str | float | None, Outcome], float] = {}
    for line in lines:
        if market is not None and line.market is not market:
            continue
        if not is_valid_price(line.decimal):
            continue
        slot = (line.market, line_key(line.market, line.line), line.outcome)
        if line.decimal > best.get(slot, 0.0):
            best[slot] = line.decimal

    for (kind, key, outcome), price in best.items():
        side_x, side_y = kind.sides
        if outcome is not side_x:
            continue
        other = best.get((kind, key, side_y))
        if other and implied_sum(price, other) < 1.0:
            return True
    return False
