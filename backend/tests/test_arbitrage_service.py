"""
backend/tests/test_arbitrage_service.py

Purpose:
    Two-way matcher, ROI math and stake split.
"""

from __future__ import annotations

import math
import sys

import pytest

sys.path.insert(0, "backend")

from app.models.odds import Line, MarketKind, Outcome
from app.services.arbitrage_service import (
    Leg,
    american_odds,
    find_two_way_arbs,
    has_two_way_arb,
    implied_sum,
    roi,
    roi_pct,
    stake_split,
)

ML = MarketKind.MONEYLINE
SPREAD = MarketKind.SPREAD
TOTAL = MarketKind.TOTAL


def _leg(book: str, outcome: Outcome, price: float, market: MarketKind = ML, line: float | None = None) -> Leg:
    return Leg(book=book, market=market, outcome=outcome, decimal=price, line=line)


def test_even_prices_at_two_books_yield_five_percent():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.10),
        _leg("BookY", Outcome.B, 2.10),
    ])

    assert len(pairs) == 1
    pair = pairs[0]
    assert pair.market is ML
    assert pair.line is None
    assert implied_sum(pair.leg_a.decimal, pair.leg_b.decimal) == pytest.approx(0.9524, abs=1e-4)
    assert pair.roi == pytest.approx(0.05, abs=1e-9)
    assert (pair.leg_a.book, pair.leg_b.book) == ("BookX", "BookY")


def test_same_book_pair_is_never_emitted():
    assert find_two_way_arbs([
        _leg("BookX", Outcome.A, 1.80),
        _leg("BookX", Outcome.B, 1.80),
    ]) == []
    # Would be a 10% edge, still a single book.
    assert find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.20),
        _leg("BookX", Outcome.B, 2.20),
    ]) == []


def test_same_book_best_prices_skip_group_even_with_worse_alternatives():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.30),
        _leg("BookY", Outcome.A, 2.00),
        _leg("BookX", Outcome.B, 2.30),
    ])
    assert pairs == []


def test_tied_best_price_at_another_book_is_used():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.20),
        _leg("BookZ", Outcome.A, 2.20),
        _leg("BookX", Outcome.B, 2.20),
    ])
    assert len(pairs) == 1
    assert pairs[0].leg_a.book == "BookZ"
    assert pairs[0].leg_b.book == "BookX"


def test_spread_lines_must_match_exactly():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 1.95, SPREAD, -3.5),
        _leg("BookY", Outcome.B, 1.95, SPREAD, -4.0),
    ])
    assert pairs == []

    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.10, SPREAD, -3.5),
        _leg("BookY", Outcome.B, 2.10, SPREAD, -3.5),
    ])
    assert len(pairs) == 1
    assert pairs[0].line == -3.5
    assert pairs[0].leg_a.line == pairs[0].leg_b.line


def test_totals_pair_over_with_under_on_the_same_line():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.OVER, 2.05, TOTAL, 221.5),
        _leg("BookY", Outcome.UNDER, 2.05, TOTAL, 221.5),
        _leg("BookZ", Outcome.UNDER, 3.00, TOTAL, 222.5),
    ])
    assert len(pairs) == 1
    pair = pairs[0]
    assert pair.market is TOTAL
    assert pair.line == 221.5
    assert pair.leg_a.outcome is Outcome.OVER
    assert pair.leg_b.outcome is Outcome.UNDER


def test_best_price_per_side_wins_and_results_sorted_by_roi():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, 2.05),
        _leg("BookW", Outcome.A, 2.25),
        _leg("BookY", Outcome.B, 2.10),
        _leg("BookX", Outcome.OVER, 2.02, TOTAL, 45.5),
        _leg("BookY", Outcome.UNDER, 2.02, TOTAL, 45.5),
    ])
    assert [p.market for p in pairs] == [ML, TOTAL]
    assert pairs[0].leg_a.book == "BookW"
    assert pairs[0].roi > pairs[1].roi > 0


def test_invalid_prices_are_never_selected():
    pairs = find_two_way_arbs([
        _leg("BookX", Outcome.A, math.inf),
        _leg("BookZ", Outcome.A, 1.0),
        _leg("BookW", Outcome.A, 2.10),
        _leg("BookY", Outcome.B, 2.10),
    ])
    assert len(pairs) == 1
    assert pairs[0].leg_a.book == "BookW"


@pytest.mark.parametrize("a", [1.2, 1.5, 1.9, 2.0, 2.1, 2.5, 4.0])
@pytest.mark.parametrize("b", [1.2, 1.5, 1.9, 2.0, 2.1, 2.5, 4.0])
def test_roi_positive_exactly_when_implied_sum_below_one(a, b):
    if implied_sum(a, b) < 1.0:
        assert roi_pct(a, b) > 0
    else:
        assert roi_pct(a, b) == 0


def test_roi_is_zero_for_invalid_prices():
    assert roi(1.0, 50.0) == 0.0
    assert roi(float("nan"), 3.0) == 0.0
    assert roi_pct(0.95, 30.0) == 0.0


@pytest.mark.parametrize("capital,a,b", [(100.0, 2.10, 2.10), (250.0, 2.50, 1.80), (1000.0, 3.40, 1.45)])
def test_stake_split_equalizes_payout(capital, a, b):
    split = stake_split(capital, a, b)

    assert split.stake_a + split.stake_b == pytest.approx(capital)
    assert split.stake_a * a == pytest.approx(split.stake_b * b)
    assert split.stake_a * a == pytest.approx(split.payout)
    assert split.profit == pytest.approx(split.payout - capital)
    assert split.roi == pytest.approx(1.0 / implied_sum(a, b) - 1.0)


def test_stake_split_profit_matches_roi_for_an_arb():
    split = stake_split(100.0, 2.10, 2.10)
    assert split.stake_a == pytest.approx(50.0)
    assert split.payout == pytest.approx(105.0)
    assert split.profit == pytest.approx(100.0 * roi(2.10, 2.10))


def test_stake_split_rejects_bad_input():
    with pytest.raises(ValueError):
        stake_split(-1.0, 2.0, 2.0)
    with pytest.raises(ValueError):
        stake_split(100.0, 1.0, 2.0)


def test_american_odds():
    assert american_odds(2.10) == "+110"
    assert american_odds(2.0) == "+100"
    assert american_odds(1.5) == "-200"
    assert american_odds(1.0) == ""


def test_has_two_way_arb_ignores_books_and_respects_market():
    lines = [
        Line("BookX", ML, Outcome.A, 2.10),
        Line("BookX", ML, Outcome.B, 2.10),
    ]
    assert has_two_way_arb(lines) is True
    assert has_two_way_arb(lines, ML) is True
    assert has_two_way_arb(lines, TOTAL) is False

    no_edge = [
        Line("BookX", TOTAL, Outcome.OVER, 1.91, 8.5),
        Line("BookY", TOTAL, Outcome.UNDER, 1.95, 8.5),
    ]
    assert has_two_way_arb(no_edge) is False
