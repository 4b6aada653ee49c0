"""
backend/tests/test_odds_api_provider.py

Purpose:
    TheOddsAPI adapter: payload normalization, request building and error
    classification over an httpx mock transport.
"""

from __future__ import annotations

import copy
import sys
from datetime import datetime, timedelta, timezone

import httpx
import pytest

sys.path.insert(0, "backend")

from app.models.odds import MarketKind, Outcome, quoted_line
from app.providers.base import ProviderError, ProviderErrorKind
from app.providers.http_client import ResilientClient
from app.providers.odds_api import TheOddsAPIProvider, classify_error, parse_odds_response, split_sport_title

_EVENT = {
    "id": "evt-1",
    "sport_key": "basketball_nba",
    "sport_title": "Basketball (NBA)",
    "commence_time": "2026-01-10T18:00:00Z",
    "home_team": "Boston Celtics",
    "away_team": " New York Knicks ",
    "bookmakers": [
        {
            "key": "draftkings",
            "title": "DraftKings",
            "last_update": "2026-01-10T11:58:00Z",
            "markets": [
                {
                    "key": "h2h",
                    "outcomes": [
                        {"name": "New York Knicks", "price": 2.10},
                        {"name": "Boston Celtics", "price": 1.80},
                    ],
                },
                {
                    "key": "spreads",
                    "last_update": "2026-01-10T11:59:00Z",
                    "outcomes": [
                        {"name": "New York Knicks", "price": 1.91, "point": 3.5},
                        {"name": "Boston Celtics", "price": 1.91, "point": -3.5},
                    ],
                },
                {
                    "key": "totals",
                    "outcomes": [
                        {"name": "OVER", "price": 1.95, "point": 221.5},
                        {"name": "under", "price": "1.87", "point": "221.5"},
                    ],
                },
            ],
        },
        {
            "key": "fanduel",
            "markets": [
                {
                    "key": "h2h",
                    "outcomes": [
                        {"name": "New York Knicks", "price": 0.95},
                        {"name": "Boston Celtics", "price": 1.85},
                    ],
                },
            ],
        },
    ],
}


def _event(**overrides) -> dict:
    ev = copy.deepcopy(_EVENT)
    ev.update(overrides)
    return ev


def test_split_sport_title():
    assert split_sport_title("Basketball (NBA)") == ("Basketball", "NBA")
    assert split_sport_title("  EPL ") == ("EPL", "EPL")


def test_parse_maps_teams_markets_and_books():
    events = parse_odds_response([_event()], "basketball_nba")

    assert len(events) == 1
    ev = events[0]
    assert (ev.sport, ev.league) == ("Basketball", "NBA")
    assert (ev.team_a, ev.team_b) == ("New York Knicks", "Boston Celtics")
    assert ev.starts_at == datetime(2026, 1, 10, 18, 0, tzinfo=timezone.utc)
    assert ev.sport_key == "basketball_nba"
    assert ev.natural_key.team_a == "New York Knicks"

    ml = ev.lines_for(MarketKind.MONEYLINE)
    assert {(l.book, l.outcome, l.decimal) for l in ml} == {
        ("DraftKings", Outcome.A, 2.10),
        ("DraftKings", Outcome.B, 1.80),
        ("fanduel", Outcome.B, 1.85),
    }

    totals = ev.lines_for(MarketKind.TOTAL)
    assert {(l.outcome, l.decimal, l.line) for l in totals} == {
        (Outcome.OVER, 1.95, 221.5),
        (Outcome.UNDER, 1.87, 221.5),
    }


def test_spread_lines_share_team_a_handicap():
    ev = parse_odds_response([_event()], "basketball_nba")[0]
    spreads = {l.outcome: l for l in ev.lines_for(MarketKind.SPREAD)}

    assert spreads[Outcome.A].line == 3.5
    assert spreads[Outcome.B].line == 3.5
    assert quoted_line(MarketKind.SPREAD, Outcome.B, spreads[Outcome.B].line) == -3.5
    # Market-level timestamp wins over the bookmaker one.
    assert spreads[Outcome.A].provider_updated_at == datetime(2026, 1, 10, 11, 59, tzinfo=timezone.utc)


def test_sub_one_price_is_dropped():
    ev = parse_odds_response([_event()], "basketball_nba")[0]
    assert not [l for l in ev.lines if l.decimal < 1.0]
    assert not [l for l in ev.lines if l.book == "fanduel" and l.outcome is Outcome.A]


def test_draw_and_non_numeric_points_are_dropped():
    raw = _event(bookmakers=[{
        "key": "bet365",
        "title": "Bet365",
        "markets": [
            {"key": "h2h", "outcomes": [
                {"name": "New York Knicks", "price": 3.1},
                {"name": "Draw", "price": 3.4},
                {"name": "Boston Celtics", "price": 2.4},
            ]},
            {"key": "totals", "outcomes": [
                {"name": "Over", "price": 1.9, "point": "abc"},
                {"name": "Under", "price": 1.9},
            ]},
        ],
    }])
    ev = parse_odds_response([raw], "basketball_nba")[0]

    assert len(ev.lines) == 2
    assert {l.outcome for l in ev.lines} == {Outcome.A, Outcome.B}
    assert ev.lines_for(MarketKind.TOTAL) == []


def test_malformed_nested_entries_are_dropped_not_fatal():
    raw = _event(bookmakers=[
        None,
        "bet365",
        {"key": "pinnacle", "markets": "h2h"},
        {
            "key": "bovada",
            "title": "Bovada",
            "markets": [
                None,
                {"key": "h2h", "outcomes": [
                    "junk",
                    None,
                    {"name": "New York Knicks", "price": 2.05},
                    {"name": "Boston Celtics", "price": 1.90},
                ]},
                {"key": "totals", "outcomes": 7},
            ],
        },
    ])

    events = parse_odds_response([raw, None, "x"], "basketball_nba")

    assert len(events) == 1
    assert {(l.book, l.outcome, l.decimal) for l in events[0].lines} == {
        ("Bovada", Outcome.A, 2.05),
        ("Bovada", Outcome.B, 1.90),
    }

def test_event_without_valid_lines_is_dropped():
    raw = _event(bookmakers=[{
        "key": "bet365",
        "markets": [{"key": "h2h", "outcomes": [{"name": "Someone Else", "price": 2.0}]}],
    }])
    assert parse_odds_response([raw, {"id": "broken"}], "basketball_nba") == []


def test_unrequested_markets_are_ignored():
    events = parse_odds_response([_event()], "basketball_nba", [MarketKind.TOTAL])
    assert {l.market for l in events[0].lines} == {MarketKind.TOTAL}


def test_missing_title_falls_back_to_sport_key():
    raw = _event(sport_title=None)
    ev = parse_odds_response([raw], "soccer_epl")[0]
    assert ev.sport == ev.league == "Soccer Epl"


def test_classify_error():
    assert classify_error(429, "") is ProviderErrorKind.RATE_LIMITED
    assert classify_error(400, '{"error_code": "EXCEEDED_FREQ_LIMIT"}') is ProviderErrorKind.RATE_LIMITED
    assert classify_error(401, "") is ProviderErrorKind.QUOTA_EXHAUSTED
    assert classify_error(422, '{"error_code": "OUT_OF_USAGE_CREDITS"}') is ProviderErrorKind.QUOTA_EXHAUSTED
    assert classify_error(500, "boom") is ProviderErrorKind.OTHER


def _provider(handler) -> TheOddsAPIProvider:
    client = ResilientClient("test", max_retries=0, transport=httpx.MockTransport(handler))
    return TheOddsAPIProvider(api_key="secret", base_url="https://odds.test/v4", client=client)


@pytest.mark.asyncio
async def test_fetch_builds_request_and_tracks_usage():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[_event()],
            headers={"x-requests-used": "20", "x-requests-remaining": "480"},
        )

    provider = _provider(handler)
    start = datetime(2026, 1, 10, 12, 0, 30, 999, tzinfo=timezone.utc)
    events = await provider.fetch_odds(
        "basketball_nba",
        "us",
        [MarketKind.MONEYLINE, MarketKind.TOTAL],
        time_window=(start, start + timedelta(hours=12)),
        bookmakers=["draftkings", "fanduel"],
    )

    assert len(events) == 1
    assert {l.market for l in events[0].lines} == {MarketKind.MONEYLINE, MarketKind.TOTAL}
    request = seen[0]
    assert request.url.path == "/v4/sports/basketball_nba/odds"
    params = request.url.params
    assert params["apiKey"] == "secret"
    assert params["regions"] == "us"
    assert params["markets"] == "h2h,totals"
    assert params["oddsFormat"] == "decimal"
    assert params["bookmakers"] == "draftkings,fanduel"
    assert params["commenceTimeFrom"] == "2026-01-10T12:00:30Z"
    assert params["commenceTimeTo"] == "2026-01-11T00:00:30Z"
    assert provider.api_usage == {"requests_used": 20, "requests_remaining": 480}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,kind",
    [
        (429, {"message": "slow down"}, ProviderErrorKind.RATE_LIMITED),
        (401, {"message": "bad key"}, ProviderErrorKind.QUOTA_EXHAUSTED),
        (422, {"error_code": "OUT_OF_USAGE_CREDITS"}, ProviderErrorKind.QUOTA_EXHAUSTED),
        (500, {"message": "oops"}, ProviderErrorKind.OTHER),
    ],
)
async def test_fetch_raises_classified_errors(status, body, kind):
    provider = _provider(lambda request: httpx.Response(status, json=body))

    with pytest.raises(ProviderError) as exc_info:
        await provider.fetch_odds("basketball_nba", "us", [MarketKind.MONEYLINE])

    assert exc_info.value.status == status
    assert exc_info.value.kind is kind


@pytest.mark.asyncio
async def test_fetch_rejects_non_list_payload():
    provider = _provider(lambda request: httpx.Response(200, json={"message": "nope"}))

    with pytest.raises(ProviderError) as exc_info:
        await provider.fetch_odds("basketball_nba", "us", [MarketKind.MONEYLINE])
    assert exc_info.value.kind is ProviderErrorKind.OTHER


@pytest.mark.asyncio
async def test_transport_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = _provider(handler)
    with pytest.raises(ProviderError) as exc_info:
        await provider.fetch_odds("basketball_nba", "us", [MarketKind.MONEYLINE])
    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_resilient_client_retries_server_errors_but_not_rate_limits():
    calls = {"n": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503 if calls["n"] == 1 else 200, json=[])

    client = ResilientClient("test", max_retries=2, base_delay=0, transport=httpx.MockTransport(flaky))
    resp = await client.get("https://odds.test/v4/sports")
    assert resp.status_code == 200
    assert calls["n"] == 2

    limited = {"n": 0}

    def always_429(request: httpx.Request) -> httpx.Response:
        limited["n"] += 1
        return httpx.Response(429)

    client = ResilientClient("test", max_retries=2, base_delay=0, transport=httpx.MockTransport(always_429))
    resp = await client.get("https://odds.test/v4/sports")
    assert resp.status_code == 429
    assert limited["n"] == 1


@pytest.mark.asyncio
async def test_fetch_survives_malformed_bookmaker_entries():
    raw = _event()
    raw["bookmakers"] = [None, *raw["bookmakers"]]
    provider = _provider(lambda request: httpx.Response(200, json=[raw]))

    events = await provider.fetch_odds("basketball_nba", "us", [MarketKind.MONEYLINE])

    assert len(events) == 1
    assert {l.book for l in events[0].lines} == {"DraftKings", "fanduel"}
