import logging
import re
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from app.config import settings
from app.models.odds import CanonicalEvent, Line, MarketKind, Outcome, is_valid_price
from app.monitoring.odds_metrics import METRIC_LINES_DROPPED, METRIC_PROVIDER_REQUESTS
from app.providers.base import BaseProvider, ProviderError, ProviderErrorKind
from app.providers.http_client import ResilientClient
from app.utils import format_provider_ts, parse_utc, to_finite_float, truncate

logger = logging.getLogger("arbscan.odds_api")

# Error tokens TheOddsAPI puts in the JSON body next to the HTTP status.
RATE_LIMIT_TOKEN = "EXCEEDED_FREQ_LIMIT"
QUOTA_TOKEN = "OUT_OF_USAGE_CREDITS"

_TITLE_RE = re.compile(r"^(.*?)\s*\((.*?)\)\s*$")


def split_sport_title(title: str) -> tuple[str, str]:
    """Split "Basketball (NBA)" into ("Basketball", "NBA"); a plain title is both sport and league."""
    match = _TITLE_RE.match(title or "")
    if match:
        return match.group(1).strip(), match.group(2).strip()
    title = (title or "").strip()
    return title, title


def _title_case(sport_key: str) -> str:
    return sport_key.replace("_", " ").title()


def classify_error(status: int | None, body: str) -> ProviderErrorKind:
    if status == 429 or RATE_LIMIT_TOKEN in body:
        return ProviderErrorKind.RATE_LIMITED
    if status == 401 or QUOTA_TOKEN in body:
        return ProviderErrorKind.QUOTA_EXHAUSTED
    return ProviderErrorKind.OTHER


def _entries(value: Any) -> list:
    return value if isinstance(value, list) else []


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return parse_utc(str(value))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Per-market outcome parsers. Each returns (outcome, line) or a drop reason.
# ---------------------------------------------------------------------------

_Parsed = tuple[Outcome, Optional[float]] | str


def _team_side(name: str, team_a: str, team_b: str) -> Outcome | None:
    if name == team_a:
        return Outcome.A
    if name == team_b:
        return Outcome.B
    return None


def _parse_moneyline(raw: dict, team_a: str, team_b: str) -> _Parsed:
    side = _team_side(str(raw.get("name") or "").strip(), team_a, team_b)
    if side is None:
        return "unmatched_outcome"
    return side, None


def _parse_spread(raw: dict, team_a: str, team_b: str) -> _Parsed:
    side = _team_side(str(raw.get("name") or "").strip(), team_a, team_b)
    if side is None:
        return "unmatched_outcome"
    point = to_finite_float(raw.get("point"))
    if point is None:
        return "invalid_line"
    # Stored spread lines are team A's handicap on both sides, so a book's
    # "away -3.5 / home +3.5" quote lands on the single line -3.5.
    if side is Outcome.B:
        point = 0.0 - point
    return side, point


def _parse_total(raw: dict, _team_a: str, _team_b: str) -> _Parsed:
    name = str(raw.get("name") or "").strip().lower()
    if name == "over":
        side = Outcome.OVER
    elif name == "under":
        side = Outcome.UNDER
    else:
        return "unmatched_outcome"
    point = to_finite_float(raw.get("point"))
    if point is None:
        return "invalid_line"
    return side, point


_MARKET_PARSERS: dict[MarketKind, Callable[[dict, str, str], _Parsed]] = {
    MarketKind.MONEYLINE: _parse_moneyline,
    MarketKind.SPREAD: _parse_spread,
    MarketKind.TOTAL: _parse_total,
}

_BY_PROVIDER_KEY = {kind.provider_key: kind for kind in MarketKind}


def parse_odds_response(
    raw: list[dict[str, Any]],
    sport_key: str,
    markets: list[MarketKind] | None = None,
) -> list[CanonicalEvent]:
    """Normalize TheOddsAPI ``/odds`` payload into canonical events.

    Malformed quotes are dropped one by one; an event left without any valid
    line is dropped as a whole.
    """
    wanted = set(markets) if markets else set(MarketKind)
    events: list[CanonicalEvent] = []

    for ev in raw:
        if not isinstance(ev, dict):
            continue
        starts_at = _parse_ts(ev.get("commence_time"))
        team_a = str(ev.get("away_team") or "").strip()
        team_b = str(ev.get("home_team") or "").strip()
        if starts_at is None or not team_a or not team_b:
            logger.debug("Skipping malformed event %s", ev.get("id"))
            continue

        sport, league = split_sport_title(ev.get("sport_title") or _title_case(sport_key))
        lines: list[Line] = []

        for book in _entries(ev.get("bookmakers")):
            if not isinstance(book, dict):
                METRIC_LINES_DROPPED.labels(market="unknown", reason="malformed_bookmaker").inc()
                continue
            book_name = str(book.get("title") or book.get("key") or "").strip()
            if not book_name:
                continue
            book_updated = _parse_ts(book.get("last_update"))

            for market in _entries(book.get("markets")):
                if not isinstance(market, dict):
                    METRIC_LINES_DROPPED.labels(market="unknown", reason="malformed_market").inc()
                    continue
                kind = _BY_PROVIDER_KEY.get(market.get("key"))
                if kind is None or kind not in wanted:
                    continue
                parser = _MARKET_PARSERS[kind]
                updated_at = _parse_ts(market.get("last_update")) or book_updated

                for outcome in _entries(market.get("outcomes")):
                    if not isinstance(outcome, dict):
                        METRIC_LINES_DROPPED.labels(market=kind.value, reason="malformed_outcome").inc()
                        continue
                    parsed = parser(outcome, team_a, team_b)
                    if isinstance(parsed, str):
                        METRIC_LINES_DROPPED.labels(market=kind.value, reason=parsed).inc()
                        continue
                    side, point = parsed
                    price = to_finite_float(outcome.get("price"))
                    if not is_valid_price(price):
                        METRIC_LINES_DROPPED.labels(market=kind.value, reason="invalid_price").inc()
                        continue
                    lines.append(
                        Line(
                            book=book_name,
                            market=kind,
                            outcome=side,
                            decimal=price,
                            line=point,
                            provider_updated_at=updated_at,
                        )
                    )

        if not lines:
            continue

        events.append(
            CanonicalEvent(
                sport=sport,
                league=league,
                starts_at=starts_at,
                team_a=team_a,
                team_b=team_b,
                lines=lines,
                sport_key=sport_key,
            )
        )

    return events


class TheOddsAPIProvider(BaseProvider):
    """TheOddsAPI v4 adapter: one request per sport, normalized to canonical events."""

    name = "theoddsapi"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: ResilientClient | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.ODDSAPIKEY
        self._base_url = (base_url or settings.THEODDSAPI_BASE_URL).rstrip("/")
        self._client = client or ResilientClient(
            "odds_api", timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        )
        self._api_usage: dict[str, Optional[int]] = {"requests_used": None, "requests_remaining": None}

    def _track_usage_headers(self, resp: httpx.Response) -> None:
        used = resp.headers.get("x-requests-used")
        remaining = resp.headers.get("x-requests-remaining")
        try:
            if used is not None:
                self._api_usage["requests_used"] = int(float(used))
            if remaining is not None:
                self._api_usage["requests_remaining"] = int(float(remaining))
        except ValueError:
            logger.debug("Unparseable usage headers: used=%r remaining=%r", used, remaining)

    def build_params(
        self,
        region: str,
        markets: list[MarketKind],
        time_window: tuple[datetime, datetime] | None = None,
        bookmakers: list[str] | None = None,
    ) -> dict[str, str]:
        params = {
            "apiKey": self._api_key,
            "regions": region,
            "markets": ",".join(m.provider_key for m in markets),
            "oddsFormat": "decimal",
            "dateFormat": "iso",
        }
        if bookmakers:
            params["bookmakers"] = ",".join(bookmakers)
        if time_window is not None:
            start, end = time_window
            params["commenceTimeFrom"] = format_provider_ts(start)
            params["commenceTimeTo"] = format_provider_ts(end)
        return params

    async def fetch_odds(
        self,
        sport: str,
        region: str,
        markets: list[MarketKind],
        time_window: tuple[datetime, datetime] | None = None,
        bookmakers: list[str] | None = None,
    ) -> list[CanonicalEvent]:
        markets = list(markets) or [MarketKind.MONEYLINE]
        params = self.build_params(region, markets, time_window, bookmakers)

        try:
            resp = await self._client.get(f"{self._base_url}/sports/{sport}/odds", params=params)
        except httpx.HTTPError as exc:
            METRIC_PROVIDER_REQUESTS.labels(sport=sport, result="transport_error").inc()
            raise ProviderError(f"TheOddsAPI transport error: {exc}") from exc

        self._track_usage_headers(resp)

        if not resp.is_success:
            body = truncate(resp.text or "", 500)
            kind = classify_error(resp.status_code, body)
            METRIC_PROVIDER_REQUESTS.labels(sport=sport, result=kind.value).inc()
            logger.warning("TheOddsAPI %s for %s: %s", resp.status_code, sport, kind.value)
            raise ProviderError(
                f"TheOddsAPI error {resp.status_code}: {body}",
                status=resp.status_code,
                kind=kind,
            )

        try:
            raw = resp.json()
        except ValueError as exc:
            METRIC_PROVIDER_REQUESTS.labels(sport=sport, result="bad_payload").inc()
            raise ProviderError("TheOddsAPI returned invalid JSON", status=resp.status_code) from exc
        if not isinstance(raw, list):
            METRIC_PROVIDER_REQUESTS.labels(sport=sport, result="bad_payload").inc()
            raise ProviderError("TheOddsAPI returned an unexpected payload", status=resp.status_code)

        METRIC_PROVIDER_REQUESTS.labels(sport=sport, result="ok").inc()
        events = parse_odds_response(raw, sport, markets)
        logger.debug(
            "Fetched %s [%s]: %d raw events, %d normalized",
            sport, params["markets"], len(raw), len(events),
        )
        return events

    @property
    def api_usage(self) -> dict:
        return self._api_usage

    async def aclose(self) -> None:
        await self._client.aclose()


# Singleton provider instance
odds_provider = TheOddsAPIProvider()
