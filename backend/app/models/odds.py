"""
backend/app/models/odds.py

Purpose:
    Canonical odds domain types shared by the provider adapter, the ingest
    writer, the repository and the arbitrage matcher. Market kind and outcome
    are closed enumerations; a Line refuses outcome/market combinations that
    cannot exist (e.g. OVER on a moneyline).

Dependencies:
    - dataclasses
    - enum
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MarketKind(str, Enum):
    MONEYLINE = "ML"
    SPREAD = "SPREAD"
    TOTAL = "TOTAL"

    @property
    def provider_key(self) -> str:
        return _PROVIDER_KEYS[self]

    @property
    def sides(self) -> tuple["Outcome", "Outcome"]:
        if self is MarketKind.TOTAL:
            return (Outcome.OVER, Outcome.UNDER)
        return (Outcome.A, Outcome.B)

    @property
    def has_line(self) -> bool:
        return self is not MarketKind.MONEYLINE

    @classmethod
    def parse(cls, value: str) -> "MarketKind":
        """Accept provider keys (h2h/spreads/totals) and canonical names (ML/SPREAD/TOTAL)."""
        raw = str(value or "").strip()
        by_provider = {v: k for k, v in _PROVIDER_KEYS.items()}
        if raw.lower() in by_provider:
            return by_provider[raw.lower()]
        try:
            return cls(raw.upper())
        except ValueError:
            raise ValueError(f"Unknown market: {value!r}") from None


_PROVIDER_KEYS = {
    MarketKind.MONEYLINE: "h2h",
    MarketKind.SPREAD: "spreads",
    MarketKind.TOTAL: "totals",
}


class Outcome(str, Enum):
    A = "A"
    B = "B"
    OVER = "OVER"
    UNDER = "UNDER"


def is_valid_price(price: float | None) -> bool:
    """Decimal odds are usable only when finite and strictly above 1.0."""
    return isinstance(price, (int, float)) and math.isfinite(price) and price > 1.0


@dataclass(frozen=True)
class NaturalKey:
    """Identity of a real-world fixture across provider fetches."""

    sport: str
    league: str
    team_a: str
    team_b: str
    starts_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "sport", self.sport.strip())
        object.__setattr__(self, "league", self.league.strip())
        object.__setattr__(self, "team_a", self.team_a.strip())
        object.__setattr__(self, "team_b", self.team_b.strip())

    def as_string(self) -> str:
        return f"{self.team_a}@{self.team_b}:{self.starts_at.isoformat()}:{self.league}:{self.sport}"

    def as_query(self) -> dict:
        return {
            "sport": self.sport,
            "league": self.league,
            "team_a": self.team_a,
            "team_b": self.team_b,
            "starts_at": self.starts_at,
        }


@dataclass(frozen=True)
class Line:
    """One book's quote for one side of one market.

    SPREAD lines are stored as team A's handicap for both outcomes; use
    quoted_line() to get the number as the bettor sees it on that side.
    """

    book: str
    market: MarketKind
    outcome: Outcome
    decimal: float
    line: float | None = None
    provider_updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.outcome not in self.market.sides:
            raise ValueError(f"Outcome {self.outcome.value} is not valid for market {self.market.value}")
        if not is_valid_price(self.decimal):
            raise ValueError(f"Invalid decimal price: {self.decimal!r}")
        if self.market.has_line:
            if self.line is None or not math.isfinite(self.line):
                raise ValueError(f"{self.market.value} line requires a numeric line value")
        elif self.line is not None:
            raise ValueError("Moneyline quotes carry no line value")


def quoted_line(market: MarketKind, outcome: Outcome, line: float | None) -> float | None:
    """Line as quoted to the bettor on this side (B's spread handicap is the negation)."""
    if line is None:
        return None
    if market is MarketKind.SPREAD and outcome is Outcome.B:
        return 0.0 - line
    return line


@dataclass
class CanonicalEvent:
    sport: str
    league: str
    starts_at: datetime
    team_a: str  # away
    team_b: str  # home
    lines: list[Line] = field(default_factory=list)
    sport_key: str = ""  # provider sport key the event was fetched under

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(self.sport, self.league, self.team_a, self.team_b, self.starts_at)

    def lines_for(self, market: MarketKind) -> list[Line]:
        return [line for line in self.lines if line.market is market]


@dataclass(frozen=True)
class StoredQuote:
    market: MarketKind
    book: str
    outcome: Outcome
    decimal: float
    line: float | None
    last_seen_at: datetime
    provider_updated_at: datetime | None = None


@dataclass
class StoredEvent:
    id: str
    sport: str
    league: str
    starts_at: datetime
    team_a: str
    team_b: str
    quotes: list[StoredQuote] = field(default_factory=list)
    sport_key: str = ""
