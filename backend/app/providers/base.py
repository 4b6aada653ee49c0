from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum

from app.models.odds import CanonicalEvent, MarketKind


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    OTHER = "other"


class ProviderError(Exception):
    """Non-2xx (or transport) failure from an odds provider, already classified.

    Callers decide retry/abort from ``kind`` and never from the message text.
    """

    def __init__(self, message: str, *, status: int | None = None, kind: ProviderErrorKind = ProviderErrorKind.OTHER):
        super().__init__(message)
        self.status = status
        self.kind = kind

    @property
    def is_rate_limited(self) -> bool:
        return self.kind is ProviderErrorKind.RATE_LIMITED

    @property
    def is_quota_exhausted(self) -> bool:
        return self.kind is ProviderErrorKind.QUOTA_EXHAUSTED


class BaseProvider(ABC):
    """Abstract base class for odds data providers."""

    name: str

    @abstractmethod
    async def fetch_odds(
        self,
        sport: str,
        region: str,
        markets: list[MarketKind],
        time_window: tuple[datetime, datetime] | None = None,
        bookmakers: list[str] | None = None,
    ) -> list[CanonicalEvent]:
        """Fetch and normalize odds for one sport.

        The time window is advisory: providers may still return events outside
        of it, so callers must filter again on ``starts_at``.

        Raises ProviderError for any non-2xx response.
        """
        ...
