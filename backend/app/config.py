"""
backend/app/config.py

Purpose:
    Central settings loading for the ingestion and opportunity services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


def split_csv(value: str | None) -> list[str]:
    """Split a comma separated setting/query value, dropping blanks and duplicates."""
    if not value:
        return []
    out: list[str] = []
    for part in value.split(","):
        part = part.strip()
        if part and part not in out:
            out.append(part)
    return out


class Settings(BaseSettings):
    ODDSAPIKEY: str = ""
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "arbscan"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Provider
    THEODDSAPI_BASE_URL: str = "https://api.the-odds-api.com/v4"
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 15.0
    ODDS_API_REGION: str = "us"
    ODDS_API_SPORTS: str = (
        "americanfootball_nfl,americanfootball_ncaaf,baseball_mlb,soccer_epl,basketball_nba"
    )
    ODDS_API_MARKETS: str = "h2h,spreads,totals"
    ODDS_API_BOOKMAKERS: str = ""  # empty = all books the provider returns

    # Batch ingest defaults (overridable per request)
    INGEST_DEFAULT_CONCURRENCY: int = 3
    INGEST_DEFAULT_WINDOW_HOURS: float = 12.0
    INGEST_DEFAULT_TTL_SECONDS: int = 60
    INGEST_BACKOFF_BASE_SECONDS: float = 0.8
    INGEST_MAX_RATE_LIMIT_RETRIES: int = 3
    INGEST_ARB_ONLY: bool = False  # only persist events already showing an arb at fetch time

    # "memory" keeps TTL/fingerprint state per process, "mongo" shares it across instances
    STATE_BACKEND: str = "memory"

    # Opportunity query defaults
    OPPORTUNITY_DEFAULT_FRESHNESS_MINUTES: int = 1440
    OPPORTUNITY_DEFAULT_MIN_ROI_PERCENT: float = 0.0
    OPPORTUNITY_HORIZON_HOURS: int = 72
    OPPORTUNITY_MAX_LIMIT: int = 200

    # Periodic poller (APScheduler)
    ODDS_POLLER_ENABLED: bool = False
    ODDS_POLLER_INTERVAL_MINUTES: int = 15

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }

    @property
    def default_sports(self) -> list[str]:
        return split_csv(self.ODDS_API_SPORTS)

    @property
    def default_markets(self) -> list[str]:
        return split_csv(self.ODDS_API_MARKETS)

    @property
    def default_bookmakers(self) -> list[str]:
        return split_csv(self.ODDS_API_BOOKMAKERS)


settings = Settings()
