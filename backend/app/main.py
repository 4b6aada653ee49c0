"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap: storage lifecycle, optional odds poller,
    middleware/router wiring, exception handlers, health and metrics.

Dependencies:
    - app.database
    - app.routers.ingest
    - app.routers.opportunities
    - app.workers.odds_poller
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

import app.database as _db
from app.config import settings, split_csv
from app.database import close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.services.odds_repository import OddsRepository

logger = logging.getLogger("arbscan")
scheduler = AsyncIOScheduler()


def _register_poller() -> None:
    from app.workers.odds_poller import poll_odds

    scheduler.add_job(
        poll_odds,
        "interval",
        id="odds_poller",
        minutes=settings.ODDS_POLLER_INTERVAL_MINUTES,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()

    if settings.ODDS_POLLER_ENABLED:
        _register_poller()
        scheduler.start()
        logger.info("Odds poller scheduled every %d minutes", settings.ODDS_POLLER_INTERVAL_MINUTES)
    else:
        logger.info("Odds poller disabled via config")

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    from app.providers.odds_api import odds_provider
    await odds_provider.aclose()
    await close_db()


app = FastAPI(
    title="Arbscan",
    description="Sportsbook odds ingestion and two-way arbitrage scanner",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=split_csv(settings.BACKEND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.ingest import router as ingest_router
from app.routers.opportunities import router as opportunities_router

app.include_router(ingest_router)
app.include_router(opportunities_router)

# Prometheus scrape endpoint
app.mount("/metrics", make_asgi_app())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        # Strip the "body" / "query" prefix for cleaner messages
        field = ".".join(str(l) for l in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check -- DB ping plus ingest freshness and provider quota."""
    from app.providers.odds_api import odds_provider

    db_ok = await _db.ping()
    body = {
        "ok": db_ok,
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "odds_provider": odds_provider.api_usage,
    }
    if not db_ok:
        return JSONResponse(status_code=503, content=body)

    stats = await OddsRepository().stats()
    last = stats["last_ingest_at"]
    body.update({
        "last_ingest_at": last.isoformat() if last else None,
        "future_events": stats["future_events"],
        "odds_rows": stats["odds_rows"],
    })
    return body
