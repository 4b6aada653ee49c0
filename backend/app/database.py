"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap, connectivity probe and index management for
    the odds collections (events, markets, odds, fingerprints, ingest state).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("arbscan.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=1,
        serverSelectionTimeoutMS=5000,
    )
    db = client[settings.MONGO_DB]
    try:
        await _ensure_indexes()
    except PyMongoError as exc:
        # Keep the API up; ingest refuses to start until the probe passes.
        logger.error("Index bootstrap failed, storage unreachable? %s", exc)


async def close_db() -> None:
    global client
    if client:
        client.close()


async def ping() -> bool:
    """Cheap connectivity probe used before spending provider quota."""
    if db is None:
        return False
    try:
        result = await db.command("ping")
    except PyMongoError as exc:
        logger.warning("Database ping failed: %s", exc)
        return False
    return result.get("ok") == 1.0


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent."""

    # ---- Events: natural key (sport, league, teams, kickoff) ----
    natural_key = [
        ("sport", 1), ("league", 1), ("team_a", 1), ("team_b", 1), ("starts_at", 1),
    ]
    try:
        await db.events.create_index(natural_key, unique=True, name="event_natural_key")
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning("Skipped unique events natural-key index due to duplicate data: %s", exc)
        await db.events.create_index(natural_key, name="event_natural_key_lookup")
    await db.events.create_index("starts_at")
    await db.events.create_index([("sport_key", 1), ("starts_at", 1)])

    # ---- Markets: one per (event, type) ----
    await db.markets.create_index([("event_id", 1), ("type", 1)], unique=True)
    await db.markets.create_index("type")

    # ---- Odds: at most one live quote per book per side per line ----
    await db.odds.create_index(
        [("market_id", 1), ("book", 1), ("outcome", 1), ("line", 1)],
        unique=True,
        name="odds_quote_identity",
    )
    await db.odds.create_index([("event_id", 1), ("last_seen_at", -1)])
    await db.odds.create_index("last_seen_at")

    # ---- Ingest state (TTL map) / fingerprints: keyed by _id, touched timestamps ----
    await db.ingest_state.create_index("updated_at")
    await db.odds_fingerprints.create_index("updated_at")

    logger.info("Database indexes ensured")
