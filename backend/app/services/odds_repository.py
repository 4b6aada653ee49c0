"""
backend/app/services/odds_repository.py

Purpose:
    Persistence access layer for canonical events, their markets and the
    per-book odds quotes. Event identity is the natural key; quotes are
    upserted idempotently per (market, book, outcome, line) with
    ``last_seen_at`` set to server time; a concurrent write carrying an
    older timestamp never replaces a newer quote.

Dependencies:
    - app.database
    - app.models.odds
    - app.utils
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument, UpdateOne
from pymongo.errors import BulkWriteError, DuplicateKeyError

import app.database as _db
from app.models.odds import Line, MarketKind, NaturalKey, Outcome, StoredEvent, StoredQuote
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("arbscan.odds_repository")

_DUPLICATE_KEY = 11000
_SPORT_FIELDS = ("sport_key", "sport", "league")


class StorageUnavailableError(Exception):
    """Raised when the storage probe fails before a batch starts."""


@dataclass(frozen=True)
class MarketHandle:
    event_id: ObjectId
    market_id: ObjectId
    kind: MarketKind


class OddsRepository:
    async def ping(self) -> bool:
        return await _db.ping()

    async def find_or_create_event(self, key: NaturalKey, *, sport_key: str = "") -> ObjectId:
        now = utcnow()
        query = key.as_query()
        try:
            doc = await _db.db.events.find_one_and_update(
                query,
                {
                    "$setOnInsert": {**query, "created_at": now},
                    "$set": {"sport_key": sport_key, "updated_at": now},
                },
                upsert=True,
                projection={"_id": 1},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Concurrent writer inserted the same fixture first.
            doc = await _db.db.events.find_one(query, {"_id": 1})
        return doc["_id"]

    async def find_or_create_market(self, event_id: ObjectId, kind: MarketKind) -> MarketHandle:
        query = {"event_id": event_id, "type": kind.value}
        try:
            doc = await _db.db.markets.find_one_and_update(
                query,
                {"$setOnInsert": query},
                upsert=True,
                projection={"_id": 1},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            doc = await _db.db.markets.find_one(query, {"_id": 1})
        return MarketHandle(event_id=event_id, market_id=doc["_id"], kind=kind)

    async def upsert_odds(self, market: MarketHandle, lines: list[Line], now: datetime | None = None) -> int:
        """Upsert quotes for one market; returns the number of rows written."""
        lines = [line for line in lines if line.market is market.kind]
        if not lines:
            return 0
        now = now or utcnow()

        # A row already stamped later than ``now`` keeps its price: last write
        # wins by timestamp, not by arrival order.
        stored_is_newer = {"$gt": ["$last_seen_at", now]}

        ops = []
        for line in lines:
            fields: dict[str, Any] = {
                "event_id": market.event_id,
                "market": market.kind.value,
                "decimal": {"$cond": [stored_is_newer, "$decimal", float(line.decimal)]},
                "last_seen_at": {"$cond": [stored_is_newer, "$last_seen_at", now]},
                "created_at": {"$ifNull": ["$created_at", now]},
            }
            if line.provider_updated_at is not None:
                fields["provider_updated_at"] = {
                    "$cond": [stored_is_newer, "$provider_updated_at", line.provider_updated_at],
                }
            ops.append(
                UpdateOne(
                    {
                        "market_id": market.market_id,
                        "book": line.book,
                        "outcome": line.outcome.value,
                        "line": line.line,
                    },
                    [{"$set": fields}],
                    upsert=True,
                )
            )

        try:
            await _db.db.odds.bulk_write(ops, ordered=False)
        except BulkWriteError as exc:
            write_errors = (exc.details or {}).get("writeErrors", [])
            if not write_errors or any(e.get("code") != _DUPLICATE_KEY for e in write_errors):
                raise
            # Lost an upsert race on the unique quote index; the row exists now.
            logger.debug("Retrying %d odds upserts after duplicate-key race", len(write_errors))
            await _db.db.odds.bulk_write([ops[e["index"]] for e in write_errors], ordered=False)
        return len(ops)

    async def query_events(
        self,
        starts_from: datetime,
        starts_to: datetime,
        sports: list[str] | None = None,
        markets: list[MarketKind] | None = None,
        limit: int = 5000,
    ) -> list[StoredEvent]:
        """Events starting inside [starts_from, starts_to] with their stored quotes.

        ``sports`` matches the provider sport key, sport or league (case-insensitive).
        """
        query: dict[str, Any] = {"starts_at": {"$gte": starts_from, "$lte": starts_to}}
        wanted_sports = sorted({s.strip() for s in sports or [] if s.strip()})
        if wanted_sports:
            patterns = [re.compile(f"^{re.escape(s)}$", re.IGNORECASE) for s in wanted_sports]
            query["$or"] = [{field: {"$in": patterns}} for field in _SPORT_FIELDS]

        docs = await _db.db.events.find(query).sort("starts_at", 1).to_list(length=limit)
        if not docs:
            return []

        events: dict[ObjectId, StoredEvent] = {}
        for d in docs:
            events[d["_id"]] = StoredEvent(
                id=str(d["_id"]),
                sport=d.get("sport", ""),
                league=d.get("league") or d.get("sport", ""),
                starts_at=ensure_utc(d["starts_at"]),
                team_a=d.get("team_a", ""),
                team_b=d.get("team_b", ""),
                sport_key=d.get("sport_key", ""),
            )

        odds_query: dict[str, Any] = {"event_id": {"$in": list(events)}}
        if markets:
            odds_query["market"] = {"$in": [m.value for m in markets]}
        rows = await _db.db.odds.find(
            odds_query,
            {"event_id": 1, "market": 1, "book": 1, "outcome": 1, "decimal": 1, "line": 1,
             "last_seen_at": 1, "provider_updated_at": 1},
        ).to_list(length=200_000)

        for row in rows:
            event = events.get(row.get("event_id"))
            if event is None:
                continue
            try:
                quote = StoredQuote(
                    market=MarketKind(row["market"]),
                    book=row["book"],
                    outcome=Outcome(row["outcome"]),
                    decimal=float(row["decimal"]),
                    line=row.get("line"),
                    last_seen_at=ensure_utc(row["last_seen_at"]),
                    provider_updated_at=(
                        ensure_utc(row["provider_updated_at"]) if row.get("provider_updated_at") else None
                    ),
                )
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping malformed odds row %s", row.get("_id"))
                continue
            event.quotes.append(quote)

        return list(events.values())

    async def stats(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        latest = await _db.db.odds.find_one({}, {"last_seen_at": 1}, sort=[("last_seen_at", -1)])
        return {
            "last_ingest_at": ensure_utc(latest["last_seen_at"]) if latest else None,
            "future_events": await _db.db.events.count_documents({"starts_at": {"$gt": now}}),
            "odds_rows": await _db.db.odds.count_documents({}),
        }


def get_odds_repository() -> OddsRepository:
    return OddsRepository()
