#!/usr/bin/env python3
"""Run one odds ingestion batch against MongoDB, no HTTP server needed.

Usage:
    PYTHONPATH=backend python tools/run_ingest.py
    PYTHONPATH=backend python tools/run_ingest.py --sports basketball_nba --markets h2h,totals --dry-run
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure backend is on sys.path so `app.*` imports work
_backend = Path(__file__).resolve().parent.parent / "backend"
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

import app.database as _db
from app.config import split_csv
from app.middleware.logging import setup_logging
from app.models.odds import MarketKind
from app.providers.odds_api import odds_provider
from app.services.batch_scheduler import BatchRequest, BatchScheduler
from app.services.odds_repository import StorageUnavailableError


def build_request(args: argparse.Namespace) -> BatchRequest:
    request = BatchRequest(dry_run=args.dry_run)
    if args.sports:
        request.sports = split_csv(args.sports)
    if args.markets:
        request.markets = [MarketKind.parse(m) for m in split_csv(args.markets)]
    if args.bookmakers:
        request.bookmakers = split_csv(args.bookmakers)
    if args.region:
        request.region = args.region
    if args.hours is not None:
        request.hours = args.hours
    if args.ttl is not None:
        request.ttl_seconds = args.ttl
    if args.concurrency is not None:
        request.concurrency = args.concurrency
    return request


async def run(args: argparse.Namespace) -> int:
    setup_logging()
    await _db.connect_db()
    try:
        result = await BatchScheduler().run_batch(build_request(args))
    except StorageUnavailableError as exc:
        print(f"Storage unreachable: {exc}", file=sys.stderr)
        return 2
    finally:
        await odds_provider.aclose()
        await _db.close_db()

    for detail in result["details"]:
        note = detail.get("note") or "written"
        extra = f" ({detail['error']})" if detail.get("error") else ""
        print(
            f"{detail['sport']:<32} {detail['market']:<8} {note:<10} "
            f"events={detail['events_processed']:<4} odds={detail['odds_written']}{extra}"
        )
    print(json.dumps({
        "ok": result["ok"],
        "totalEvents": result["total_events"],
        "totalOdds": result["total_odds"],
        "stoppedEarly": result["stopped_early"],
        "dryRun": result["dry_run"],
        "errors": result["errors"],
    }, indent=2))
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Fetch odds for sports x markets and store them.")
    parser.add_argument("--sports", type=str, default=None, help="CSV of provider sport keys.")
    parser.add_argument("--markets", type=str, default=None, help="CSV of h2h,spreads,totals.")
    parser.add_argument("--bookmakers", type=str, default=None, help="CSV of bookmaker keys.")
    parser.add_argument("--region", type=str, default=None, help="Provider region (default from settings).")
    parser.add_argument("--hours", type=float, default=None, help="Commence-time window in hours.")
    parser.add_argument("--ttl", type=int, default=None, help="Per-combination TTL in seconds.")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel provider fetches.")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and diff without DB writes.")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))
