"""
backend/app/monitoring/odds_metrics.py

Purpose:
    Prometheus metrics for provider fetches, batch ingest and opportunity
    queries.

Dependencies:
    - prometheus_client
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import Counter, Histogram

METRIC_PROVIDER_REQUESTS = Counter(
    "odds_provider_requests_total",
    "Odds provider requests by sport and result.",
    ["sport", "result"],
)
METRIC_LINES_DROPPED = Counter(
    "odds_normalization_lines_dropped_total",
    "Provider quotes dropped during normalization.",
    ["market", "reason"],
)
METRIC_COMBO_OUTCOMES = Counter(
    "odds_batch_combination_outcomes_total",
    "Batch (sport, market) combination outcomes by note.",
    ["market", "note"],
)
METRIC_ODDS_WRITTEN = Counter(
    "odds_ingest_rows_written_total",
    "Odds rows upserted into storage.",
    ["market"],
)
METRIC_FINGERPRINT_SKIPS = Counter(
    "odds_ingest_fingerprint_skips_total",
    "Event/market writes skipped because best prices were unchanged.",
    ["market"],
)
METRIC_OPPORTUNITIES = Counter(
    "odds_opportunities_emitted_total",
    "Arbitrage opportunities returned by the query service.",
    ["market"],
)
METRIC_BATCH_LATENCY = Histogram(
    "odds_batch_duration_seconds",
    "Wall-clock duration of a full ingest batch.",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)


@contextmanager
def observe_latency(histogram):
    start = perf_counter()
    try:
        yield
    finally:
        histogram.observe(perf_counter() - start)
