"""
backend/app/models/ingest.py

Purpose:
    Response models for the ingestion trigger endpoints. Field names on the
    wire are camelCase (``totalEvents``, ``perCombinationDetails``...).

Dependencies:
    - pydantic
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ComboDetailResponse(BaseModel):
    sport: str
    region: str
    market: str
    events_processed: int = Field(alias="eventsProcessed")
    odds_written: int = Field(alias="oddsWritten")
    note: str | None = None
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class BatchSummary(BaseModel):
    combinations: int = 0
    written: int = 0
    ttl_skipped: int = Field(default=0, alias="ttlSkipped")
    unchanged: int = 0
    failed: int = 0
    stopped_early: bool = Field(default=False, alias="stoppedEarly")
    dry_run: bool = Field(default=False, alias="dryRun")
    window_from: datetime | None = Field(default=None, alias="windowFrom")
    window_to: datetime | None = Field(default=None, alias="windowTo")

    model_config = ConfigDict(populate_by_name=True)


class IngestResponse(BaseModel):
    ok: bool
    total_events: int = Field(alias="totalEvents")
    total_odds: int = Field(alias="totalOdds")
    errors: list[str] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    per_combination_details: list[ComboDetailResponse] = Field(
        default_factory=list, alias="perCombinationDetails",
    )

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: dict) -> "IngestResponse":
        details = result["details"]
        notes = [d.get("note") for d in details]
        return cls(
            ok=result["ok"],
            total_events=result["total_events"],
            total_odds=result["total_odds"],
            errors=result["errors"],
            summary=BatchSummary(
                combinations=result["combinations"],
                written=sum(1 for d in details if d.get("note") is None),
                ttl_skipped=notes.count("ttl-skip"),
                unchanged=notes.count("no-change"),
                failed=notes.count("error"),
                stopped_early=result["stopped_early"],
                dry_run=result["dry_run"],
                window_from=result["window_from"],
                window_to=result["window_to"],
            ),
            per_combination_details=[ComboDetailResponse(**d) for d in details],
        )
