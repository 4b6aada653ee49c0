"""
backend/app/models/opportunity.py

Purpose:
    Response models for the opportunity query and the stake-split calculator.

Dependencies:
    - pydantic
    - app.services.opportunity_service
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.services.arbitrage_service import StakeSplit
from app.services.opportunity_service import OpportunityLeg, RankedOpportunity


class OpportunityLegResponse(BaseModel):
    book: str
    outcome: str
    decimal: float
    american: str
    line: float | None = None

    @classmethod
    def from_leg(cls, leg: OpportunityLeg) -> "OpportunityLegResponse":
        return cls(
            book=leg.book,
            outcome=leg.outcome.value,
            decimal=leg.decimal,
            american=leg.american,
            line=leg.line,
        )


class OpportunityResponse(BaseModel):
    id: str
    event_id: str = Field(alias="eventId")
    sport: str
    league: str
    starts_at: datetime = Field(alias="startsAt")
    team_a: str = Field(alias="teamA")
    team_b: str = Field(alias="teamB")
    market: str
    line: float | None = None
    roi_percent: float = Field(alias="roiPercent")
    legs: list[OpportunityLegResponse]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_opportunity(cls, opp: RankedOpportunity) -> "OpportunityResponse":
        return cls(
            id=opp.id,
            event_id=opp.event_id,
            sport=opp.sport,
            league=opp.league,
            starts_at=opp.starts_at,
            team_a=opp.team_a,
            team_b=opp.team_b,
            market=opp.market.value,
            line=opp.line,
            roi_percent=round(opp.roi_percent, 4),
            legs=[OpportunityLegResponse.from_leg(leg) for leg in opp.legs],
        )


class OpportunityListResponse(BaseModel):
    opportunities: list[OpportunityResponse]
    total: int
    summary: dict[str, Any]
    available_bookmakers: list[str] = Field(alias="availableBookmakers")

    model_config = ConfigDict(populate_by_name=True)


class StakeSplitResponse(BaseModel):
    capital: float
    stake_a: float = Field(alias="stakeA")
    stake_b: float = Field(alias="stakeB")
    payout: float
    profit: float
    roi_percent: float = Field(alias="roiPercent")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_split(cls, split: StakeSplit) -> "StakeSplitResponse":
        return cls(
            capital=split.capital,
            stake_a=round(split.stake_a, 2),
            stake_b=round(split.stake_b, 2),
            payout=round(split.payout, 2),
            profit=round(split.profit, 2),
            roi_percent=round(split.roi * 100.0, 4),
        )
