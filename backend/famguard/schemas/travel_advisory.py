"""Travel advisory and route risk schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

RiskLevel = Literal["low", "moderate", "high", "critical"]


class TravelAdvisoryCreate(BaseModel):
    state: str
    region: str | None = None
    lga: str | None = None
    risk_level: RiskLevel
    advisory_type: str = "general"
    title: str
    description: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True
    created_by_user_id: str | None = None


class TravelAdvisoryResponse(BaseModel):
    id: str
    state: str
    region: str | None = None
    lga: str | None = None
    risk_level: str
    advisory_type: str
    title: str
    description: str
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool
    created_by_user_id: str | None = None


class RouteRiskUpsert(BaseModel):
    origin_state: str
    destination_state: str
    origin_city: str | None = None
    destination_city: str | None = None
    risk_score: int = Field(ge=0, le=100)
    incident_count_24h: int = Field(default=0, ge=0)


class RouteRiskResponse(RouteRiskUpsert):
    id: str
    risk_level: str
    last_updated: datetime
