"""Incident and proximity schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class IncidentCreate(BaseModel):
    category: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    reporter_id: str | None = None


class IncidentResponse(BaseModel):
    id: str
    category: str
    title: str
    description: str | None = None
    latitude: float
    longitude: float
    reporter_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    skipped: bool = False
    users: int = 0
    successful: int = 0
    failed: int = 0
    pushed: int = 0
    undelivered: int = 0
    suppressed: int = 0
