"""Location capture schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class LocationFixIn(BaseModel):
    # Range is validated by the capture cycle
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy: float | None = None
    address: str | None = None


class LocationFixBatch(BaseModel):
    fixes: list[LocationFixIn] = Field(default_factory=list)


class TrackingConfigUpdate(BaseModel):
    user_id: str
    group_id: str
    sharing_enabled: bool = False
    update_frequency_minutes: int | None = Field(default=None, ge=1)


class CaptureResponse(BaseModel):
    skipped: str | None = None
    history_inserted: bool = False
    live_targets_updated: int = 0
    live_targets_failed: int = 0


class ReminderResponse(BaseModel):
    skipped: bool = False
    checked: int = 0
    missing: int = 0
    stopped: int = 0
    pushed: int = 0
    failed: int = 0
