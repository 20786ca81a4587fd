"""Check-in schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

CheckInStatus = Literal["safe", "unsafe", "missed"]


class CheckInCreate(BaseModel):
    user_id: str
    status: CheckInStatus = "safe"
    message: str | None = None
    is_emergency: bool = False
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None


class CheckInStatusUpdate(BaseModel):
    status: CheckInStatus


class CheckInResponse(BaseModel):
    id: str
    user_id: str
    check_in_type: str
    status: str
    message: str | None = None
    is_emergency: bool
    location_latitude: float | None = None
    location_longitude: float | None = None
    location_address: str | None = None
    created_at: datetime
