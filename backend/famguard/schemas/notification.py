"""Notification and push token schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PushTokenRegister(BaseModel):
    user_id: str
    token: str = Field(min_length=1)


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    type: str
    data: dict[str, Any] | None = None
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}
