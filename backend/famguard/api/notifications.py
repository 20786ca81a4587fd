"""Push token registration and in-app notifications API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from famguard.core.deps import Services, get_services
from famguard.schemas.notification import NotificationResponse, PushTokenRegister

router = APIRouter(tags=["notifications"])


@router.post("/push-tokens", status_code=status.HTTP_204_NO_CONTENT)
async def register_push_token(data: PushTokenRegister, services: Services = Depends(get_services)):
    await services.backend.register_push_token(data.user_id, data.token)


@router.get("/notifications/{user_id}", response_model=list[NotificationResponse])
async def list_notifications(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    services: Services = Depends(get_services),
):
    """In-app notifications for a user, newest first."""
    return await services.backend.list_notifications(user_id, limit=limit)
