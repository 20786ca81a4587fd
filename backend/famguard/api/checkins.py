"""Safety check-ins API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from famguard.core.deps import Services, get_services
from famguard.schemas.check_in import CheckInCreate, CheckInResponse, CheckInStatusUpdate

router = APIRouter(prefix="/checkins", tags=["checkins"])


@router.post("", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
async def create_check_in(data: CheckInCreate, services: Services = Depends(get_services)):
    return await services.backend.create_check_in(
        data.user_id,
        status=data.status,
        message=data.message,
        is_emergency=data.is_emergency,
        latitude=data.latitude,
        longitude=data.longitude,
        address=data.address,
    )


@router.patch("/{check_in_id}", response_model=CheckInResponse)
async def update_check_in(
    check_in_id: str,
    data: CheckInStatusUpdate,
    services: Services = Depends(get_services),
):
    """Change a check-in's status, e.g. mark a scheduled one as missed."""
    try:
        return await services.backend.update_check_in_status(check_in_id, data.status)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
