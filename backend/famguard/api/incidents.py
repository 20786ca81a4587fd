"""Incident reports and proximity sweeps API."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from famguard.core.deps import Services, get_services
from famguard.core.proximity_policies import MAX_INCIDENT_AGE_HOURS
from famguard.schemas.incident import IncidentCreate, IncidentResponse, SweepResponse

router = APIRouter(tags=["incidents"])


@router.post("/incidents", response_model=IncidentResponse, status_code=status.HTTP_201_CREATED)
async def create_incident(
    data: IncidentCreate,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Report an incident and check nearby users right away."""
    incident = await services.backend.create_incident(
        category=data.category,
        title=data.title,
        latitude=data.latitude,
        longitude=data.longitude,
        description=data.description,
        reporter_id=data.reporter_id,
    )
    background_tasks.add_task(services.proximity.trigger_check)
    return incident


@router.get("/incidents/recent", response_model=list[IncidentResponse])
async def recent_incidents(
    max_age_hours: float = Query(default=MAX_INCIDENT_AGE_HOURS, gt=0, le=24 * 7),
    limit: int = Query(default=50, ge=1, le=200),
    services: Services = Depends(get_services),
):
    return await services.backend.list_recent_incidents(max_age_hours, limit=limit)


@router.post("/proximity/check", response_model=SweepResponse)
async def run_proximity_check(services: Services = Depends(get_services)):
    """Run one proximity sweep now. `skipped` is true if one was already running."""
    result = await services.proximity.check_and_notify()
    if result is None:
        return SweepResponse(skipped=True)
    return SweepResponse(
        users=result.users,
        successful=result.successful,
        failed=result.failed,
        pushed=result.pushed,
        undelivered=result.undelivered,
        suppressed=result.suppressed,
    )
