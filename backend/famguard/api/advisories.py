"""Travel advisories and route risk API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from famguard.core.deps import Services, get_services
from famguard.schemas.travel_advisory import (
    RouteRiskResponse,
    RouteRiskUpsert,
    TravelAdvisoryCreate,
    TravelAdvisoryResponse,
)
from famguard.services.travel_advisory_sync import route_risk_level

router = APIRouter(tags=["advisories"])


@router.post("/advisories", response_model=TravelAdvisoryResponse, status_code=status.HTTP_201_CREATED)
async def create_advisory(data: TravelAdvisoryCreate, services: Services = Depends(get_services)):
    fields = data.model_dump(exclude_none=True)
    return await services.backend.create_travel_advisory(**fields)


@router.put("/route-risk/{route_id}", response_model=RouteRiskResponse)
async def upsert_route_risk(route_id: str, data: RouteRiskUpsert, services: Services = Depends(get_services)):
    """Create or update the risk score of a route."""
    row = await services.backend.upsert_route_risk(route_id, **data.model_dump())
    return {**row, "risk_level": route_risk_level(row["risk_score"])}


@router.get("/route-risk/{route_id}", response_model=RouteRiskResponse)
async def get_route_risk(route_id: str, services: Services = Depends(get_services)):
    row = await services.backend.get_route_risk(route_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Route not found")
    return {**row, "risk_level": route_risk_level(row["risk_score"])}
