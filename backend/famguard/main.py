"""famguard FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from famguard.api import advisories, checkins, health, incidents, location, notifications
from famguard.core.config import settings
from famguard.core.deps import build_services
from famguard.db.session import SessionLocal
from famguard.services.backend import BackendError
from famguard.services.geocoding_service import ReverseGeocoder
from famguard.services.push_service import ExpoPushClient

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(
        SessionLocal,
        push_client=ExpoPushClient() if settings.push_enabled else None,
        geocoder=ReverseGeocoder() if settings.geocoding_enabled else None,
    )
    app.state.services = services
    if settings.proximity_autostart:
        services.proximity.start_periodic_checking()
    if settings.location_reminder_autostart:
        services.reminders.start_periodic_checking()
    try:
        yield
    finally:
        services.proximity.stop_periodic_checking()
        services.reminders.stop_periodic_checking()
        services.capture.stop()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
    logger.error("Backend error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Backend unavailable"})


app.include_router(health.router)
app.include_router(incidents.router)
app.include_router(location.router)
app.include_router(checkins.router)
app.include_router(advisories.router)
app.include_router(notifications.router)
