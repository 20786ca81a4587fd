"""Application service container and FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from famguard.core.config import settings
from famguard.core.realtime import ChangeFeed
from famguard.services.backend import SafetyBackend
from famguard.services.config_store import JsonFileConfigStore, LocalConfigStore
from famguard.services.geocoding_service import ReverseGeocoder
from famguard.services.location_capture import LocationCaptureScheduler
from famguard.services.location_staleness import LocationStalenessMonitor
from famguard.services.proximity_service import ProximityAlertEngine
from famguard.services.push_service import ExpoPushClient


@dataclass
class Services:
    backend: SafetyBackend
    proximity: ProximityAlertEngine
    capture: LocationCaptureScheduler
    reminders: LocationStalenessMonitor
    store: LocalConfigStore


def build_services(
    session_factory: sessionmaker[Session],
    store: LocalConfigStore | None = None,
    push_client: ExpoPushClient | None = None,
    geocoder: ReverseGeocoder | None = None,
) -> Services:
    backend = SafetyBackend(session_factory, feed=ChangeFeed(), push_client=push_client)
    store = store if store is not None else JsonFileConfigStore(settings.tracking_store_path)
    return Services(
        backend=backend,
        proximity=ProximityAlertEngine(
            backend,
            check_interval_seconds=settings.proximity_check_interval_seconds,
            initial_delay_seconds=settings.proximity_initial_delay_seconds,
        ),
        capture=LocationCaptureScheduler(backend, store, geocoder=geocoder),
        reminders=LocationStalenessMonitor(
            backend,
            check_interval_seconds=settings.location_reminder_interval_seconds,
        ),
        store=store,
    )


def get_services(request: Request) -> Services:
    """Dependency for FastAPI to get the services built at startup."""
    return request.app.state.services
