"""Device location capture API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from famguard.core.deps import Services, get_services
from famguard.schemas.location import CaptureResponse, LocationFixBatch, ReminderResponse, TrackingConfigUpdate
from famguard.services.config_store import TrackingConfig
from famguard.services.location_capture import LocationFix

router = APIRouter(prefix="/location", tags=["location"])


@router.put("/tracking", status_code=status.HTTP_204_NO_CONTENT)
def configure_tracking(data: TrackingConfigUpdate, services: Services = Depends(get_services)):
    """Store the tracking identity and resume capture."""
    services.store.write_tracking_config(
        TrackingConfig(
            user_id=data.user_id,
            group_id=data.group_id,
            sharing_enabled=data.sharing_enabled,
            update_frequency_minutes=data.update_frequency_minutes,
        )
    )
    services.capture.start()


@router.post("/fixes", response_model=CaptureResponse)
async def submit_fixes(data: LocationFixBatch, services: Services = Depends(get_services)):
    """Hand a batch of fixes to the capture cycle. Only the newest one is used."""
    fixes = [
        LocationFix(
            latitude=f.latitude,
            longitude=f.longitude,
            captured_at=f.captured_at,
            accuracy=f.accuracy,
            address=f.address,
        )
        for f in data.fixes
    ]
    outcome = await services.capture.handle_fixes(fixes)
    return CaptureResponse(
        skipped=outcome.skipped,
        history_inserted=outcome.history_inserted,
        live_targets_updated=outcome.live_targets_updated,
        live_targets_failed=outcome.live_targets_failed,
    )


@router.post("/sharing/disable", status_code=status.HTTP_204_NO_CONTENT)
async def disable_sharing(services: Services = Depends(get_services)):
    await services.capture.disable_sharing()


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(services: Services = Depends(get_services)):
    await services.capture.sign_out()


@router.post("/reminders/check", response_model=ReminderResponse)
async def run_reminder_check(services: Services = Depends(get_services)):
    """Run one stale-location reminder sweep now."""
    result = await services.reminders.check_and_remind()
    if result is None:
        return ReminderResponse(skipped=True)
    return ReminderResponse(
        checked=result.checked,
        missing=result.missing,
        stopped=result.stopped,
        pushed=result.pushed,
        failed=result.failed,
    )
