"""Background location capture.

The OS location provider hands each batch of fixes to `handle_fixes`. Every cycle:
  1. keeps only the newest fix and rejects implausible coordinates
  2. reverse-geocodes it (best effort)
  3. reads the tracking identity from the local store
  4. appends a history row if the history cadence allows it
  5. overwrites the live position on the user's group membership and on every
     connection pointing at the user, when sharing is enabled

History and live position run on different cadences and in separate failure
boundaries: one failing never keeps the other from being attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

from famguard.core.config import settings
from famguard.core.timeutils import utcnow
from famguard.services.backend import BackendError, LiveScope, SafetyBackend
from famguard.services.config_store import LocalConfigStore, TrackingConfig
from famguard.services.geo_service import is_plausible_coordinate
from famguard.services.geocoding_service import GeocodingError, ReverseGeocoder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy: float | None = None
    address: str | None = None


@dataclass
class CaptureOutcome:
    """What one capture cycle did. `skipped` names why nothing was written."""

    fix: LocationFix | None = None
    skipped: str | None = None
    history_inserted: bool = False
    live_targets_updated: int = 0
    live_targets_failed: int = 0


def resolve_history_interval(
    config: TrackingConfig,
    fallback_minutes: int = settings.history_fallback_interval_minutes,
    override_minutes: int | None = settings.history_interval_override_minutes,
) -> timedelta:
    """History cadence for this cycle.

    A deployment-wide override wins; otherwise the user's configured frequency;
    otherwise the fallback.
    """
    if override_minutes is not None and override_minutes > 0:
        return timedelta(minutes=override_minutes)
    if config.update_frequency_minutes is not None and config.update_frequency_minutes > 0:
        return timedelta(minutes=config.update_frequency_minutes)
    return timedelta(minutes=fallback_minutes)


class LocationCaptureScheduler:
    def __init__(
        self,
        backend: SafetyBackend,
        store: LocalConfigStore,
        geocoder: ReverseGeocoder | None = None,
        fallback_interval_minutes: int = settings.history_fallback_interval_minutes,
        override_interval_minutes: int | None = settings.history_interval_override_minutes,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._store = store
        self._geocoder = geocoder
        self._fallback_minutes = fallback_interval_minutes
        self._override_minutes = override_interval_minutes
        self._clock = clock
        self._capturing = False
        self._stopped = False

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        self._stopped = False

    def stop(self) -> None:
        """Ignore fixes from now on. Safe to call repeatedly."""
        if not self._stopped:
            logger.info("Location capture stopped")
        self._stopped = True

    async def handle_fixes(self, fixes: Sequence[LocationFix]) -> CaptureOutcome:
        if self._stopped:
            return CaptureOutcome(skipped="stopped")
        if not fixes:
            return CaptureOutcome(skipped="no_fix")
        if self._capturing:
            logger.debug("Capture cycle already running; dropping %s fix(es)", len(fixes))
            return CaptureOutcome(skipped="busy")

        self._capturing = True
        try:
            return await self._capture(max(fixes, key=lambda f: f.captured_at))
        finally:
            self._capturing = False

    async def _capture(self, fix: LocationFix) -> CaptureOutcome:
        outcome = CaptureOutcome(fix=fix)

        if not is_plausible_coordinate(fix.latitude, fix.longitude):
            logger.warning("Rejected implausible fix: lat=%r lon=%r", fix.latitude, fix.longitude)
            outcome.skipped = "invalid_fix"
            return outcome

        address = fix.address
        if address is None and self._geocoder is not None:
            try:
                address = await self._geocoder.reverse(fix.latitude, fix.longitude)
            except GeocodingError as exc:
                logger.warning("Background geocoding failed: %s", exc)

        config = self._store.read_tracking_config()
        if not config.is_complete:
            logger.debug("Tracking identity not configured; skipping capture")
            outcome.skipped = "not_configured"
            return outcome

        # One snapshot of time and sharing for both writes
        now = self._clock()
        sharing_enabled = config.sharing_enabled

        outcome.history_inserted = await self._append_history(config, fix, address, now)

        if sharing_enabled:
            updated, failed = await self._propagate_live_position(config, fix, address, now)
            outcome.live_targets_updated = updated
            outcome.live_targets_failed = failed
        else:
            logger.debug("Location sharing disabled; live position left untouched")

        return outcome

    async def _append_history(
        self,
        config: TrackingConfig,
        fix: LocationFix,
        address: str | None,
        now: datetime,
    ) -> bool:
        user_id = config.user_id
        interval = resolve_history_interval(config, self._fallback_minutes, self._override_minutes)
        last_insert = self._store.read_last_insert_timestamp(user_id)
        if last_insert is not None and now - last_insert < interval:
            remaining = interval - (now - last_insert)
            logger.debug(
                "Skipping history insert for %s: %.1f min remaining (interval %s)",
                user_id,
                remaining.total_seconds() / 60,
                interval,
            )
            return False

        try:
            await self._backend.insert_location_history(
                user_id,
                fix.latitude,
                fix.longitude,
                address=address,
                accuracy=fix.accuracy,
            )
        except BackendError as exc:
            logger.warning("Error saving location history for %s: %s", user_id, exc)
            return False

        self._store.write_last_insert_timestamp(user_id, now)
        logger.info("Location history saved for %s (interval %s)", user_id, interval)
        return True

    async def _propagate_live_position(
        self,
        config: TrackingConfig,
        fix: LocationFix,
        address: str | None,
        now: datetime,
    ) -> tuple[int, int]:
        targets: list[tuple[LiveScope, str]] = []

        try:
            member_id = await self._backend.find_group_member_id(config.group_id, config.user_id)
        except BackendError as exc:
            logger.error("Error finding family member for %s: %s", config.user_id, exc)
            member_id = None
        if member_id:
            targets.append((LiveScope.GROUP_MEMBER, member_id))
        else:
            logger.warning("No family member record for %s in group %s", config.user_id, config.group_id)

        try:
            connection_ids = await self._backend.list_connection_ids_pointing_at(config.user_id)
        except BackendError as exc:
            logger.error("Error listing connections for %s: %s", config.user_id, exc)
            connection_ids = []
        targets.extend((LiveScope.CONNECTION, cid) for cid in connection_ids)

        updated = failed = 0
        for scope, target_id in targets:
            try:
                found = await self._backend.update_live_position(
                    scope,
                    target_id,
                    fix.latitude,
                    fix.longitude,
                    address,
                    now,
                )
            except BackendError as exc:
                failed += 1
                logger.error("Error updating live position on %s %s: %s", scope.value, target_id, exc)
                continue
            if found:
                updated += 1
        logger.debug("Live position updated on %s record(s), %s failed", updated, failed)
        return updated, failed

    async def disable_sharing(self) -> None:
        """Persist sharing=off and clear the live position the user was exposing."""
        config = self._store.read_tracking_config()
        self._store.set_sharing_enabled(False)
        if not config.user_id:
            return
        try:
            await self._backend.clear_live_position(config.user_id, config.group_id)
        except BackendError as exc:
            logger.error("Error clearing live position for %s: %s", config.user_id, exc)

    async def sign_out(self) -> None:
        """Stop capturing, clear the live position and forget the tracking identity."""
        self.stop()
        config = self._store.read_tracking_config()
        if config.user_id:
            try:
                await self._backend.clear_live_position(config.user_id, config.group_id)
            except BackendError as exc:
                logger.error("Error clearing live position on sign-out for %s: %s", config.user_id, exc)
        self._store.clear_tracking_config()
