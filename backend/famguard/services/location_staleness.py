"""Stale-location reminders.

Two checks run over every user with a registered device:

- background stopped: no location history insert in the last 4 hours. The
  user gets an in-app "Location Update Reminder", no push.
- missing location: no insert in the last 28 hours (or none ever, for users
  registered longer than that). The user gets an in-app reminder and a push.

The 28 hour reminder is written at most once per 28 hours. The 4 hour one is
written at most once per 4 hours counting reminders of either kind. Users
whose first device registered less than a day ago are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from famguard.core.proximity_policies import (
    BACKGROUND_STOPPED_HOURS,
    LOCATION_REMINDER_TYPE,
    MISSING_LOCATION_HOURS,
    REMINDER_CHECK_INTERVAL_SECONDS,
    REMINDER_GRACE_HOURS,
)
from famguard.core.timeutils import utcnow
from famguard.services.backend import BackendError, LocationActivity, SafetyBackend
from famguard.services.push_service import PushDeliveryError

logger = logging.getLogger(__name__)

BACKGROUND_STOPPED = "background_location_stopped"
MISSING_LOCATION = "missing_location_28hrs"

STOPPED_TITLE = "Location Update Reminder"
STOPPED_BODY = "Your background location hasn't updated in the past 4 hours. Tap to update your location now."
MISSING_TITLE = "Are you safe?"
MISSING_BODY = (
    "Reminder: Your location sharing is not active. Please update your location "
    "so your trusted family can be aware of your safety. We care about you! 💙"
)


@dataclass
class ReminderResult:
    checked: int = 0
    missing: int = 0
    stopped: int = 0
    pushed: int = 0
    failed: int = 0


def _outside(ts: datetime | None, now: datetime, window: timedelta) -> bool:
    """True when `ts` is absent or older than `window`."""
    return ts is None or ts < now - window


def is_missing_location(activity: LocationActivity, now: datetime, hours: float = MISSING_LOCATION_HOURS) -> bool:
    window = timedelta(hours=hours)
    if activity.last_recorded_at is None:
        # Never recorded: give new devices the whole window first
        return activity.registered_at < now - window
    return _outside(activity.last_recorded_at, now, window)


def is_background_stopped(activity: LocationActivity, now: datetime, hours: float = BACKGROUND_STOPPED_HOURS) -> bool:
    return _outside(activity.last_recorded_at, now, timedelta(hours=hours))


class LocationStalenessMonitor:
    """Periodic stale-location sweep. A sweep requested while one runs is dropped."""

    def __init__(
        self,
        backend: SafetyBackend,
        check_interval_seconds: float = REMINDER_CHECK_INTERVAL_SECONDS,
        stopped_hours: float = BACKGROUND_STOPPED_HOURS,
        missing_hours: float = MISSING_LOCATION_HOURS,
        grace_hours: float = REMINDER_GRACE_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._interval = check_interval_seconds
        self._stopped_hours = stopped_hours
        self._missing_hours = missing_hours
        self._stopped_window = timedelta(hours=stopped_hours)
        self._missing_window = timedelta(hours=missing_hours)
        self._grace = timedelta(hours=grace_hours)
        self._clock = clock
        self._is_checking = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_and_remind(self) -> ReminderResult | None:
        if self._is_checking:
            logger.debug("Location reminder check already in progress, skipping")
            return None
        self._is_checking = True
        try:
            return await self._sweep()
        finally:
            self._is_checking = False

    async def _sweep(self) -> ReminderResult:
        result = ReminderResult()
        now = self._clock()
        try:
            activity = await self._backend.list_location_activity(LOCATION_REMINDER_TYPE)
        except BackendError as exc:
            logger.error("Error loading location activity: %s", exc)
            return result

        eligible = [a for a in activity if a.registered_at <= now - self._grace]
        result.checked = len(eligible)

        missing = [
            a.user_id
            for a in eligible
            if is_missing_location(a, now, self._missing_hours)
            and _outside(a.last_reminder(MISSING_LOCATION), now, self._missing_window)
        ]
        reminded = await self._remind(missing, MISSING_LOCATION, MISSING_TITLE, MISSING_BODY, now, result)
        result.missing = len(reminded)
        if reminded:
            result.pushed = await self._push(reminded)

        skip = set(missing)
        stopped = [
            a.user_id
            for a in eligible
            if a.user_id not in skip
            and is_background_stopped(a, now, self._stopped_hours)
            and _outside(a.last_reminder(), now, self._stopped_window)
        ]
        result.stopped = len(await self._remind(stopped, BACKGROUND_STOPPED, STOPPED_TITLE, STOPPED_BODY, now, result))

        logger.info(
            "Location reminders: %s missing, %s stopped, %s failed out of %s user(s)",
            result.missing,
            result.stopped,
            result.failed,
            result.checked,
        )
        return result

    async def _remind(
        self,
        user_ids: list[str],
        reminder_type: str,
        title: str,
        body: str,
        now: datetime,
        result: ReminderResult,
    ) -> list[str]:
        data = {
            "type": LOCATION_REMINDER_TYPE,
            "action": "update_location",
            "reminder_type": reminder_type,
            "reminder_sent_at": now.isoformat(),
        }
        written = []
        for user_id in user_ids:
            try:
                await self._backend.insert_in_app_notification(user_id, title, body, LOCATION_REMINDER_TYPE, data)
            except BackendError as exc:
                result.failed += 1
                logger.error("Error inserting %s reminder for user %s: %s", reminder_type, user_id, exc)
                continue
            written.append(user_id)
        return written

    async def _push(self, user_ids: list[str]) -> int:
        data = {"type": LOCATION_REMINDER_TYPE, "action": "update_location", "reminder_type": MISSING_LOCATION}
        try:
            push = await self._backend.send_push_notification(user_ids, MISSING_TITLE, MISSING_BODY, data)
        except (PushDeliveryError, BackendError) as exc:
            logger.error("Error sending missing-location push to %s user(s): %s", len(user_ids), exc)
            return 0
        logger.info("Missing-location push: %s sent, %s failed", push.sent, push.failed)
        return push.sent

    # ---------- Periodic checking ----------

    def start_periodic_checking(self) -> None:
        if self.is_running:
            logger.warning("Location reminder checking already started")
            return
        self._task = asyncio.get_running_loop().create_task(self._run_periodically())
        logger.info("Started periodic location reminder checking (every %ss)", self._interval)

    def stop_periodic_checking(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Stopped periodic location reminder checking")

    async def _run_periodically(self) -> None:
        while True:
            await self.check_and_remind()
            await asyncio.sleep(self._interval)
