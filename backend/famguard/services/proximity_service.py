"""Incident proximity alerts.

A sweep pulls every (user, incident) pair within range of a recent incident,
groups them per user and sends at most one push per user per UTC day. Users
already paged today still get an in-app notification and dedup rows, just no
push. Users are handled concurrently; one user's failure is tallied and does
not affect the others.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from famguard.core.proximity_policies import (
    CHECK_INTERVAL_SECONDS,
    DANGER_MAX_KM,
    INITIAL_CHECK_DELAY_SECONDS,
    MAX_DISTANCE_KM,
    MAX_INCIDENT_AGE_HOURS,
    MIN_DISTANCE_KM,
    PROXIMITY_NOTIFICATION_TYPE,
    WARNING_MAX_KM,
)
from famguard.core.timeutils import utcnow
from famguard.services.backend import (
    BackendError,
    ProximityMatch,
    ProximityNotificationRecord,
    SafetyBackend,
)

logger = logging.getLogger(__name__)


class AlertLevel(str, enum.Enum):
    DANGER = "danger"
    WARNING = "warning"
    ALERT = "alert"

    @property
    def prefix(self) -> str:
        return self.name

    @property
    def emoji(self) -> str:
        return "🚨" if self is AlertLevel.DANGER else "⚠️"


def classify_severity(distance_km: float) -> AlertLevel:
    """0-3km DANGER, (3-6]km WARNING, beyond 6km ALERT."""
    if distance_km <= DANGER_MAX_KM:
        return AlertLevel.DANGER
    if distance_km <= WARNING_MAX_KM:
        return AlertLevel.WARNING
    return AlertLevel.ALERT


def pick_primary(matches: list[ProximityMatch]) -> ProximityMatch:
    """Closest match; ties go to the most recent incident."""
    return min(matches, key=lambda m: (m.distance_km, -m.incident_created_at.timestamp()))


@dataclass(frozen=True)
class ProximityMessage:
    title: str
    body: str
    level: AlertLevel
    primary: ProximityMatch


def compose_message(matches: list[ProximityMatch]) -> ProximityMessage:
    primary = pick_primary(matches)
    level = classify_severity(primary.distance_km)
    count = len(matches)

    title = f"{level.emoji} {level.prefix}: Incident Nearby"
    where = f"📍 {primary.distance_km:.1f}km away - {level.prefix}"
    if count == 1:
        body = f"{primary.incident_category}: {primary.incident_title}\n{where}"
    else:
        body = (
            f"{count} incidents nearby:\n"
            f"• {primary.incident_category}: {primary.incident_title}\n"
            f"{where}\n"
            f"+ {count - 1} more incident(s)"
        )
    return ProximityMessage(title=title, body=body, level=level, primary=primary)


def notification_data(message: ProximityMessage, matches: list[ProximityMatch]) -> dict[str, Any]:
    primary = message.primary
    return {
        "type": PROXIMITY_NOTIFICATION_TYPE,
        "incidentIds": [m.incident_id for m in matches],
        "primaryIncidentId": primary.incident_id,
        "distanceKm": round(primary.distance_km, 3),
        "alertLevel": message.level.value,
        "category": primary.incident_category,
    }


class NotifyOutcome(str, enum.Enum):
    PUSHED = "pushed"
    UNDELIVERED = "undelivered"
    SUPPRESSED = "suppressed"


@dataclass
class SweepResult:
    users: int = 0
    successful: int = 0
    failed: int = 0
    pushed: int = 0
    undelivered: int = 0
    suppressed: int = 0


class ProximityAlertEngine:
    """Idle -> Checking -> Idle. A trigger arriving while checking is dropped."""

    def __init__(
        self,
        backend: SafetyBackend,
        check_interval_seconds: float = CHECK_INTERVAL_SECONDS,
        initial_delay_seconds: float = INITIAL_CHECK_DELAY_SECONDS,
        min_distance_km: float = MIN_DISTANCE_KM,
        max_distance_km: float = MAX_DISTANCE_KM,
        max_age_hours: float = MAX_INCIDENT_AGE_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._interval = check_interval_seconds
        self._initial_delay = initial_delay_seconds
        self._min_km = min_distance_km
        self._max_km = max_distance_km
        self._max_age_hours = max_age_hours
        self._clock = clock
        self._is_checking = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_checking(self) -> bool:
        return self._is_checking

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_and_notify(self) -> SweepResult | None:
        """Run one sweep. Returns None when a sweep was already in flight."""
        if self._is_checking:
            logger.debug("Proximity check already in progress, skipping")
            return None

        self._is_checking = True
        try:
            return await self._sweep()
        finally:
            self._is_checking = False

    async def trigger_check(self) -> SweepResult | None:
        """Check now, e.g. right after an incident is reported."""
        return await self.check_and_notify()

    async def _sweep(self) -> SweepResult:
        result = SweepResult()
        try:
            matches = await self._backend.query_proximity_matches(self._min_km, self._max_km, self._max_age_hours)
        except BackendError as exc:
            logger.error("Error fetching users near incidents: %s", exc)
            return result

        if not matches:
            logger.info("No users within %.1f-%.1fkm of recent incidents", self._min_km, self._max_km)
            return result

        by_user: dict[str, list[ProximityMatch]] = defaultdict(list)
        for match in matches:
            by_user[match.user_id].append(match)
        result.users = len(by_user)
        logger.info("Found %s match(es) for %s user(s)", len(matches), result.users)

        user_ids = list(by_user)
        outcomes = await asyncio.gather(
            *(self._notify_user(uid, by_user[uid]) for uid in user_ids),
            return_exceptions=True,
        )
        for uid, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                logger.error("Failed to send proximity notification to user %s: %s", uid, outcome)
                continue
            result.successful += 1
            if outcome is NotifyOutcome.PUSHED:
                result.pushed += 1
            elif outcome is NotifyOutcome.UNDELIVERED:
                result.undelivered += 1
            else:
                result.suppressed += 1

        logger.info(
            "Completed proximity check: %s successful, %s failed out of %s user(s)",
            result.successful,
            result.failed,
            result.users,
        )
        return result

    async def _notify_user(self, user_id: str, matches: list[ProximityMatch]) -> NotifyOutcome:
        """Alert one user. UNDELIVERED means a push was attempted but reached no device."""
        try:
            notified_today = await self._backend.has_been_notified_today(user_id)
        except BackendError as exc:
            # Do not let a failed lookup block the alert
            logger.error("Error checking if user %s was notified today: %s", user_id, exc)
            notified_today = False

        message = compose_message(matches)
        data = notification_data(message, matches)

        if notified_today:
            logger.info("User %s already notified today; in-app notification only", user_id)
            await self._write_in_app(user_id, message, data)
            await self._record(user_id, matches)
            return NotifyOutcome.SUPPRESSED

        push = await self._backend.send_push_notification(
            [user_id],
            message.title,
            message.body,
            {**data, "timestamp": self._clock().isoformat()},
        )
        if push.sent > 0:
            outcome = NotifyOutcome.PUSHED
            logger.info("Proximity push sent to user %s (%s sent, %s failed)", user_id, push.sent, push.failed)
        else:
            outcome = NotifyOutcome.UNDELIVERED
            logger.warning("Proximity push for user %s delivered nothing: %s", user_id, push.message or push)

        await self._write_in_app(user_id, message, data)
        await self._record(user_id, matches)
        return outcome

    async def _write_in_app(self, user_id: str, message: ProximityMessage, data: dict[str, Any]) -> None:
        try:
            await self._backend.insert_in_app_notification(
                user_id,
                message.title,
                message.body,
                PROXIMITY_NOTIFICATION_TYPE,
                data,
            )
        except BackendError as exc:
            logger.error("Error creating in-app notification for user %s: %s", user_id, exc)

    async def _record(self, user_id: str, matches: list[ProximityMatch]) -> None:
        notified_at = self._clock()
        records = [
            ProximityNotificationRecord(
                user_id=user_id,
                incident_id=m.incident_id,
                distance_km=m.distance_km,
                notified_at=notified_at,
            )
            for m in matches
        ]
        inserted = await self._backend.insert_proximity_notification_records(records)
        logger.debug("Recorded %s/%s proximity notification(s) for user %s", inserted, len(records), user_id)

    # ---------- Periodic checking ----------

    def start_periodic_checking(self) -> None:
        if self.is_running:
            logger.warning("Incident proximity checking already started")
            return
        self._task = asyncio.get_running_loop().create_task(self._run_periodically())
        logger.info("Started periodic incident proximity checking (every %ss)", self._interval)

    def stop_periodic_checking(self) -> None:
        """Cancel the timer. Safe to call when not running."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Stopped periodic incident proximity checking")

    async def _run_periodically(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            await self.check_and_notify()
            await asyncio.sleep(self._interval)
