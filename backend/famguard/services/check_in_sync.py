"""Live check-ins of a user's connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from famguard.core.realtime import ChangeEvent, ChangeFilter, ChangeKind
from famguard.core.timeutils import as_utc
from famguard.models.check_in import UserCheckIn
from famguard.services.backend import BackendError, SafetyBackend
from famguard.services.realtime_sync import RealtimeSyncManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckIn:
    id: str
    user_id: str
    status: str
    is_emergency: bool
    created_at: datetime | None
    message: str | None = None
    check_in_type: str = "manual"
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    next_check_in_due_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CheckIn":
        created_at = row.get("created_at")
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            status=row.get("status") or "safe",
            is_emergency=bool(row.get("is_emergency")),
            created_at=as_utc(created_at) if isinstance(created_at, datetime) else None,
            message=row.get("message"),
            check_in_type=row.get("check_in_type") or "manual",
            latitude=row.get("location_latitude"),
            longitude=row.get("location_longitude"),
            address=row.get("location_address"),
            next_check_in_due_at=row.get("next_check_in_due_at"),
        )

    @property
    def needs_attention(self) -> bool:
        return self.is_emergency or self.status in ("unsafe", "missed")


def alert_transition(event: ChangeEvent, check_in: CheckIn) -> str | None:
    """Name of the alerting transition this event represents, if any.

    Inserts alert when emergency or unsafe. Updates alert when the status
    moves to missed (or unsafe) from something else.
    """
    if event.kind is ChangeKind.INSERT:
        if check_in.is_emergency:
            return "emergency"
        if check_in.status == "unsafe":
            return "unsafe"
        return None

    previous = (event.old or {}).get("status")
    if check_in.status in ("missed", "unsafe") and previous != check_in.status:
        return check_in.status
    return None


CheckInAlertHandler = Callable[[CheckIn, str], Awaitable[None]]


class CheckInSync(RealtimeSyncManager[CheckIn]):
    """Latest check-in per connection, refreshed in full when one of them needs attention."""

    channel_prefix = "check_ins"

    def __init__(self, backend: SafetyBackend, on_alert: CheckInAlertHandler | None = None) -> None:
        super().__init__(backend)
        self._on_alert = on_alert
        self.alerts_fired = 0

    def build_filters(self, connection_ids: frozenset[str]) -> list[ChangeFilter]:
        return [ChangeFilter(table=UserCheckIn.__tablename__, column="user_id", values=connection_ids)]

    def source_user_id(self, event: ChangeEvent) -> str | None:
        return event.new.get("user_id")

    async def refresh(self) -> None:
        if not self.connection_ids:
            return
        user_id = self.user_id
        try:
            rows = await self._backend.get_latest_check_ins(sorted(self.connection_ids))
        except BackendError as exc:
            logger.error("Error loading check-ins for %s: %s", user_id, exc)
            return
        if self.user_id != user_id:
            return
        for row in rows:
            self._merge(CheckIn.from_row(row))

    async def handle_event(self, event: ChangeEvent) -> None:
        check_in = CheckIn.from_row(event.new)
        self._merge(check_in)

        transition = alert_transition(event, check_in)
        if transition is None or not self.fire_once((check_in.id, transition)):
            return

        logger.info("Check-in %s from %s is %s; refreshing connections", check_in.id, check_in.user_id, transition)
        self.alerts_fired += 1
        await self.refresh()
        if self._on_alert is not None:
            await self._on_alert(check_in, transition)

    def _merge(self, check_in: CheckIn) -> None:
        current = self.records.get(check_in.user_id)
        if current is None or current.id == check_in.id or _is_newer(check_in, current):
            self.records[check_in.user_id] = check_in


def _is_newer(candidate: CheckIn, current: CheckIn) -> bool:
    if candidate.created_at is None:
        return False
    if current.created_at is None:
        return True
    return candidate.created_at >= current.created_at
