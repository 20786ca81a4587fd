"""Live travel advisories and route risk.

Watches advisories authored by the user's connections plus the route risk row
the user is tracking. High or critical advisories, and a tracked route whose
score crosses into high risk, are fanned out to the user's own connections as
in-app and push notifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from famguard.core.proximity_policies import (
    HIGH_RISK_ADVISORY_LEVELS,
    ROUTE_RISK_CRITICAL_SCORE,
    ROUTE_RISK_HIGH_SCORE,
)
from famguard.core.realtime import ChangeEvent, ChangeFilter
from famguard.core.timeutils import as_utc, utcnow
from famguard.models.travel_advisory import RouteRisk, TravelAdvisory
from famguard.services.backend import BackendError, SafetyBackend
from famguard.services.push_service import PushDeliveryError
from famguard.services.realtime_sync import RealtimeSyncManager

logger = logging.getLogger(__name__)

ADVISORY_NOTIFICATION_TYPE = "travel_advisory"
ROUTE_RISK_NOTIFICATION_TYPE = "route_risk"

RISK_LEVEL_LABELS = {
    "low": "Low Risk",
    "moderate": "Moderate Risk",
    "high": "High Risk",
    "critical": "Critical Risk",
}


def risk_level_label(level: str) -> str:
    return RISK_LEVEL_LABELS.get(level, level.title())


def route_risk_level(score: int) -> str:
    if score >= ROUTE_RISK_CRITICAL_SCORE:
        return "critical"
    if score >= ROUTE_RISK_HIGH_SCORE:
        return "high"
    return "moderate"


def _dt(value: Any) -> datetime | None:
    return as_utc(value) if isinstance(value, datetime) else None


@dataclass(frozen=True)
class Advisory:
    id: str
    state: str
    risk_level: str
    advisory_type: str
    title: str
    description: str = ""
    region: str | None = None
    lga: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True
    created_by_user_id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Advisory":
        return cls(
            id=row["id"],
            state=row.get("state") or "",
            risk_level=row.get("risk_level") or "low",
            advisory_type=row.get("advisory_type") or "general",
            title=row.get("title") or "",
            description=row.get("description") or "",
            region=row.get("region"),
            lga=row.get("lga"),
            start_date=_dt(row.get("start_date")),
            end_date=_dt(row.get("end_date")),
            is_active=bool(row.get("is_active", True)),
            created_by_user_id=row.get("created_by_user_id"),
        )

    def is_current(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.start_date is not None and self.start_date > now:
            return False
        return self.end_date is None or self.end_date >= now

    @property
    def is_high_risk(self) -> bool:
        return self.risk_level in HIGH_RISK_ADVISORY_LEVELS

    @property
    def location(self) -> str:
        return ", ".join(p for p in (self.lga, self.region, self.state) if p)


@dataclass(frozen=True)
class RouteRiskSnapshot:
    id: str
    origin_state: str
    destination_state: str
    risk_score: int
    origin_city: str | None = None
    destination_city: str | None = None
    incident_count_24h: int = 0
    last_updated: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RouteRiskSnapshot":
        return cls(
            id=row["id"],
            origin_state=row.get("origin_state") or "",
            destination_state=row.get("destination_state") or "",
            risk_score=int(row.get("risk_score") or 0),
            origin_city=row.get("origin_city"),
            destination_city=row.get("destination_city"),
            incident_count_24h=int(row.get("incident_count_24h") or 0),
            last_updated=_dt(row.get("last_updated")),
        )

    @property
    def level(self) -> str:
        return route_risk_level(self.risk_score)

    @property
    def route_info(self) -> str:
        origin = self.origin_state + (f", {self.origin_city}" if self.origin_city else "")
        destination = self.destination_state + (f", {self.destination_city}" if self.destination_city else "")
        return f"{origin} → {destination}"


class TravelAdvisorySync(RealtimeSyncManager[dict[str, Advisory]]):
    """Current advisories per authoring connection, keyed by advisory id."""

    channel_prefix = "travel_advisories"

    def __init__(self, backend: SafetyBackend, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(backend)
        self._clock = clock
        self.route_risk: RouteRiskSnapshot | None = None
        self._tracked_route_id: str | None = None
        self.fanouts = 0

    def build_filters(self, connection_ids: frozenset[str]) -> list[ChangeFilter]:
        return [
            ChangeFilter(table=TravelAdvisory.__tablename__, column="created_by_user_id", values=connection_ids),
            ChangeFilter(table=RouteRisk.__tablename__),
        ]

    def source_user_id(self, event: ChangeEvent) -> str | None:
        if event.table == TravelAdvisory.__tablename__:
            return event.new.get("created_by_user_id")
        return None

    def stop(self) -> None:
        super().stop()
        self.route_risk = None
        self._tracked_route_id = None

    def advisories(self) -> list[Advisory]:
        """Every tracked advisory, newest start date first."""
        items = [a for by_id in self.records.values() for a in by_id.values()]
        return sorted(items, key=lambda a: (a.start_date is not None, a.start_date), reverse=True)

    async def handle_event(self, event: ChangeEvent) -> None:
        if event.table == TravelAdvisory.__tablename__:
            await self._handle_advisory(Advisory.from_row(event.new))
        elif event.table == RouteRisk.__tablename__:
            await self._handle_route_risk(event.new)

    async def _handle_advisory(self, advisory: Advisory) -> None:
        author = advisory.created_by_user_id
        if author is None:
            return
        by_id = self.records.setdefault(author, {})
        if not advisory.is_current(self._clock()):
            by_id.pop(advisory.id, None)
            if not by_id:
                del self.records[author]
            return

        by_id[advisory.id] = advisory
        if advisory.is_high_risk and self.fire_once(("advisory", advisory.id)):
            await self._notify_advisory(advisory)

    async def _handle_route_risk(self, row: dict[str, Any]) -> None:
        if not row.get("id") or row["id"] != self._tracked_route_id:
            return
        previous = self.route_risk
        updated = RouteRiskSnapshot.from_row(row)
        self.route_risk = updated
        logger.debug("Route %s risk now %s", updated.id, updated.risk_score)
        if previous is not None and previous.risk_score < ROUTE_RISK_HIGH_SCORE <= updated.risk_score:
            await self._notify_route(updated)

    async def track_route(self, route_id: str) -> RouteRiskSnapshot | None:
        """Follow one route's risk. Notifies right away when it is already high."""
        self._tracked_route_id = route_id
        try:
            row = await self._backend.get_route_risk(route_id)
        except BackendError as exc:
            logger.error("Error getting route risk %s: %s", route_id, exc)
            return None
        self.route_risk = RouteRiskSnapshot.from_row(row) if row else None
        if self.route_risk is not None and self.route_risk.risk_score >= ROUTE_RISK_HIGH_SCORE:
            await self._notify_route(self.route_risk)
        return self.route_risk

    def clear_route(self) -> None:
        self._tracked_route_id = None
        self.route_risk = None

    # ---------- Fan-out ----------

    async def _notify_advisory(self, advisory: Advisory) -> None:
        emoji = "🚨" if advisory.risk_level == "critical" else "⚠️"
        title = f"{emoji} {risk_level_label(advisory.risk_level)} Travel Advisory"
        body = f"{advisory.title} ({advisory.location})" if advisory.location else advisory.title
        data = {
            "type": ADVISORY_NOTIFICATION_TYPE,
            "advisoryId": advisory.id,
            "riskLevel": advisory.risk_level,
            "state": advisory.state,
        }
        await self._fan_out(title, body, ADVISORY_NOTIFICATION_TYPE, data)

    async def _notify_route(self, route: RouteRiskSnapshot) -> None:
        level = route.level
        emoji = "🚨" if level == "critical" else "⚠️"
        title = f"{emoji} {risk_level_label(level)} Route"
        body = f"{route.route_info} (risk score {route.risk_score})"
        data = {
            "type": ROUTE_RISK_NOTIFICATION_TYPE,
            "routeId": route.id,
            "riskScore": route.risk_score,
            "riskLevel": level,
        }
        await self._fan_out(title, body, ROUTE_RISK_NOTIFICATION_TYPE, data)

    async def _fan_out(self, title: str, body: str, type: str, data: dict[str, Any]) -> None:
        if self.user_id is None:
            return
        try:
            recipients = await self._backend.get_connected_user_ids(self.user_id)
        except BackendError as exc:
            logger.error("Error getting connected user IDs for %s: %s", self.user_id, exc)
            return
        if not recipients:
            return

        self.fanouts += 1
        for recipient in recipients:
            try:
                await self._backend.insert_in_app_notification(recipient, title, body, type, data)
            except BackendError as exc:
                logger.error("Error creating %s notification for %s: %s", type, recipient, exc)
        try:
            result = await self._backend.send_push_notification(recipients, title, body, data)
        except (BackendError, PushDeliveryError) as exc:
            logger.error("Error pushing %s notification to connections of %s: %s", type, self.user_id, exc)
            return
        logger.info("%s fan-out from %s: %s sent, %s failed", type, self.user_id, result.sent, result.failed)
