"""Backend gateway: queries, mutations and change subscriptions used by the core.

Every method is a coroutine so callers can treat the backend as remote I/O.
Session work runs in a worker thread so the event loop keeps serving other
tasks while a query is in flight. SQLAlchemy failures surface as BackendError;
the only database error that is swallowed is the duplicate-key violation on
proximity dedup rows.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterator

from sqlalchemy import desc, inspect, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from famguard.core.realtime import (
    ChangeEvent,
    ChangeFeed,
    ChangeFilter,
    ChangeHandler,
    ChangeKind,
    ChannelHandle,
    StatusCallback,
)
from famguard.core.timeutils import as_utc, start_of_utc_day, utcnow
from famguard.models.check_in import UserCheckIn
from famguard.models.connection import Connection
from famguard.models.family_member import FamilyMember
from famguard.models.incident import Incident
from famguard.models.location_history import LocationHistory
from famguard.models.notification import Notification
from famguard.models.proximity_notification import ProximityNotification
from famguard.models.push_token import PushToken
from famguard.models.travel_advisory import RouteRisk, TravelAdvisory
from famguard.services.geo_service import haversine_km
from famguard.services.push_service import ExpoPushClient, PushResult

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when a backend read or write fails."""


class LiveScope(str, enum.Enum):
    CONNECTION = "connection"
    GROUP_MEMBER = "group_member"


@dataclass(frozen=True)
class ProximityMatch:
    """A user's live position within range of a recent incident."""

    user_id: str
    incident_id: str
    incident_title: str
    incident_category: str
    user_latitude: float
    user_longitude: float
    incident_latitude: float
    incident_longitude: float
    distance_km: float
    incident_created_at: datetime


@dataclass(frozen=True)
class ProximityNotificationRecord:
    user_id: str
    incident_id: str
    distance_km: float
    notified_at: datetime


@dataclass(frozen=True)
class LocationActivity:
    """Location freshness of one user with a registered device."""

    user_id: str
    registered_at: datetime
    last_recorded_at: datetime | None
    last_reminders: dict[str, datetime] = field(default_factory=dict)

    def last_reminder(self, reminder_type: str | None = None) -> datetime | None:
        """Newest reminder of `reminder_type`, or of any kind when omitted."""
        if reminder_type is not None:
            return self.last_reminders.get(reminder_type)
        return max(self.last_reminders.values(), default=None)


def row_to_dict(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance, keyed by attribute name."""
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


class SafetyBackend:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        feed: ChangeFeed | None = None,
        push_client: ExpoPushClient | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed if feed is not None else ChangeFeed()
        self._push_client = push_client

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            raise BackendError(str(exc)) from exc
        finally:
            db.close()

    async def _publish(self, table: str, kind: ChangeKind, new: dict[str, Any], old: dict[str, Any] | None = None) -> None:
        await self.feed.publish(ChangeEvent(table=table, kind=kind, new=new, old=old))

    # ---------- Location history + live position ----------

    async def insert_location_history(
        self,
        user_id: str,
        latitude: float,
        longitude: float,
        address: str | None = None,
        accuracy: float | None = None,
    ) -> str:
        """Always a fresh row; this path never updates history in place."""

        def _run() -> str:
            with self._session() as db:
                row = LocationHistory(
                    user_id=user_id,
                    latitude=latitude,
                    longitude=longitude,
                    address=address,
                    accuracy=accuracy,
                )
                db.add(row)
                db.commit()
                return row.id

        return await asyncio.to_thread(_run)

    async def find_group_member_id(self, group_id: str, user_id: str) -> str | None:
        def _run() -> str | None:
            with self._session() as db:
                stmt = (
                    select(FamilyMember.id)
                    .where(FamilyMember.family_group_id == group_id, FamilyMember.user_id == user_id)
                    .order_by(desc(FamilyMember.created_at))
                    .limit(1)
                )
                return db.execute(stmt).scalar_one_or_none()

        return await asyncio.to_thread(_run)

    async def list_connection_ids_pointing_at(self, user_id: str) -> list[str]:
        """Connection rows through which other users see `user_id`."""

        def _run() -> list[str]:
            with self._session() as db:
                stmt = select(Connection.id).where(
                    Connection.connected_user_id == user_id,
                    Connection.status == "connected",
                )
                return list(db.execute(stmt).scalars().all())

        return await asyncio.to_thread(_run)

    async def update_live_position(
        self,
        scope: LiveScope,
        target_id: str,
        latitude: float,
        longitude: float,
        address: str | None,
        timestamp: datetime,
    ) -> bool:
        """Overwrite the live position on one record. Returns False if it no longer exists."""

        def _run() -> bool:
            with self._session() as db:
                if scope is LiveScope.GROUP_MEMBER:
                    member = db.get(FamilyMember, target_id)
                    if member is None:
                        return False
                    member.location_latitude = latitude
                    member.location_longitude = longitude
                    member.location_address = address
                    member.last_seen = timestamp
                    member.is_online = True
                    member.share_location = True
                else:
                    conn = db.get(Connection, target_id)
                    if conn is None:
                        return False
                    conn.location_latitude = latitude
                    conn.location_longitude = longitude
                    conn.location_address = address
                    conn.location_updated_at = timestamp
                db.commit()
                return True

        return await asyncio.to_thread(_run)

    async def clear_live_position(self, user_id: str, group_id: str | None = None) -> None:
        """Null the user's live position everywhere it is exposed and mark them offline."""
        now = utcnow()

        def _run() -> None:
            with self._session() as db:
                members_stmt = select(FamilyMember).where(FamilyMember.user_id == user_id)
                if group_id:
                    members_stmt = members_stmt.where(FamilyMember.family_group_id == group_id)
                for member in db.execute(members_stmt).scalars().all():
                    member.location_latitude = None
                    member.location_longitude = None
                    member.location_address = None
                    member.is_online = False
                    member.share_location = False
                    member.last_seen = now
                conns = db.execute(select(Connection).where(Connection.connected_user_id == user_id)).scalars().all()
                for conn in conns:
                    conn.location_latitude = None
                    conn.location_longitude = None
                    conn.location_address = None
                    conn.location_updated_at = now
                db.commit()

        await asyncio.to_thread(_run)

    async def list_location_activity(self, notification_type: str) -> list[LocationActivity]:
        """Location freshness of every user with a push token.

        `registered_at` is the first device registration and `last_recorded_at`
        the newest location history insert. `last_reminders` holds the newest
        in-app notification of `notification_type` per `data["reminder_type"]`.
        """

        def _run() -> list[LocationActivity]:
            with self._session() as db:
                registered: dict[str, datetime] = {}
                for user_id, created_at in db.execute(select(PushToken.user_id, PushToken.created_at)):
                    ts = as_utc(created_at)
                    if user_id not in registered or ts < registered[user_id]:
                        registered[user_id] = ts
                if not registered:
                    return []
                user_ids = list(registered)
                recorded: dict[str, datetime] = {}
                history_stmt = select(LocationHistory.user_id, LocationHistory.created_at).where(
                    LocationHistory.user_id.in_(user_ids)
                )
                for user_id, created_at in db.execute(history_stmt):
                    ts = as_utc(created_at)
                    if user_id not in recorded or ts > recorded[user_id]:
                        recorded[user_id] = ts
                reminded: dict[str, dict[str, datetime]] = {}
                reminder_stmt = select(Notification.user_id, Notification.created_at, Notification.data).where(
                    Notification.user_id.in_(user_ids),
                    Notification.type == notification_type,
                )
                for user_id, created_at, data in db.execute(reminder_stmt):
                    kind = (data or {}).get("reminder_type", notification_type)
                    ts = as_utc(created_at)
                    per_user = reminded.setdefault(user_id, {})
                    if kind not in per_user or ts > per_user[kind]:
                        per_user[kind] = ts
            return [
                LocationActivity(
                    user_id=uid,
                    registered_at=registered[uid],
                    last_recorded_at=recorded.get(uid),
                    last_reminders=reminded.get(uid, {}),
                )
                for uid in sorted(registered)
            ]

        return await asyncio.to_thread(_run)

    # ---------- Connections ----------

    async def get_connected_user_ids(self, user_id: str) -> list[str]:
        """Users connected to `user_id` in either direction."""

        def _run() -> list[str]:
            with self._session() as db:
                stmt = select(Connection).where(
                    or_(Connection.user_id == user_id, Connection.connected_user_id == user_id),
                    Connection.status == "connected",
                )
                ids: set[str] = set()
                for conn in db.execute(stmt).scalars().all():
                    other = conn.connected_user_id if conn.user_id == user_id else conn.user_id
                    if other and other != user_id:
                        ids.add(other)
                return sorted(ids)

        return await asyncio.to_thread(_run)

    # ---------- Incidents + proximity ----------

    async def create_incident(
        self,
        category: str,
        title: str,
        latitude: float,
        longitude: float,
        description: str | None = None,
        reporter_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Incident:
        def _run() -> Incident:
            with self._session() as db:
                incident = Incident(
                    category=category,
                    title=title,
                    description=description,
                    latitude=latitude,
                    longitude=longitude,
                    reporter_id=reporter_id,
                )
                if created_at is not None:
                    incident.created_at = created_at
                db.add(incident)
                db.commit()
                db.refresh(incident)
                return incident

        return await asyncio.to_thread(_run)

    async def list_recent_incidents(self, max_age_hours: float, limit: int = 50) -> list[Incident]:
        cutoff = utcnow() - timedelta(hours=max_age_hours)

        def _run() -> list[Incident]:
            with self._session() as db:
                stmt = (
                    select(Incident)
                    .where(Incident.created_at >= cutoff)
                    .order_by(desc(Incident.created_at))
                    .limit(limit)
                )
                return list(db.execute(stmt).scalars().all())

        return await asyncio.to_thread(_run)

    async def query_proximity_matches(
        self,
        min_km: float,
        max_km: float,
        max_age_hours: float,
    ) -> list[ProximityMatch]:
        """
        Join every user's latest shared live position against incidents reported
        in the last `max_age_hours`, keeping pairs with min_km <= distance <= max_km.

        Pairs already recorded in the proximity dedup table are left out.
        Ordered by distance ascending, then most recent incident first.
        """
        cutoff = utcnow() - timedelta(hours=max_age_hours)

        def _load() -> tuple[list[Incident], dict[str, FamilyMember], set[tuple[str, str]]]:
            with self._session() as db:
                incidents = list(db.execute(select(Incident).where(Incident.created_at >= cutoff)).scalars().all())
                if not incidents:
                    return [], {}, set()

                members_stmt = select(FamilyMember).where(
                    FamilyMember.share_location.is_(True),
                    FamilyMember.location_latitude.is_not(None),
                    FamilyMember.location_longitude.is_not(None),
                )
                positions: dict[str, FamilyMember] = {}
                for member in db.execute(members_stmt).scalars().all():
                    current = positions.get(member.user_id)
                    if current is None or _seen_after(member, current):
                        positions[member.user_id] = member
                if not positions:
                    return incidents, {}, set()

                notified_stmt = select(ProximityNotification.user_id, ProximityNotification.incident_id).where(
                    ProximityNotification.incident_id.in_([i.id for i in incidents])
                )
                notified = {(row.user_id, row.incident_id) for row in db.execute(notified_stmt)}
                return incidents, positions, notified

        incidents, positions, notified = await asyncio.to_thread(_load)

        matches: list[ProximityMatch] = []
        for user_id, member in positions.items():
            for incident in incidents:
                if (user_id, incident.id) in notified:
                    continue
                distance = haversine_km(
                    member.location_latitude,
                    member.location_longitude,
                    incident.latitude,
                    incident.longitude,
                )
                if min_km <= distance <= max_km:
                    matches.append(
                        ProximityMatch(
                            user_id=user_id,
                            incident_id=incident.id,
                            incident_title=incident.title,
                            incident_category=incident.category,
                            user_latitude=member.location_latitude,
                            user_longitude=member.location_longitude,
                            incident_latitude=incident.latitude,
                            incident_longitude=incident.longitude,
                            distance_km=distance,
                            incident_created_at=as_utc(incident.created_at),
                        )
                    )
        matches.sort(key=lambda m: (m.distance_km, -m.incident_created_at.timestamp()))
        return matches

    async def has_been_notified_today(self, user_id: str) -> bool:
        """True if a proximity alert was recorded for the user since UTC midnight."""
        day_start = start_of_utc_day(utcnow())

        def _run() -> bool:
            with self._session() as db:
                stmt = (
                    select(ProximityNotification.id)
                    .where(
                        ProximityNotification.user_id == user_id,
                        ProximityNotification.notified_at >= day_start,
                    )
                    .limit(1)
                )
                return db.execute(stmt).first() is not None

        return await asyncio.to_thread(_run)

    async def insert_proximity_notification_records(self, records: list[ProximityNotificationRecord]) -> int:
        """Insert dedup rows one by one; duplicates of existing (user, incident) pairs are skipped.

        Returns the number of rows actually inserted.
        """

        def _run() -> int:
            inserted = 0
            with self._session() as db:
                for record in records:
                    db.add(
                        ProximityNotification(
                            user_id=record.user_id,
                            incident_id=record.incident_id,
                            distance_km=record.distance_km,
                            notified_at=record.notified_at,
                        )
                    )
                    try:
                        db.commit()
                        inserted += 1
                    except IntegrityError:
                        db.rollback()
                        logger.info(
                            "Proximity notification already recorded for user %s / incident %s (duplicate ignored)",
                            record.user_id,
                            record.incident_id,
                        )
            return inserted

        return await asyncio.to_thread(_run)

    # ---------- Notifications ----------

    async def send_push_notification(
        self,
        user_ids: list[str],
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> PushResult:
        """Push to every registered device of `user_ids`. Transport errors propagate as PushDeliveryError."""

        def _tokens() -> list[str]:
            with self._session() as db:
                return list(db.execute(select(PushToken.token).where(PushToken.user_id.in_(user_ids))).scalars().all())

        tokens = await asyncio.to_thread(_tokens)
        if self._push_client is None:
            return PushResult(total=len(tokens), failed=len(tokens), message="Push delivery is not configured")
        return await self._push_client.send(tokens, title, body, data)

    async def insert_in_app_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        type: str,
        data: dict[str, Any],
    ) -> str:
        def _run() -> str:
            with self._session() as db:
                notification = Notification(user_id=user_id, title=title, body=body, type=type, data=data, read=False)
                db.add(notification)
                db.commit()
                return notification.id

        return await asyncio.to_thread(_run)

    async def list_notifications(self, user_id: str, limit: int = 50) -> list[Notification]:
        def _run() -> list[Notification]:
            with self._session() as db:
                stmt = (
                    select(Notification)
                    .where(Notification.user_id == user_id)
                    .order_by(desc(Notification.created_at))
                    .limit(limit)
                )
                return list(db.execute(stmt).scalars().all())

        return await asyncio.to_thread(_run)

    async def register_push_token(self, user_id: str, token: str) -> None:
        """Attach `token` to `user_id`, moving it off any previous owner."""

        def _run() -> None:
            with self._session() as db:
                existing = db.execute(select(PushToken).where(PushToken.token == token)).scalar_one_or_none()
                if existing:
                    existing.user_id = user_id
                else:
                    db.add(PushToken(user_id=user_id, token=token))
                db.commit()

        await asyncio.to_thread(_run)

    # ---------- Change subscriptions ----------

    async def subscribe_to_changes(
        self,
        name: str,
        filters: list[ChangeFilter],
        handler: ChangeHandler,
        on_status: StatusCallback | None = None,
    ) -> ChannelHandle:
        return await self.feed.subscribe(name, filters, handler, on_status)

    def unsubscribe(self, handle: ChannelHandle) -> None:
        self.feed.unsubscribe(handle)

    # ---------- Check-ins ----------

    async def create_check_in(
        self,
        user_id: str,
        status: str = "safe",
        message: str | None = None,
        is_emergency: bool = False,
        latitude: float | None = None,
        longitude: float | None = None,
        address: str | None = None,
    ) -> dict[str, Any]:
        def _run() -> dict[str, Any]:
            with self._session() as db:
                check_in = UserCheckIn(
                    user_id=user_id,
                    check_in_type="emergency" if is_emergency else "manual",
                    status=status,
                    message=message,
                    is_emergency=is_emergency,
                    location_latitude=latitude,
                    location_longitude=longitude,
                    location_address=address,
                )
                db.add(check_in)
                db.commit()
                db.refresh(check_in)
                return row_to_dict(check_in)

        row = await asyncio.to_thread(_run)
        await self._publish(UserCheckIn.__tablename__, ChangeKind.INSERT, row)
        return row

    async def update_check_in_status(self, check_in_id: str, status: str) -> dict[str, Any]:
        def _run() -> tuple[dict[str, Any], dict[str, Any]]:
            with self._session() as db:
                check_in = db.get(UserCheckIn, check_in_id)
                if check_in is None:
                    raise ValueError("Check-in not found")
                old = row_to_dict(check_in)
                check_in.status = status
                db.commit()
                db.refresh(check_in)
                return row_to_dict(check_in), old

        row, old = await asyncio.to_thread(_run)
        await self._publish(UserCheckIn.__tablename__, ChangeKind.UPDATE, row, old)
        return row

    async def get_latest_check_ins(self, user_ids: list[str]) -> list[dict[str, Any]]:
        """Most recent check-in of each user in `user_ids`."""
        if not user_ids:
            return []

        def _run() -> list[dict[str, Any]]:
            with self._session() as db:
                stmt = (
                    select(UserCheckIn)
                    .where(UserCheckIn.user_id.in_(user_ids))
                    .order_by(desc(UserCheckIn.created_at))
                )
                latest: dict[str, dict[str, Any]] = {}
                for check_in in db.execute(stmt).scalars().all():
                    latest.setdefault(check_in.user_id, row_to_dict(check_in))
                return list(latest.values())

        return await asyncio.to_thread(_run)

    # ---------- Travel advisories + route risk ----------

    async def create_travel_advisory(self, **fields: Any) -> dict[str, Any]:
        def _run() -> dict[str, Any]:
            with self._session() as db:
                advisory = TravelAdvisory(**fields)
                db.add(advisory)
                db.commit()
                db.refresh(advisory)
                return row_to_dict(advisory)

        row = await asyncio.to_thread(_run)
        await self._publish(TravelAdvisory.__tablename__, ChangeKind.INSERT, row)
        return row

    async def update_travel_advisory(self, advisory_id: str, **changes: Any) -> dict[str, Any]:
        def _run() -> tuple[dict[str, Any], dict[str, Any]]:
            with self._session() as db:
                advisory = db.get(TravelAdvisory, advisory_id)
                if advisory is None:
                    raise ValueError("Travel advisory not found")
                old = row_to_dict(advisory)
                for key, value in changes.items():
                    setattr(advisory, key, value)
                db.commit()
                db.refresh(advisory)
                return row_to_dict(advisory), old

        row, old = await asyncio.to_thread(_run)
        await self._publish(TravelAdvisory.__tablename__, ChangeKind.UPDATE, row, old)
        return row

    async def upsert_route_risk(self, route_id: str | None = None, **fields: Any) -> dict[str, Any]:
        def _run() -> tuple[dict[str, Any], dict[str, Any] | None]:
            with self._session() as db:
                route = db.get(RouteRisk, route_id) if route_id else None
                old = row_to_dict(route) if route is not None else None
                if route is None:
                    route = RouteRisk(**fields)
                    if route_id:
                        route.id = route_id
                    db.add(route)
                else:
                    for key, value in fields.items():
                        setattr(route, key, value)
                    route.last_updated = utcnow()
                db.commit()
                db.refresh(route)
                return row_to_dict(route), old

        row, old = await asyncio.to_thread(_run)
        kind = ChangeKind.INSERT if old is None else ChangeKind.UPDATE
        await self._publish(RouteRisk.__tablename__, kind, row, old)
        return row

    async def get_route_risk(self, route_id: str) -> dict[str, Any] | None:
        def _run() -> dict[str, Any] | None:
            with self._session() as db:
                route = db.get(RouteRisk, route_id)
                return row_to_dict(route) if route is not None else None

        return await asyncio.to_thread(_run)


def _seen_after(member: FamilyMember, other: FamilyMember) -> bool:
    if member.last_seen is None:
        return False
    if other.last_seen is None:
        return True
    return as_utc(member.last_seen) > as_utc(other.last_seen)
