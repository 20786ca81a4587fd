"""SQLAlchemy models."""

from __future__ import annotations

from famguard.models.check_in import UserCheckIn
from famguard.models.connection import Connection
from famguard.models.family_member import FamilyMember
from famguard.models.incident import Incident
from famguard.models.location_history import LocationHistory
from famguard.models.notification import Notification
from famguard.models.proximity_notification import ProximityNotification
from famguard.models.push_token import PushToken
from famguard.models.travel_advisory import RouteRisk, TravelAdvisory

__all__ = [
    "Connection",
    "FamilyMember",
    "Incident",
    "LocationHistory",
    "Notification",
    "ProximityNotification",
    "PushToken",
    "RouteRisk",
    "TravelAdvisory",
    "UserCheckIn",
]
