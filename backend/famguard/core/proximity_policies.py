"""Incident proximity and safety-signal policy constants."""

from __future__ import annotations

# Distance window for matching users against incidents. Kept two-sided so a
# minimum radius can be introduced without touching the query contract.
MIN_DISTANCE_KM = 0.0
MAX_DISTANCE_KM = 10.0

# Only incidents reported within this many hours are considered
MAX_INCIDENT_AGE_HOURS = 1

# Severity tiers by distance (inclusive upper bounds, km)
DANGER_MAX_KM = 3.0
WARNING_MAX_KM = 6.0

# Sweep cadence
CHECK_INTERVAL_SECONDS = 15 * 60
INITIAL_CHECK_DELAY_SECONDS = 10

# In-app notification type for proximity alerts
PROXIMITY_NOTIFICATION_TYPE = "incident_proximity"

# Coordinates closer than this to (0, 0) are treated as a GPS failure sentinel
NULL_ISLAND_EPSILON = 1e-4

# Route risk score (0-100) thresholds
ROUTE_RISK_HIGH_SCORE = 40
ROUTE_RISK_CRITICAL_SCORE = 70

# Travel advisory risk levels that fan out to connections
HIGH_RISK_ADVISORY_LEVELS = frozenset({"high", "critical"})

# Stale-location reminders
LOCATION_REMINDER_TYPE = "location_reminder"
BACKGROUND_STOPPED_HOURS = 4
MISSING_LOCATION_HOURS = 28
# Users whose first device registered more recently than this are left alone
REMINDER_GRACE_HOURS = 24
REMINDER_CHECK_INTERVAL_SECONDS = 60 * 60
