"""Record of a proximity alert already delivered for a (user, incident) pair."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from famguard.core.timeutils import utcnow
from famguard.db.base import Base, new_id


class ProximityNotification(Base):
    __tablename__ = "incident_proximity_notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "incident_id", name="uq_proximity_user_incident"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    incident_id: Mapped[str] = mapped_column(String(36), nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    notified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
