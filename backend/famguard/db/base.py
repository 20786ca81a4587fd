"""SQLAlchemy base."""

from __future__ import annotations

import uuid

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def new_id() -> str:
    """Primary key default: random UUID as a string."""
    return str(uuid.uuid4())
