"""
SQLAlchemy declarative base and shared column helpers.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import DeclarativeBase


def utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all LoCall SQLAlchemy models.

    Every tenant-scoped table carries a ``workspace_id`` column.
    """

    pass
