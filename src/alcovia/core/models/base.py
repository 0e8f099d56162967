"""
SQLAlchemy Base Model and Mixins

Provides base class and common mixins for all Alcovia models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, event, func
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that always round-trips as UTC.

    Backends without native timezone support (SQLite) hand back naive
    values; those are stored and read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {datetime: UTCDateTime()}


class UUIDPrimaryKeyMixin:
    """Mixin for UUID primary key.

    Internal row identity only; students are addressed by their external
    ``student_id``.
    """

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4, comment="UUID primary key")


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps.

    All timestamps use UTC (timezone-aware).
    """

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="Creation timestamp (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="Last update timestamp (UTC)",
    )


# Event listeners to auto-generate UUIDs and timestamps for in-memory objects
@event.listens_for(UUIDPrimaryKeyMixin, "init", propagate=True)
def receive_init_uuid(target, args, kwargs):  # type: ignore[no-untyped-def]
    """Auto-generate UUID on instance creation if not provided."""
    if "id" not in kwargs:
        target.id = uuid4()


@event.listens_for(TimestampMixin, "init", propagate=True)
def receive_init_timestamps(target, args, kwargs):  # type: ignore[no-untyped-def]
    """Auto-generate timestamps on instance creation if not provided."""
    now = utcnow()
    if "created_at" not in kwargs:
        target.created_at = now
    if "updated_at" not in kwargs:
        target.updated_at = now
