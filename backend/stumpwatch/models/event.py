"""Event and EventHistory models."""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stumpwatch.db import Base


class EventStatus(str, enum.Enum):
    """Lifecycle of a street speech event. Automatic promotion only moves forward."""

    PLANNED = "PLANNED"
    LIVE = "LIVE"
    ENDED = "ENDED"


class Event(Base):
    """A scheduled street speech by a candidate."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[EventStatus] = mapped_column(
        String(16), default=EventStatus.PLANNED.value, nullable=False, index=True
    )
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_unknown: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    location_text: Mapped[str] = mapped_column(Text, nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} status={self.status}>"


class EventHistory(Base):
    """Append-only before/after snapshot of an event mutation."""

    __tablename__ = "event_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    from_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    from_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    from_end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    to_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    to_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    to_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    to_start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    to_end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reason: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<EventHistory event={self.event_id} reason={self.reason!r}>"
