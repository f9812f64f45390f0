"""ChangeRequest model: structured proposals awaiting review."""
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from stumpwatch.db import Base


class RequestType(str, enum.Enum):
    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    REPORT_START = "REPORT_START"
    REPORT_END = "REPORT_END"
    REPORT_MOVE = "REPORT_MOVE"
    REPORT_TIME_CHANGE = "REPORT_TIME_CHANGE"
    REPORT_RIVAL_EVENT = "REPORT_RIVAL_EVENT"


class RequestStatus(str, enum.Enum):
    """PENDING is the only non-terminal state."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"


class ChangeRequest(Base):
    __tablename__ = "public_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[RequestType] = mapped_column(String(32), nullable=False, index=True)
    candidate_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True
    )
    rival_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload_json: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    dedupe_key: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True, comment="Advisory grouping key, never unique"
    )
    status: Mapped[RequestStatus] = mapped_column(
        String(16), default=RequestStatus.PENDING.value, nullable=False, index=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ChangeRequest id={self.id} type={self.type} status={self.status}>"
