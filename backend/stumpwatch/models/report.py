"""Public report model: the append-only evidence log for quorum counting."""
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stumpwatch.db import Base


class ReportKind(str, enum.Enum):
    START = "start"
    END = "end"
    MOVE = "move"
    CHECK = "check"


class Report(Base):
    """One anonymous signal. Never updated or deleted."""

    __tablename__ = "public_reports"
    __table_args__ = (
        UniqueConstraint("event_id", "kind", "reporter_hash", name="uq_public_reports_event_kind_reporter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[ReportKind] = mapped_column(String(16), nullable=False)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    reporter_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} event={self.event_id} kind={self.kind}>"
