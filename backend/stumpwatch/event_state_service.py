"""Event mutation persistence helpers.

Centralizes updates to `events` and the matching `event_history` rows. Every
mutation writes its history row before the event is changed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.metrics import EVENT_HISTORY_WRITES_TOTAL, QUORUM_PROMOTIONS_TOTAL
from stumpwatch.models.event import Event, EventHistory, EventStatus
from stumpwatch.models.report import Report, ReportKind
from stumpwatch.state_engine import evaluate_promotion, kind_name, quorum_reason, status_name

# event attribute -> history column suffix
TRACKED_FIELDS = {
    "lat": "lat",
    "lng": "lng",
    "location_text": "text",
    "start_at": "start_at",
    "end_at": "end_at",
    "status": "status",
}


@dataclass(slots=True)
class PromotionOutcome:
    kind: str
    report_count: int
    from_status: str
    to_status: str | None = None

    @property
    def promoted(self) -> bool:
        return self.to_status is not None


def _history_value(field: str, value: Any) -> Any:
    if field == "status" and value is not None:
        return status_name(value)
    return value


async def apply_event_changes(
    session: AsyncSession,
    *,
    event: Event,
    changes: dict[str, Any],
    reason: str,
) -> EventHistory:
    """Append a before/after history row, then mutate the event."""
    unknown = set(changes) - set(TRACKED_FIELDS)
    if unknown:
        raise ValueError(f"Untracked event fields: {sorted(unknown)}")

    row = EventHistory(event_id=event.id, reason=reason[:256], created_at=datetime.now(timezone.utc))
    for attr, suffix in TRACKED_FIELDS.items():
        before = _history_value(attr, getattr(event, attr))
        after = _history_value(attr, changes.get(attr, getattr(event, attr)))
        setattr(row, f"from_{suffix}", before)
        setattr(row, f"to_{suffix}", after)
    session.add(row)
    # History must hit the store ahead of the mutation it documents.
    await session.flush()

    for attr, value in changes.items():
        setattr(event, attr, status_name(value) if attr == "status" else value)
    event.updated_at = datetime.now(timezone.utc)
    EVENT_HISTORY_WRITES_TOTAL.labels(reason=reason.split(":", 1)[0][:64]).inc()
    return row


async def transition_event_status(
    session: AsyncSession,
    *,
    event: Event,
    new_status: EventStatus,
    status_reason: str,
) -> bool:
    """Update event status and append history row.

    Returns `True` when status changed, else `False`.
    """
    if status_name(event.status) == status_name(new_status):
        return False
    await apply_event_changes(
        session,
        event=event,
        changes={"status": new_status},
        reason=status_reason,
    )
    return True


async def count_reports(session: AsyncSession, *, event_id: int, kind: ReportKind | str) -> int:
    """Fresh count from the report log."""
    return int(
        (
            await session.execute(
                select(func.count(Report.id)).where(
                    Report.event_id == event_id,
                    Report.kind == kind_name(kind),
                )
            )
        ).scalar()
        or 0
    )


async def apply_quorum_promotion(
    session: AsyncSession,
    *,
    event: Event,
    kind: ReportKind | str,
    trigger: str,
    quorum: int | None = None,
) -> PromotionOutcome:
    """Count reports of `kind` and promote the event if the shared rule says so.

    Safe to call repeatedly or concurrently: a no-op once the event is at or
    past the target status.
    """
    report_count = await count_reports(session, event_id=event.id, kind=kind)
    outcome = PromotionOutcome(
        kind=kind_name(kind),
        report_count=report_count,
        from_status=status_name(event.status),
    )
    target = evaluate_promotion(event.status, kind, report_count, quorum=quorum)
    if target is None:
        return outcome

    changed = await transition_event_status(
        session,
        event=event,
        new_status=target,
        status_reason=quorum_reason(kind, report_count, trigger=trigger),
    )
    if changed:
        outcome.to_status = target.value
        QUORUM_PROMOTIONS_TOTAL.labels(
            kind=outcome.kind,
            to_status=target.value,
            trigger=trigger,
        ).inc()
    return outcome


async def load_event_for_update(session: AsyncSession, event_id: int) -> Event | None:
    """Re-read the event row, locked on PostgreSQL, bypassing stale identity-map state."""
    return (
        await session.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar()
