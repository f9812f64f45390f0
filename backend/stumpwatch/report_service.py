"""Public report intake.

Stores one anonymous start/end/move/check signal per (event, kind, reporter),
then promotes the event on quorum or refreshes its move hints.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.errors import EventNotFound, ReportConflict
from stumpwatch.event_state_service import (
    PromotionOutcome,
    apply_quorum_promotion,
    load_event_for_update,
)
from stumpwatch.metrics import REPORT_CONFLICTS_TOTAL, REPORTS_ACCEPTED_TOTAL
from stumpwatch.models.event import Event
from stumpwatch.models.report import Report, ReportKind
from stumpwatch.move_hints import HintSyncPlan, sync_move_hints
from stumpwatch.state_engine import is_promotable_kind, kind_name

logger = logging.getLogger(__name__)

REALTIME_TRIGGER = "auto-promotion"


@dataclass(slots=True)
class ReportOutcome:
    report: Report
    promotion: PromotionOutcome | None = None
    hints: HintSyncPlan | None = None


async def submit_report(
    session: AsyncSession,
    *,
    event_id: int,
    kind: ReportKind | str,
    fingerprint: str,
    lat: float | None = None,
    lng: float | None = None,
) -> ReportOutcome:
    """Append a report and run the follow-up for its kind.

    Raises `ReportConflict` when this reporter already sent this kind for this
    event. The unique index decides, so concurrent duplicates cannot both land.
    """
    kind_value = kind_name(kind)
    if await session.get(Event, event_id) is None:
        raise EventNotFound(event_id)

    report = Report(
        event_id=event_id,
        kind=kind_value,
        lat=lat,
        lng=lng,
        reporter_hash=fingerprint,
    )
    session.add(report)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        REPORT_CONFLICTS_TOTAL.labels(kind=kind_value).inc()
        logger.info("Duplicate %s report for event %s ignored", kind_value, event_id)
        raise ReportConflict(event_id, kind_value) from exc
    REPORTS_ACCEPTED_TOTAL.labels(kind=kind_value).inc()

    outcome = ReportOutcome(report=report)
    if is_promotable_kind(kind_value):
        event = await load_event_for_update(session, event_id)
        if event is None:
            raise EventNotFound(event_id)
        outcome.promotion = await apply_quorum_promotion(
            session,
            event=event,
            kind=kind_value,
            trigger=REALTIME_TRIGGER,
        )
        await session.commit()
        if outcome.promotion.promoted:
            logger.info(
                "Event %s promoted %s -> %s after %s %s reports",
                event_id,
                outcome.promotion.from_status,
                outcome.promotion.to_status,
                outcome.promotion.report_count,
                kind_value,
            )
    elif kind_value == ReportKind.MOVE.value and lat is not None and lng is not None:
        outcome.hints = await sync_move_hints(session, event_id)
        await session.commit()

    return outcome
