"""Auto-promotion sweep for REPORT_START / REPORT_END change requests.

Cron twin of the real-time quorum check in `report_service`. Heals missed
promotions and resolves start/end proposals captured through the request path.
Every row commits on its own; a failing row is counted and skipped.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.celery_app import celery
from stumpwatch.config import settings
from stumpwatch.db import async_session_factory, engine
from stumpwatch.errors import EventNotFound
from stumpwatch.event_state_service import apply_quorum_promotion, count_reports, load_event_for_update
from stumpwatch.metrics import AUTO_PROMOTION_SWEEP_TOTAL
from stumpwatch.models.change_request import ChangeRequest, RequestStatus, RequestType
from stumpwatch.models.report import ReportKind

logger = logging.getLogger(__name__)

SWEEP_TRIGGER = "auto-approval"
SYSTEM_REVIEWER = "system:auto-promotion"

REQUEST_KINDS = {
    RequestType.REPORT_START.value: ReportKind.START,
    RequestType.REPORT_END.value: ReportKind.END,
}


@dataclass(slots=True)
class SweepResult:
    processed: int = 0
    approved: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


async def _promote_request(
    session: AsyncSession,
    *,
    request_id: int,
    request_type: str,
    event_id: int,
    quorum: int,
    now: datetime,
) -> bool:
    kind = REQUEST_KINDS[request_type]
    report_count = await count_reports(session, event_id=event_id, kind=kind)
    if report_count < quorum:
        return False

    event = await load_event_for_update(session, event_id)
    if event is None:
        raise EventNotFound(event_id)
    await apply_quorum_promotion(
        session,
        event=event,
        kind=kind,
        trigger=SWEEP_TRIGGER,
        quorum=quorum,
    )
    result = await session.execute(
        update(ChangeRequest)
        .where(
            ChangeRequest.id == request_id,
            ChangeRequest.status == RequestStatus.PENDING.value,
        )
        .values(
            status=RequestStatus.APPROVED.value,
            reviewed_at=now,
            reviewed_by=SYSTEM_REVIEWER,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def sweep_pending_report_requests(
    session: AsyncSession,
    *,
    quorum: int | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """Approve every pending start/end request whose event reached quorum."""
    needed = settings.REPORT_QUORUM if quorum is None else quorum
    stamp = now or datetime.now(timezone.utc)
    rows = (
        await session.execute(
            select(ChangeRequest.id, ChangeRequest.type, ChangeRequest.event_id)
            .where(
                ChangeRequest.type.in_(list(REQUEST_KINDS)),
                ChangeRequest.status == RequestStatus.PENDING.value,
                ChangeRequest.event_id.is_not(None),
            )
            .order_by(ChangeRequest.created_at.asc(), ChangeRequest.id.asc())
        )
    ).all()

    result = SweepResult(processed=len(rows))
    for request_id, request_type, event_id in rows:
        try:
            approved = await _promote_request(
                session,
                request_id=int(request_id),
                request_type=str(request_type),
                event_id=int(event_id),
                quorum=needed,
                now=stamp,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            result.errors += 1
            AUTO_PROMOTION_SWEEP_TOTAL.labels(outcome="error").inc()
            logger.exception("Auto-promotion failed for request %s", request_id)
            continue
        if approved:
            result.approved += 1
            AUTO_PROMOTION_SWEEP_TOTAL.labels(outcome="approved").inc()
        else:
            AUTO_PROMOTION_SWEEP_TOTAL.labels(outcome="pending").inc()
    return result


@celery.task(name="stumpwatch.workers.auto_promotion.run_auto_promotion")
def run_auto_promotion() -> dict[str, int]:
    return asyncio.run(_run_auto_promotion())


async def _run_auto_promotion() -> dict[str, int]:
    try:
        async with async_session_factory() as session:
            result = await sweep_pending_report_requests(session)
    finally:
        # Each asyncio.run gets a fresh loop; pooled connections cannot follow.
        await engine.dispose()

    if result.approved or result.errors:
        logger.info(
            "Auto-promotion sweep approved %s of %s requests (%s errors)",
            result.approved,
            result.processed,
            result.errors,
        )
    return result.as_dict()
