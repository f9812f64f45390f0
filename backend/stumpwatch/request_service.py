"""Change-request intake: stores structured proposals as PENDING for review."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.config import settings
from stumpwatch.dedupe import dedupe_key_for_request
from stumpwatch.errors import EventNotFound, Throttled
from stumpwatch.metrics import CHANGE_REQUESTS_THROTTLED_TOTAL, CHANGE_REQUESTS_TOTAL
from stumpwatch.models.change_request import ChangeRequest, RequestStatus, RequestType
from stumpwatch.models.event import Event
from stumpwatch.schemas.submissions import ChangeRequestSubmission

logger = logging.getLogger(__name__)


def normalize_payload(submission: ChangeRequestSubmission) -> dict:
    """Older clients sent the CREATE_EVENT position outside the payload."""
    payload = dict(submission.payload)
    if submission.type == RequestType.CREATE_EVENT and submission.has_position:
        if payload.get("lat") is None or payload.get("lng") is None:
            payload["lat"] = submission.lat
            payload["lng"] = submission.lng
    return payload


def _as_float(value) -> float | None:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


async def submit_change_request(
    session: AsyncSession,
    submission: ChangeRequestSubmission,
    *,
    throttle,
    now: datetime | None = None,
) -> ChangeRequest:
    """Persist a proposal as PENDING. Never applies it.

    The throttle slot is reserved up front and handed back when the request
    does not end up stored.
    """
    try:
        slot = await throttle.acquire()
    except Throttled:
        CHANGE_REQUESTS_THROTTLED_TOTAL.inc()
        logger.warning("Change request throttled", extra={"type": submission.type.value})
        raise

    try:
        row = await _store_request(session, submission, now=now)
    except Exception:
        await throttle.release(slot)
        raise

    CHANGE_REQUESTS_TOTAL.labels(type=submission.type.value).inc()
    logger.info(
        f"Change request {row.id} stored as PENDING",
        extra={"type": submission.type.value, "dedupe_key": row.dedupe_key},
    )
    return row


async def _store_request(
    session: AsyncSession,
    submission: ChangeRequestSubmission,
    *,
    now: datetime | None,
) -> ChangeRequest:
    if submission.event_id is not None and await session.get(Event, submission.event_id) is None:
        raise EventNotFound(submission.event_id)

    payload = normalize_payload(submission)
    dedupe_key = None
    if submission.type == RequestType.CREATE_EVENT:
        try:
            dedupe_key = dedupe_key_for_request(
                submission.candidate_id,
                payload,
                _as_float(payload.get("lat")),
                _as_float(payload.get("lng")),
                tz_name=settings.EVENT_TIMEZONE,
                now=now,
            )
        except ValueError:
            # Unparseable startAt: keep the request, just never auto-group it.
            dedupe_key = None

    row = ChangeRequest(
        type=submission.type.value,
        candidate_id=submission.candidate_id,
        event_id=submission.event_id,
        rival_event_id=submission.rival_event_id,
        payload_json=payload,
        dedupe_key=dedupe_key,
        status=RequestStatus.PENDING.value,
        created_at=now or datetime.now(timezone.utc),
    )
    session.add(row)
    await session.commit()
    return row
