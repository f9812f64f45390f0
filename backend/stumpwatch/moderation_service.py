"""Reviewer-triggered bulk approve/reject of change requests.

Approvals are applied one request at a time, each in its own commit. A request
is marked APPROVED only when its apply step fully succeeds; otherwise it stays
PENDING and the failure is reported as a warning. After the approvals, pending
requests that share a dedupe key with a newly approved one become DUPLICATE.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Literal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.dedupe import parse_timestamp
from stumpwatch.errors import ApplyError, NoPendingRequests
from stumpwatch.event_state_service import apply_event_changes, load_event_for_update
from stumpwatch.metrics import MODERATION_OUTCOMES_TOTAL
from stumpwatch.models.change_request import ChangeRequest, RequestStatus, RequestType
from stumpwatch.models.event import Event, EventStatus
from stumpwatch.move_hints import sync_move_hints

logger = logging.getLogger(__name__)

ModerationAction = Literal["approve", "reject"]


@dataclass(slots=True)
class ApplyResult:
    request_id: int
    request_type: str
    ok: bool
    message: str | None = None
    event_id: int | None = None

    @classmethod
    def success(cls, req: ChangeRequest, *, event_id: int | None = None) -> "ApplyResult":
        return cls(req.id, _type_name(req.type), True, event_id=event_id)

    @classmethod
    def failure(cls, request_id: int, request_type: str, message: str) -> "ApplyResult":
        return cls(request_id, request_type, False, message=message)


@dataclass(slots=True)
class ModerationSummary:
    action: str
    approved_count: int = 0
    rejected_count: int = 0
    duplicate_count: int = 0
    warnings: list[str] = field(default_factory=list)
    results: list[ApplyResult] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return self.approved_count + self.rejected_count

    @property
    def approved_ids(self) -> list[int]:
        return [r.request_id for r in self.results if r.ok]


def fold_apply_results(action: str, results: Iterable[ApplyResult]) -> ModerationSummary:
    summary = ModerationSummary(action=action)
    for result in results:
        summary.results.append(result)
        if result.ok:
            summary.approved_count += 1
        else:
            summary.warnings.append(f"Request {result.request_id} ({result.request_type}): {result.message}")
    return summary


def _type_name(value: RequestType | str) -> str:
    if isinstance(value, RequestType):
        return value.value
    raw = str(value)
    if raw.startswith("RequestType."):
        return raw.split(".", 1)[1]
    return raw


def _float_field(payload: dict[str, Any], *names: str) -> float | None:
    for name in names:
        value = payload.get(name)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ApplyError(f"{name} is not a number: {value!r}") from exc
    return None


def _time_field(payload: dict[str, Any], name: str) -> datetime | None:
    try:
        return parse_timestamp(payload.get(name))
    except (TypeError, ValueError) as exc:
        raise ApplyError(f"{name} is not an ISO-8601 timestamp: {payload.get(name)!r}") from exc


async def _require_event(session: AsyncSession, req: ChangeRequest) -> Event:
    if req.event_id is None:
        raise ApplyError("request has no event reference")
    event = await load_event_for_update(session, req.event_id)
    if event is None:
        raise ApplyError(f"event {req.event_id} no longer exists")
    return event


async def _apply_create_event(session: AsyncSession, req: ChangeRequest) -> int:
    payload = dict(req.payload_json or {})
    candidate_id = req.candidate_id if req.candidate_id is not None else payload.get("candidateId")
    if candidate_id is None:
        raise ApplyError("candidate is missing")
    location_text = str(payload.get("locationText") or "").strip()
    if not location_text:
        raise ApplyError("locationText is required")
    lat = _float_field(payload, "lat")
    lng = _float_field(payload, "lng")
    if lat is None or lng is None:
        raise ApplyError(
            "latitude/longitude missing; this request predates mandatory map positions, "
            "add a position before approving"
        )
    start_at = _time_field(payload, "startAt")
    end_at = _time_field(payload, "endAt")
    time_unknown = payload.get("timeUnknown")
    if time_unknown is None:
        time_unknown = start_at is None and end_at is None

    event = Event(
        candidate_id=int(candidate_id),
        status=EventStatus.PLANNED.value,
        start_at=start_at,
        end_at=end_at,
        time_unknown=bool(time_unknown),
        location_text=location_text,
        lat=lat,
        lng=lng,
    )
    session.add(event)
    await session.flush()
    return event.id


async def _apply_quorum_only(session: AsyncSession, req: ChangeRequest) -> None:
    raise ApplyError(
        f"{_type_name(req.type)} is resolved automatically once enough public reports arrive; "
        "it cannot be approved directly"
    )


async def _apply_move(session: AsyncSession, req: ChangeRequest) -> int:
    payload = dict(req.payload_json or {})
    lat = _float_field(payload, "newLat", "lat")
    lng = _float_field(payload, "newLng", "lng")
    if lat is None or lng is None:
        raise ApplyError("new position is missing")
    event = await _require_event(session, req)
    await apply_event_changes(
        session,
        event=event,
        changes={"lat": lat, "lng": lng},
        reason=f"request {req.id}: REPORT_MOVE approved",
    )
    await sync_move_hints(session, event.id)
    return event.id


async def _apply_time_change(session: AsyncSession, req: ChangeRequest) -> int:
    payload = dict(req.payload_json or {})
    start_at = _time_field(payload, "newStartAt")
    end_at = _time_field(payload, "newEndAt")
    event = await _require_event(session, req)
    await apply_event_changes(
        session,
        event=event,
        changes={"start_at": start_at, "end_at": end_at},
        reason=f"request {req.id}: REPORT_TIME_CHANGE approved",
    )
    event.time_unknown = start_at is None and end_at is None
    return event.id


async def _apply_update(session: AsyncSession, req: ChangeRequest) -> int:
    payload = dict(req.payload_json or {})
    changes: dict[str, Any] = {}
    if "locationText" in payload:
        text = str(payload.get("locationText") or "").strip()
        if not text:
            raise ApplyError("locationText cannot be blank")
        changes["location_text"] = text
    lat = _float_field(payload, "lat")
    lng = _float_field(payload, "lng")
    if (lat is None) != (lng is None):
        raise ApplyError("lat and lng must be updated together")
    if lat is not None:
        changes["lat"] = lat
        changes["lng"] = lng
    if "startAt" in payload:
        changes["start_at"] = _time_field(payload, "startAt")
    if "endAt" in payload:
        changes["end_at"] = _time_field(payload, "endAt")
    if not changes and "timeUnknown" not in payload:
        raise ApplyError("payload has no updatable fields")

    event = await _require_event(session, req)
    if changes:
        await apply_event_changes(
            session,
            event=event,
            changes=changes,
            reason=f"request {req.id}: UPDATE_EVENT approved",
        )
    if "timeUnknown" in payload:
        event.time_unknown = bool(payload["timeUnknown"])
    elif "start_at" in changes or "end_at" in changes:
        event.time_unknown = event.start_at is None and event.end_at is None
    if "lat" in changes:
        await sync_move_hints(session, event.id)
    return event.id


async def _apply_rival_report(session: AsyncSession, req: ChangeRequest) -> None:
    # Reviewer acknowledgement only, no event mutation.
    return None


APPLIERS: dict[str, Callable[[AsyncSession, ChangeRequest], Awaitable[int | None]]] = {
    RequestType.CREATE_EVENT.value: _apply_create_event,
    RequestType.UPDATE_EVENT.value: _apply_update,
    RequestType.REPORT_START.value: _apply_quorum_only,
    RequestType.REPORT_END.value: _apply_quorum_only,
    RequestType.REPORT_MOVE.value: _apply_move,
    RequestType.REPORT_TIME_CHANGE.value: _apply_time_change,
    RequestType.REPORT_RIVAL_EVENT.value: _apply_rival_report,
}


async def _pending_ids(session: AsyncSession, ids: list[int]) -> list[int]:
    rows = (
        await session.execute(
            select(ChangeRequest.id)
            .where(
                ChangeRequest.id.in_(ids),
                ChangeRequest.status == RequestStatus.PENDING.value,
            )
            .order_by(ChangeRequest.created_at.asc(), ChangeRequest.id.asc())
        )
    ).scalars().all()
    return [int(r) for r in rows]


async def _approve_one(
    session: AsyncSession,
    request_id: int,
    *,
    reviewer: str,
    note: str | None,
    now: datetime,
) -> ApplyResult | None:
    req = (
        await session.execute(
            select(ChangeRequest)
            .where(
                ChangeRequest.id == request_id,
                ChangeRequest.status == RequestStatus.PENDING.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar()
    if req is None:
        # Resolved by someone else since the batch was read.
        return None
    request_type = _type_name(req.type)
    applier = APPLIERS.get(request_type)
    try:
        if applier is None:
            raise ApplyError(f"unsupported request type {request_type}")
        event_id = await applier(session, req)
        req.status = RequestStatus.APPROVED.value
        req.reviewed_at = now
        req.reviewed_by = reviewer
        req.review_note = note
        await session.commit()
    except ApplyError as exc:
        await session.rollback()
        MODERATION_OUTCOMES_TOTAL.labels(action="approve", outcome="apply_error").inc()
        logger.info("Request %s left pending: %s", request_id, exc)
        return ApplyResult.failure(request_id, request_type, str(exc))
    except Exception as exc:
        await session.rollback()
        MODERATION_OUTCOMES_TOTAL.labels(action="approve", outcome="error").inc()
        logger.exception("Unexpected failure applying request %s", request_id)
        return ApplyResult.failure(request_id, request_type, f"unexpected error: {exc}")

    MODERATION_OUTCOMES_TOTAL.labels(action="approve", outcome="approved").inc()
    return ApplyResult.success(req, event_id=event_id)


async def _mark_duplicates(
    session: AsyncSession,
    *,
    approved_ids: list[int],
    batch_ids: list[int],
    reviewer: str,
    now: datetime,
) -> int:
    if not approved_ids:
        return 0
    keys = (
        await session.execute(
            select(ChangeRequest.dedupe_key)
            .where(
                ChangeRequest.id.in_(approved_ids),
                ChangeRequest.dedupe_key.is_not(None),
            )
            .distinct()
        )
    ).scalars().all()
    if not keys:
        return 0
    result = await session.execute(
        update(ChangeRequest)
        .where(
            ChangeRequest.dedupe_key.in_(list(keys)),
            ChangeRequest.id.notin_(batch_ids),
            ChangeRequest.status == RequestStatus.PENDING.value,
        )
        .values(
            status=RequestStatus.DUPLICATE.value,
            reviewed_at=now,
            reviewed_by=reviewer,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    marked = int(result.rowcount or 0)
    if marked:
        MODERATION_OUTCOMES_TOTAL.labels(action="approve", outcome="duplicate").inc(marked)
    return marked


async def resolve_requests(
    session: AsyncSession,
    *,
    ids: Iterable[int],
    action: ModerationAction,
    reviewer: str,
    note: str | None = None,
    now: datetime | None = None,
) -> ModerationSummary:
    """Approve or reject a batch of change requests.

    Raises `NoPendingRequests` when none of `ids` is pending. Per-item apply
    failures never raise; they come back as warnings.
    """
    if action not in ("approve", "reject"):
        raise ValueError(f"Invalid moderation action: {action!r}")
    batch_ids = list(dict.fromkeys(int(i) for i in ids))
    stamp = now or datetime.now(timezone.utc)

    pending = await _pending_ids(session, batch_ids)
    if not pending:
        raise NoPendingRequests(batch_ids)

    if action == "reject":
        result = await session.execute(
            update(ChangeRequest)
            .where(
                ChangeRequest.id.in_(pending),
                ChangeRequest.status == RequestStatus.PENDING.value,
            )
            .values(
                status=RequestStatus.REJECTED.value,
                reviewed_at=stamp,
                reviewed_by=reviewer,
                review_note=note,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        summary = ModerationSummary(action=action, rejected_count=int(result.rowcount or 0))
        MODERATION_OUTCOMES_TOTAL.labels(action="reject", outcome="rejected").inc(summary.rejected_count)
        logger.info(f"{reviewer} rejected {summary.rejected_count} requests")
        return summary

    results: list[ApplyResult] = []
    for request_id in pending:
        result = await _approve_one(session, request_id, reviewer=reviewer, note=note, now=stamp)
        if result is not None:
            results.append(result)

    summary = fold_apply_results(action, results)
    summary.duplicate_count = await _mark_duplicates(
        session,
        approved_ids=summary.approved_ids,
        batch_ids=batch_ids,
        reviewer=reviewer,
        now=stamp,
    )
    logger.info(
        f"{reviewer} approved {summary.approved_count} requests",
        extra={
            "warnings": len(summary.warnings),
            "duplicates": summary.duplicate_count,
        },
    )
    return summary
