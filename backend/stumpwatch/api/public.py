"""Public submission API: anonymous reports and change requests."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.config import settings
from stumpwatch.db import get_session
from stumpwatch.errors import EventNotFound, ReportConflict, Throttled
from stumpwatch.fingerprint import reporter_fingerprint, source_address_from_headers
from stumpwatch.report_service import submit_report
from stumpwatch.request_service import submit_change_request
from stumpwatch.schemas.submissions import (
    ChangeRequestResponse,
    ChangeRequestSubmission,
    ReportResponse,
    ReportSubmission,
)
from stumpwatch.throttle import build_request_throttle

router = APIRouter(prefix="/api/public", tags=["public"])
logger = logging.getLogger(__name__)

_request_throttle = None


def get_request_throttle():
    """Process-wide throttle for change-request intake."""
    global _request_throttle
    if _request_throttle is None:
        _request_throttle = build_request_throttle(settings)
    return _request_throttle


def request_fingerprint(request: Request) -> str:
    client_host = request.client.host if request.client else None
    return reporter_fingerprint(
        source_address_from_headers(request.headers, client_host),
        request.headers.get("user-agent"),
        settings.REPORTER_HASH_SALT,
    )


@router.post("/reports")
async def create_report(
    body: ReportSubmission,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> ReportResponse:
    """Record one start/end/move/check signal. 409 means already counted."""
    try:
        outcome = await submit_report(
            db,
            event_id=body.event_id,
            kind=body.kind,
            fingerprint=request_fingerprint(request),
            lat=body.lat,
            lng=body.lng,
        )
    except ReportConflict:
        raise HTTPException(status_code=409, detail="Already reported") from None
    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found") from None

    report = outcome.report
    return ReportResponse(
        id=report.id,
        eventId=report.event_id,
        kind=str(body.kind.value),
        lat=report.lat,
        lng=report.lng,
        createdAt=report.created_at,
        promotedTo=(outcome.promotion.to_status if outcome.promotion else None),
    )


@router.post("/requests")
async def create_change_request(
    body: ChangeRequestSubmission,
    db: AsyncSession = Depends(get_session),
    throttle=Depends(get_request_throttle),
) -> ChangeRequestResponse:
    """Queue a change proposal for review."""
    try:
        row = await submit_change_request(db, body, throttle=throttle)
    except Throttled as exc:
        raise HTTPException(
            status_code=429,
            detail={"error": "Too many requests", "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        ) from None
    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found") from None
    return ChangeRequestResponse.from_row(row)
