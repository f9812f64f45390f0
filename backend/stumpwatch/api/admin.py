"""Moderation API: review queue and bulk approve/reject."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.auth import Actor, require_role
from stumpwatch.db import get_session
from stumpwatch.errors import NoPendingRequests
from stumpwatch.models.change_request import ChangeRequest, RequestStatus
from stumpwatch.moderation_service import resolve_requests
from stumpwatch.schemas.submissions import (
    ChangeRequestResponse,
    ModerationActionPayload,
    ModerationResponse,
)

router = APIRouter(prefix="/api/admin", tags=["moderation"])
logger = logging.getLogger(__name__)


@router.get("/requests")
async def list_requests(
    status: str | None = None,
    candidate_id: int | None = Query(default=None, alias="candidateId"),
    limit: int = 100,
    actor: Actor = Depends(require_role("SiteStaff")),
    db: AsyncSession = Depends(get_session),
) -> list[ChangeRequestResponse]:
    stmt = select(ChangeRequest).order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc())
    if status:
        if status not in {s.value for s in RequestStatus}:
            raise HTTPException(status_code=400, detail="Invalid status filter")
        stmt = stmt.where(ChangeRequest.status == status)
    if candidate_id is not None:
        stmt = stmt.where(ChangeRequest.candidate_id == candidate_id)
    rows = (await db.execute(stmt.limit(max(1, min(limit, 100))))).scalars().all()
    return [ChangeRequestResponse.from_row(r) for r in rows]


@router.patch("/requests")
async def bulk_resolve_requests(
    body: ModerationActionPayload,
    actor: Actor = Depends(require_role("SiteStaff")),
    db: AsyncSession = Depends(get_session),
) -> ModerationResponse:
    """Approve or reject requests; per-item apply failures come back as warnings."""
    try:
        summary = await resolve_requests(
            db,
            ids=body.ids,
            action=body.action,
            reviewer=actor.id,
            note=body.note,
        )
    except NoPendingRequests:
        raise HTTPException(status_code=404, detail="No pending requests match the given ids") from None

    logger.info(
        f"Moderation {body.action} by {actor.id}: {summary.updated_count} updated",
        extra={"warnings": len(summary.warnings), "duplicates": summary.duplicate_count},
    )
    return ModerationResponse(
        updatedCount=summary.updated_count,
        duplicateCount=summary.duplicate_count,
        warnings=summary.warnings or None,
    )
