"""Externally triggered maintenance endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.auth import cron_authorized
from stumpwatch.db import get_session
from stumpwatch.schemas.submissions import SweepResponse
from stumpwatch.workers.auto_promotion import sweep_pending_report_requests

router = APIRouter(prefix="/api/cron", tags=["ops"])


@router.api_route("/auto-approve", methods=["GET", "POST"])
async def auto_approve(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_session),
) -> SweepResponse:
    if not cron_authorized(authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")
    result = await sweep_pending_report_requests(db)
    return SweepResponse(**result.as_dict())
