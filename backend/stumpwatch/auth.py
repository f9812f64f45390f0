"""Caller checks for admin and cron endpoints.

Authentication itself lives upstream: the auth proxy forwards the signed-in
user as `X-Actor-Id` / `X-Actor-Role`. Only role levels are checked here.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException

from stumpwatch.config import settings

logger = logging.getLogger(__name__)

ROLE_LEVELS: dict[str, int] = {
    "SiteAdmin": 4,
    "SiteStaff": 3,
    "PartyAdmin": 2,
    "RegionEditor": 1,
}


@dataclass(slots=True, frozen=True)
class Actor:
    id: str
    role: str


def has_permission(role: str | None, required: str | list[str]) -> bool:
    if not role:
        return False
    level = ROLE_LEVELS.get(role, 0)
    wanted = [required] if isinstance(required, str) else list(required)
    return any(ROLE_LEVELS[r] <= level for r in wanted)


def require_role(required: str):
    """FastAPI dependency factory: 401 without an actor, 403 below `required`."""

    async def _dependency(
        x_actor_id: str | None = Header(default=None),
        x_actor_role: str | None = Header(default=None),
    ) -> Actor:
        if not x_actor_id:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not has_permission(x_actor_role, required):
            raise HTTPException(status_code=403, detail=f"{required} role required")
        return Actor(id=x_actor_id, role=str(x_actor_role))

    return _dependency


def cron_authorized(authorization: str | None, secret: str | None = None) -> bool:
    """Bearer check for the sweep trigger. Open when no secret is configured."""
    configured = settings.CRON_SECRET if secret is None else secret
    if not configured:
        logger.warning("CRON_SECRET is not set; cron endpoint is unauthenticated")
        return True
    expected = f"Bearer {configured}"
    return hmac.compare_digest((authorization or "").encode("utf-8"), expected.encode("utf-8"))
