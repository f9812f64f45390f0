"""Dedupe keys for independently submitted "new event" proposals.

Coarse who/when/where fingerprint: candidate, local date, time-of-day slot and a
~100m grid cell. Advisory only, used to mark duplicates after an approval.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

GRID_DECIMALS = 3  # 0.001 deg ~ 100m


def time_slot(hour: int | None) -> str:
    if hour is None:
        return "unknown"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def _grid(value: float) -> str:
    # -0.0 and 0.0 must land in the same cell
    return repr(round(float(value), GRID_DECIMALS) + 0.0)


def dedupe_key(
    candidate_id: int | str,
    day: date | str,
    slot: str | None,
    lat: float,
    lng: float,
) -> str:
    day_str = day.isoformat() if isinstance(day, date) else str(day)
    return f"{candidate_id}:{day_str}:{slot or 'unknown'}:{_grid(lat)}:{_grid(lng)}"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 payload timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def dedupe_key_for_request(
    candidate_id: int | None,
    payload: dict[str, Any],
    lat: float | None,
    lng: float | None,
    *,
    tz_name: str,
    now: datetime | None = None,
) -> str | None:
    """Key for a CREATE_EVENT proposal, or None when fields are missing."""
    if candidate_id is None or lat is None or lng is None:
        return None
    tz = ZoneInfo(tz_name)
    start_at = parse_timestamp(payload.get("startAt"))
    if start_at is not None:
        local = start_at.astimezone(tz)
        return dedupe_key(candidate_id, local.date(), time_slot(local.hour), lat, lng)
    today = (now or datetime.now(timezone.utc)).astimezone(tz).date()
    return dedupe_key(candidate_id, today, time_slot(None), lat, lng)
