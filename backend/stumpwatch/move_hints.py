"""Move-hint builder.

Turns the append-only log of "moved to here" reports into a small set of
active hint points per event. The clustering and reconciliation steps are pure
functions; `sync_move_hints` loads the log and writes the resulting plan.

Two radii are used on purpose: reports within `cluster_radius_m` of a running
centroid share a cluster, and a recomputed cluster within `match_radius_m` of
an active hint updates that row instead of creating a new one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stumpwatch.config import settings
from stumpwatch.geo import centroid, haversine_m
from stumpwatch.metrics import MOVE_HINT_CHANGES_TOTAL
from stumpwatch.models.move_hint import MoveHint
from stumpwatch.models.report import Report, ReportKind

logger = logging.getLogger(__name__)


def _aware(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


@dataclass(slots=True, frozen=True)
class MovePoint:
    lat: float
    lng: float
    reported_at: datetime


@dataclass(slots=True)
class HintCandidate:
    lat: float
    lng: float
    count: int
    last_report_at: datetime


@dataclass(slots=True)
class HintSyncPlan:
    updates: list[tuple[int, HintCandidate]] = field(default_factory=list)
    creates: list[HintCandidate] = field(default_factory=list)
    deactivate_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class _Cluster:
    lat: float
    lng: float
    members: list[MovePoint]
    last_report_at: datetime

    def add(self, point: MovePoint) -> None:
        self.members.append(point)
        self.lat, self.lng = centroid((m.lat, m.lng) for m in self.members)
        if _aware(point.reported_at) > self.last_report_at:
            self.last_report_at = _aware(point.reported_at)


def cluster_move_reports(
    points: Iterable[MovePoint],
    *,
    cluster_radius_m: float | None = None,
) -> list[HintCandidate]:
    """Greedy single-pass clustering, O(n*k).

    Each point joins the first cluster whose running centroid is within the
    radius, otherwise it starts a new cluster. Input order matters.
    """
    radius = settings.MOVE_CLUSTER_RADIUS_M if cluster_radius_m is None else cluster_radius_m
    clusters: list[_Cluster] = []
    for point in points:
        for cluster in clusters:
            if haversine_m(point.lat, point.lng, cluster.lat, cluster.lng) <= radius:
                cluster.add(point)
                break
        else:
            clusters.append(
                _Cluster(
                    lat=point.lat,
                    lng=point.lng,
                    members=[point],
                    last_report_at=_aware(point.reported_at),
                )
            )
    return [
        HintCandidate(lat=c.lat, lng=c.lng, count=len(c.members), last_report_at=c.last_report_at)
        for c in clusters
    ]


def plan_hint_sync(
    candidates: Sequence[HintCandidate],
    active_hints: Sequence[MoveHint],
    *,
    match_radius_m: float | None = None,
) -> HintSyncPlan:
    """Reconcile freshly computed clusters against the currently active hints.

    A candidate updates the nearest still-unclaimed active hint within the
    match radius, or becomes a new hint. Active hints nobody claimed fade out.
    """
    radius = settings.MOVE_HINT_MATCH_RADIUS_M if match_radius_m is None else match_radius_m
    plan = HintSyncPlan()
    unclaimed = {hint.id: hint for hint in active_hints}

    for candidate in candidates:
        best_id: int | None = None
        best_distance = radius
        for hint_id, hint in unclaimed.items():
            distance = haversine_m(candidate.lat, candidate.lng, hint.lat, hint.lng)
            if distance <= best_distance:
                best_id, best_distance = hint_id, distance
        if best_id is None:
            plan.creates.append(candidate)
        else:
            unclaimed.pop(best_id)
            plan.updates.append((best_id, candidate))

    plan.deactivate_ids = sorted(unclaimed)
    return plan


async def load_move_points(session: AsyncSession, event_id: int) -> list[MovePoint]:
    rows = (
        await session.execute(
            select(Report.lat, Report.lng, Report.created_at)
            .where(
                Report.event_id == event_id,
                Report.kind == ReportKind.MOVE.value,
                Report.lat.is_not(None),
                Report.lng.is_not(None),
            )
            .order_by(Report.created_at.desc(), Report.id.desc())
        )
    ).all()
    return [MovePoint(lat=float(lat), lng=float(lng), reported_at=created_at) for lat, lng, created_at in rows]


async def sync_move_hints(
    session: AsyncSession,
    event_id: int,
    *,
    cluster_radius_m: float | None = None,
    match_radius_m: float | None = None,
) -> HintSyncPlan:
    """Recompute every hint of one event from its full move-report history.

    Touches `move_hints` only. The caller owns the commit.
    """
    points = await load_move_points(session, event_id)

    if not points:
        result = await session.execute(
            update(MoveHint)
            .where(MoveHint.event_id == event_id, MoveHint.active.is_(True))
            .values(active=False, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        faded = int(result.rowcount or 0)
        if faded:
            MOVE_HINT_CHANGES_TOTAL.labels(change="deactivated").inc(faded)
        return HintSyncPlan()

    candidates = cluster_move_reports(points, cluster_radius_m=cluster_radius_m)
    active_hints = (
        await session.execute(
            select(MoveHint)
            .where(MoveHint.event_id == event_id, MoveHint.active.is_(True))
            .order_by(MoveHint.id.asc())
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    plan = plan_hint_sync(candidates, active_hints, match_radius_m=match_radius_m)

    by_id = {hint.id: hint for hint in active_hints}
    now = datetime.now(timezone.utc)
    for hint_id, candidate in plan.updates:
        hint = by_id[hint_id]
        hint.lat = candidate.lat
        hint.lng = candidate.lng
        hint.count = candidate.count
        hint.last_report_at = candidate.last_report_at
        hint.active = True
        hint.updated_at = now
    for candidate in plan.creates:
        session.add(
            MoveHint(
                event_id=event_id,
                lat=candidate.lat,
                lng=candidate.lng,
                count=candidate.count,
                last_report_at=candidate.last_report_at,
                active=True,
            )
        )
    for hint_id in plan.deactivate_ids:
        by_id[hint_id].active = False
        by_id[hint_id].updated_at = now
    await session.flush()

    MOVE_HINT_CHANGES_TOTAL.labels(change="updated").inc(len(plan.updates))
    MOVE_HINT_CHANGES_TOTAL.labels(change="created").inc(len(plan.creates))
    MOVE_HINT_CHANGES_TOTAL.labels(change="deactivated").inc(len(plan.deactivate_ids))
    logger.debug(
        "Move hints recomputed for event %s: %s updated, %s created, %s deactivated",
        event_id,
        len(plan.updates),
        len(plan.creates),
        len(plan.deactivate_ids),
    )
    return plan
