"""Quorum promotion rule.

Single source of truth for the start/end promotion decision. Both the
real-time report intake and the auto-promotion sweep call `evaluate_promotion`.
"""
from __future__ import annotations

from stumpwatch.config import settings
from stumpwatch.models.event import EventStatus
from stumpwatch.models.report import ReportKind

# kind -> (target status, statuses it may be promoted from)
PROMOTION_RULES: dict[ReportKind, tuple[EventStatus, frozenset[EventStatus]]] = {
    ReportKind.START: (EventStatus.LIVE, frozenset({EventStatus.PLANNED})),
    ReportKind.END: (EventStatus.ENDED, frozenset({EventStatus.PLANNED, EventStatus.LIVE})),
}


def status_name(value: EventStatus | str) -> str:
    if isinstance(value, EventStatus):
        return value.value
    raw = str(value)
    if raw.startswith("EventStatus."):
        return raw.split(".", 1)[1]
    return raw


def kind_name(value: ReportKind | str) -> str:
    if isinstance(value, ReportKind):
        return value.value
    raw = str(value)
    if raw.startswith("ReportKind."):
        return ReportKind[raw.split(".", 1)[1]].value
    return raw


def is_promotable_kind(kind: ReportKind | str) -> bool:
    return kind_name(kind) in {k.value for k in PROMOTION_RULES}


def evaluate_promotion(
    current_status: EventStatus | str,
    kind: ReportKind | str,
    report_count: int,
    *,
    quorum: int | None = None,
) -> EventStatus | None:
    """Return the status to move to, or None when nothing should change.

    Never regresses: an event already at or past the target stays put.
    """
    needed = settings.REPORT_QUORUM if quorum is None else quorum
    if report_count < needed:
        return None
    rule = PROMOTION_RULES.get(ReportKind(kind_name(kind)))
    if rule is None:
        return None
    target, sources = rule
    if status_name(current_status) not in {s.value for s in sources}:
        return None
    return target


def quorum_reason(kind: ReportKind | str, report_count: int, *, trigger: str) -> str:
    return f"{trigger}: {report_count} {kind_name(kind)} reports"
