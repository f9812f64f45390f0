"""Prometheus metrics for intake, promotion and moderation."""
from __future__ import annotations

from prometheus_client import Counter


REPORTS_ACCEPTED_TOTAL = Counter(
    "stumpwatch_reports_accepted_total",
    "Public reports stored",
    ["kind"],
)

REPORT_CONFLICTS_TOTAL = Counter(
    "stumpwatch_report_conflicts_total",
    "Public reports rejected as already counted",
    ["kind"],
)

QUORUM_PROMOTIONS_TOTAL = Counter(
    "stumpwatch_quorum_promotions_total",
    "Event status changes triggered by report quorum",
    ["kind", "to_status", "trigger"],
)

EVENT_HISTORY_WRITES_TOTAL = Counter(
    "stumpwatch_event_history_writes_total",
    "Event history rows appended",
    ["reason"],
)

MOVE_HINT_CHANGES_TOTAL = Counter(
    "stumpwatch_move_hint_changes_total",
    "Move hint rows touched by a recomputation pass",
    ["change"],
)

CHANGE_REQUESTS_TOTAL = Counter(
    "stumpwatch_change_requests_total",
    "Change requests accepted as pending",
    ["type"],
)

CHANGE_REQUESTS_THROTTLED_TOTAL = Counter(
    "stumpwatch_change_requests_throttled_total",
    "Change requests refused by the global throttle",
)

MODERATION_OUTCOMES_TOTAL = Counter(
    "stumpwatch_moderation_outcomes_total",
    "Moderation results per request",
    ["action", "outcome"],
)

AUTO_PROMOTION_SWEEP_TOTAL = Counter(
    "stumpwatch_auto_promotion_rows_total",
    "Rows handled by the auto-promotion sweep",
    ["outcome"],
)
