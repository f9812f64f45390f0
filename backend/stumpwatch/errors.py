"""Domain errors raised by the intake and moderation services.

Routers translate these into HTTP responses; workers count them.
"""
from __future__ import annotations


class StumpwatchError(Exception):
    """Base class for expected, client-facing failures."""


class EventNotFound(StumpwatchError):
    def __init__(self, event_id: int):
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class ReportConflict(StumpwatchError):
    """Same (event, kind, fingerprint) already stored. Clients treat it as success."""

    def __init__(self, event_id: int, kind: str):
        super().__init__("Already reported")
        self.event_id = event_id
        self.kind = kind


class Throttled(StumpwatchError):
    def __init__(self, retry_after: int):
        super().__init__(f"Too many requests, retry in {retry_after}s")
        self.retry_after = retry_after


class NoPendingRequests(StumpwatchError):
    def __init__(self, ids: list[int]):
        super().__init__("None of the given ids match a pending request")
        self.ids = ids


class ApplyError(StumpwatchError):
    """A single moderation item could not be applied; the batch carries on."""
