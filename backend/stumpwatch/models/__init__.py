"""Models package: re-export all ORM classes for metadata discovery."""
from stumpwatch.models.event import Event, EventHistory, EventStatus  # noqa: F401
from stumpwatch.models.report import Report, ReportKind  # noqa: F401
from stumpwatch.models.move_hint import MoveHint  # noqa: F401
from stumpwatch.models.change_request import ChangeRequest, RequestStatus, RequestType  # noqa: F401
