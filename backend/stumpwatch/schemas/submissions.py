"""Request/response bodies for the public and admin endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stumpwatch.models.change_request import RequestType
from stumpwatch.models.report import ReportKind

EVENT_SCOPED_TYPES = {
    RequestType.UPDATE_EVENT,
    RequestType.REPORT_START,
    RequestType.REPORT_END,
    RequestType.REPORT_MOVE,
    RequestType.REPORT_TIME_CHANGE,
}


class _Position(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_pair(self):
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be given together")
        return self

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lng is not None


class ReportSubmission(_Position):
    event_id: int = Field(alias="eventId", gt=0)
    kind: ReportKind


class ReportResponse(BaseModel):
    id: int
    eventId: int
    kind: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    createdAt: datetime
    promotedTo: Optional[str] = None


class ChangeRequestSubmission(_Position):
    type: RequestType
    candidate_id: Optional[int] = Field(default=None, alias="candidateId")
    event_id: Optional[int] = Field(default=None, alias="eventId")
    rival_event_id: Optional[int] = Field(default=None, alias="rivalEventId")
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload")
    @classmethod
    def validate_payload_size(cls, v: dict[str, Any]) -> dict[str, Any]:
        if len(v) > 50:
            raise ValueError("payload has too many fields")
        return v

    @model_validator(mode="after")
    def validate_references(self):
        if self.type in EVENT_SCOPED_TYPES and self.event_id is None:
            raise ValueError(f"{self.type.value} requires eventId")
        if self.type == RequestType.CREATE_EVENT and self.candidate_id is None:
            raise ValueError("CREATE_EVENT requires candidateId")
        if self.type == RequestType.REPORT_RIVAL_EVENT and self.rival_event_id is None and not self.has_position:
            raise ValueError("REPORT_RIVAL_EVENT requires rivalEventId or a position")
        return self


class ChangeRequestResponse(BaseModel):
    id: int
    type: str
    status: str
    candidateId: Optional[int] = None
    eventId: Optional[int] = None
    rivalEventId: Optional[int] = None
    payload: dict[str, Any]
    dedupeKey: Optional[str] = None
    createdAt: datetime
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "ChangeRequestResponse":
        return cls(
            id=row.id,
            type=str(row.type.value if hasattr(row.type, "value") else row.type),
            status=str(row.status.value if hasattr(row.status, "value") else row.status),
            candidateId=row.candidate_id,
            eventId=row.event_id,
            rivalEventId=row.rival_event_id,
            payload=dict(row.payload_json or {}),
            dedupeKey=row.dedupe_key,
            createdAt=row.created_at,
            reviewedAt=row.reviewed_at,
            reviewedBy=row.reviewed_by,
        )


class ModerationActionPayload(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=500)
    action: Literal["approve", "reject"]
    note: Optional[str] = Field(default=None, max_length=1000)


class ModerationResponse(BaseModel):
    updatedCount: int
    duplicateCount: int = 0
    warnings: Optional[list[str]] = None


class SweepResponse(BaseModel):
    processed: int
    approved: int
    errors: int
