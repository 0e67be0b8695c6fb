import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from backend.config import DEFAULT_DELAY_THRESHOLD_HOURS

CheckinKind = Literal["departure", "return"]
ClosureReason = Literal["unauthorized_closure", "breakdown"]

DEPARTURE: CheckinKind = "departure"
RETURN: CheckinKind = "return"


def new_record_id() -> str:
    return uuid.uuid4().hex


def as_local_naive(value: datetime) -> datetime:
    # Calendar-day comparisons are made in local time.
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


# -----------------------------
# Drivers
# -----------------------------
class Driver(BaseModel):
    id: str
    name: str
    subcontractor: str = ""
    plate: str = ""
    tour: str = ""
    telephone: str = ""


# -----------------------------
# Check-in events
# -----------------------------
class CheckinEvent(BaseModel):
    id: str = Field(default_factory=new_record_id)
    driver_id: str
    driver_name: str
    subcontractor: str = ""
    tour: str = ""
    timestamp: datetime
    kind: CheckinKind
    has_uniform: bool | None = None
    driver_reported_issue: bool | None = None
    issue_details: str | None = None
    departure_comment: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _local_timestamp(cls, value: datetime) -> datetime:
        return as_local_naive(value)


# -----------------------------
# Incident reports
# -----------------------------
class SaturationItem(BaseModel):
    locker_name: str
    bags: int = Field(default=0, ge=0)
    loose: int = Field(default=0, ge=0)
    is_replacement: bool = False


class MissingItem(BaseModel):
    point_name: str
    bags: int = Field(default=0, ge=0)
    loose: int = Field(default=0, ge=0)


class RefusalItem(BaseModel):
    point_name: str
    bags: int = Field(default=0, ge=0)
    loose: int = Field(default=0, ge=0)


class ClosedItem(BaseModel):
    point_name: str
    reason: ClosureReason = "unauthorized_closure"


class DivertedParcels(BaseModel):
    bags: int = Field(default=0, ge=0)
    loose: int = Field(default=0, ge=0)


class IncidentReportIn(BaseModel):
    relay_stamp: bool = False
    locker_schedule: bool = False
    saturations: list[SaturationItem] = Field(default_factory=list)
    missing_deliveries: list[MissingItem] = Field(default_factory=list)
    closed_points: list[ClosedItem] = Field(default_factory=list)
    refusals: list[RefusalItem] = Field(default_factory=list)
    diverted: DivertedParcels = Field(default_factory=DivertedParcels)
    notes: str = ""
    reviewed: bool = False


class IncidentReport(IncidentReportIn):
    id: str = Field(default_factory=new_record_id)
    checkin_id: str


# -----------------------------
# Settings
# -----------------------------
class NotificationSettings(BaseModel):
    master_enabled: bool = True
    enable_delay_alerts: bool = True
    delay_threshold_hours: int = Field(default=DEFAULT_DELAY_THRESHOLD_HOURS, gt=0)
    enable_incident_alerts: bool = True


# -----------------------------
# Request payloads
# -----------------------------
class ScanRequest(BaseModel):
    code: str
    kind: CheckinKind
    has_uniform: bool = False
    driver_reported_issue: bool = False
    issue_details: str = ""


class CommentUpdate(BaseModel):
    comment: str


class TourUpdate(BaseModel):
    tour: str
