"""Google Calendar domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.timezones import as_clinic_local
from ...shared.validators import validate_email


class ExchangeCodeRequest(BaseModel):
    code: str = Field(..., min_length=1)


class Attendee(BaseModel):
    email: str
    display_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)


class EventCreate(BaseModel):
    calendar_id: str = "primary"
    summary: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    attendees: list[Attendee] = []

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        return as_clinic_local(v)


class SyncAppointmentRequest(BaseModel):
    appointment_id: int
    calendar_id: str = "primary"
    google_event_id: Optional[str] = None


class FullSyncRequest(BaseModel):
    calendar_id: str = "primary"
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        return as_clinic_local(v)


class ConfigResponse(BaseModel):
    configured: bool


class AuthUrlResponse(BaseModel):
    auth_url: str


class StatusResponse(BaseModel):
    connected: bool
    user_email: Optional[str] = None
    calendar_id: Optional[str] = None
    auto_sync_enabled: bool = False
    last_synced_at: Optional[datetime] = None


class CalendarItem(BaseModel):
    id: str
    summary: Optional[str] = None
    primary: bool = False
    time_zone: Optional[str] = None


class EventIdResponse(BaseModel):
    success: bool = True
    event_id: str


class SyncResult(BaseModel):
    pushed: int = 0
    pulled: int = 0
    skipped: int = 0
    failed: int = 0
