"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.timezones import as_clinic_local


class ValidationChecksRequest(BaseModel):
    minimum_notice: bool = True
    business_hours: bool = True
    duration: bool = True
    dentist_conflict: bool = True
    patient_conflict: bool = True


class RuleOverrides(BaseModel):
    """Per-request overrides of the clinic scheduling rules"""

    opening_hour: Optional[int] = Field(None, ge=0, le=23)
    closing_hour: Optional[int] = Field(None, ge=1, le=24)
    open_weekdays: Optional[list[int]] = None  # 0=Monday ... 6=Sunday
    min_duration_minutes: Optional[int] = Field(None, ge=1)
    max_duration_minutes: Optional[int] = Field(None, ge=1)
    min_notice_minutes: Optional[int] = Field(None, ge=0)

    @field_validator("open_weekdays")
    @classmethod
    def validate_weekdays(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        if v is not None and any(day < 0 or day > 6 for day in v):
            raise ValueError("open_weekdays must contain values between 0 (Monday) and 6 (Sunday)")
        return v


class AppointmentValidationRequest(BaseModel):
    dentist_id: int
    patient_id: int
    start_time: datetime
    end_time: datetime
    exclude_appointment_id: Optional[int] = None  # The appointment being edited
    checks: ValidationChecksRequest = ValidationChecksRequest()
    rules: Optional[RuleOverrides] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        return as_clinic_local(v)


class ConflictItem(BaseModel):
    id: int
    dentist_id: int
    patient_id: int
    start_time: datetime
    end_time: datetime
    status: str
    title: Optional[str] = None

    class Config:
        from_attributes = True


class ValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    conflicts: list[ConflictItem] = []
    suggestions: list[datetime] = []


class AvailabilityResponse(BaseModel):
    dentist_id: int
    available: bool
    busy_hours: float
    free_hours: float
    working_hours: float
    occupancy_percentage: float
    appointments: int
