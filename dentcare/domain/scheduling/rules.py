"""
Scheduling rules - pure checks over appointment intervals.

All datetimes are naive clinic local time.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from ...config import (
    APPOINTMENT_MAX_DURATION_MINUTES,
    APPOINTMENT_MIN_DURATION_MINUTES,
    APPOINTMENT_MIN_NOTICE_MINUTES,
    CLINIC_CLOSING_HOUR,
    CLINIC_OPEN_WEEKDAYS,
    CLINIC_OPENING_HOUR,
)
from ...shared.timezones import clinic_now

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class SchedulingRules:
    opening_hour: int = CLINIC_OPENING_HOUR
    closing_hour: int = CLINIC_CLOSING_HOUR
    open_weekdays: tuple[int, ...] = tuple(CLINIC_OPEN_WEEKDAYS)  # 0=Monday
    min_duration_minutes: int = APPOINTMENT_MIN_DURATION_MINUTES
    max_duration_minutes: int = APPOINTMENT_MAX_DURATION_MINUTES
    min_notice_minutes: int = APPOINTMENT_MIN_NOTICE_MINUTES

    def override(self, **changes: Any) -> "SchedulingRules":
        """Copy with the given (non-None) values replaced"""
        changes = {key: value for key, value in changes.items() if value is not None}
        if "open_weekdays" in changes:
            changes["open_weekdays"] = tuple(changes["open_weekdays"])
        return replace(self, **changes)

    def opening_time(self, day: datetime) -> datetime:
        return day.replace(hour=self.opening_hour, minute=0, second=0, microsecond=0)

    def closing_time(self, day: datetime) -> datetime:
        return day.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(hours=self.closing_hour)


DEFAULT_RULES = SchedulingRules()


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    conflicts: list[Any] = field(default_factory=list)
    suggestions: list[datetime] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, error: str, conflicts: Optional[list[Any]] = None) -> "ValidationResult":
        return cls(valid=False, error=error, conflicts=conflicts or [])


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: back-to-back intervals do not overlap"""
    return a_start < b_end and b_start < a_end


def check_business_hours(start: datetime, end: datetime, rules: SchedulingRules = DEFAULT_RULES) -> ValidationResult:
    if start.weekday() not in rules.open_weekdays:
        return ValidationResult.fail(f"The clinic is closed on {WEEKDAY_NAMES[start.weekday()]}s")

    if start < rules.opening_time(start):
        return ValidationResult.fail(f"The clinic opens at {rules.opening_hour}:00")

    if end > rules.closing_time(start):
        return ValidationResult.fail(f"The clinic closes at {rules.closing_hour}:00")

    if end <= start:
        return ValidationResult.fail("The end time must be after the start time")

    return ValidationResult.ok()


def check_duration(start: datetime, end: datetime, rules: SchedulingRules = DEFAULT_RULES) -> ValidationResult:
    minutes = (end - start).total_seconds() / 60

    if minutes < rules.min_duration_minutes:
        return ValidationResult.fail(f"Appointments must last at least {rules.min_duration_minutes} minutes")

    if minutes > rules.max_duration_minutes:
        return ValidationResult.fail(f"Appointments cannot last more than {rules.max_duration_minutes} minutes")

    return ValidationResult.ok()


def check_minimum_notice(
    start: datetime, now: Optional[datetime] = None, rules: SchedulingRules = DEFAULT_RULES
) -> ValidationResult:
    now = now or clinic_now()
    minutes_ahead = (start - now).total_seconds() / 60

    if minutes_ahead < rules.min_notice_minutes:
        return ValidationResult.fail(
            f"Appointments must be booked at least {rules.min_notice_minutes} minutes in advance"
        )

    return ValidationResult.ok()
