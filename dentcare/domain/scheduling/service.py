"""Scheduling service - Appointment validation, slot suggestions and availability"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SLOT_INTERVAL_MINUTES, WORKING_HOURS_PER_DAY
from ...shared.numbers import round_half_up
from ...shared.timezones import clinic_now
from .repository import SchedulingRepository
from .rules import (
    DEFAULT_RULES,
    SchedulingRules,
    ValidationResult,
    check_business_hours,
    check_duration,
    check_minimum_notice,
    intervals_overlap,
)

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5


@dataclass
class ValidationChecks:
    """Which checks validate_appointment runs. All on by default"""

    minimum_notice: bool = True
    business_hours: bool = True
    duration: bool = True
    dentist_conflict: bool = True
    patient_conflict: bool = True


class SchedulingService:
    """Service layer for scheduling validation"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def check_dentist_conflict(
        self, clinic_id: int, dentist_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> ValidationResult:
        conflicts = self.repo.find_overlapping(
            self.db, clinic_id, start, end, dentist_id=dentist_id, exclude_id=exclude_id
        )
        if conflicts:
            return ValidationResult.fail("The dentist already has an appointment at this time", conflicts)
        return ValidationResult.ok()

    def check_patient_conflict(
        self, clinic_id: int, patient_id: int, start: datetime, end: datetime, exclude_id: Optional[int] = None
    ) -> ValidationResult:
        conflicts = self.repo.find_overlapping(
            self.db, clinic_id, start, end, patient_id=patient_id, exclude_id=exclude_id
        )
        if conflicts:
            return ValidationResult.fail("The patient already has an appointment at this time", conflicts)
        return ValidationResult.ok()

    def validate_appointment(
        self,
        clinic_id: int,
        dentist_id: int,
        patient_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
        checks: Optional[ValidationChecks] = None,
        rules: SchedulingRules = DEFAULT_RULES,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Run the enabled checks in order and return the first failure"""
        checks = checks or ValidationChecks()
        now = now or clinic_now()

        if checks.minimum_notice:
            result = check_minimum_notice(start, now, rules)
            if not result.valid:
                return result

        if checks.business_hours:
            result = check_business_hours(start, end, rules)
            if not result.valid:
                return result

        if checks.duration:
            result = check_duration(start, end, rules)
            if not result.valid:
                return result

        if checks.dentist_conflict:
            result = self.check_dentist_conflict(clinic_id, dentist_id, start, end, exclude_id)
            if not result.valid:
                duration = max(1, int((end - start).total_seconds() // 60))
                result.suggestions = self._free_slots(
                    clinic_id, dentist_id, start.date(), duration, MAX_SUGGESTIONS, rules, now, exclude_id
                )
                logger.info(f"ℹ️ Dentist {dentist_id} busy at {start.isoformat()}, {len(result.suggestions)} alternatives")
                return result

        if checks.patient_conflict:
            result = self.check_patient_conflict(clinic_id, patient_id, start, end, exclude_id)
            if not result.valid:
                return result

        return ValidationResult.ok()

    def _get_dentist(self, clinic_id: int, dentist_id: int):
        dentist = self.repo.get_dentist(self.db, dentist_id, clinic_id)
        if not dentist:
            raise HTTPException(status_code=404, detail="Dentist not found")
        return dentist

    def suggest_alternative_slots(
        self,
        clinic_id: int,
        dentist_id: int,
        day: date,
        duration_minutes: int,
        count: int = MAX_SUGGESTIONS,
        rules: SchedulingRules = DEFAULT_RULES,
        now: Optional[datetime] = None,
    ) -> list[datetime]:
        self._get_dentist(clinic_id, dentist_id)
        return self._free_slots(clinic_id, dentist_id, day, duration_minutes, count, rules, now or clinic_now())

    def _free_slots(
        self,
        clinic_id: int,
        dentist_id: int,
        day: date,
        duration_minutes: int,
        count: int,
        rules: SchedulingRules,
        now: datetime,
        exclude_id: Optional[int] = None,
    ) -> list[datetime]:
        """Walk the day in fixed steps from opening to closing and keep free, future slots"""
        day_start = datetime(day.year, day.month, day.day)
        opening = rules.opening_time(day_start)
        closing = rules.closing_time(day_start)
        duration = timedelta(minutes=duration_minutes)

        busy = [
            appointment
            for appointment in self.repo.get_dentist_appointments(
                self.db, clinic_id, dentist_id, day_start, day_start + timedelta(days=1) - timedelta(microseconds=1)
            )
            if appointment.id != exclude_id
        ]

        suggestions = []
        slot = opening
        while slot < closing and len(suggestions) < count:
            slot_end = slot + duration
            if slot_end > closing:
                break
            if slot >= now and not any(
                intervals_overlap(slot, slot_end, appointment.start_time, appointment.end_time) for appointment in busy
            ):
                suggestions.append(slot)
            slot += timedelta(minutes=SLOT_INTERVAL_MINUTES)

        return suggestions

    def dentist_availability(self, clinic_id: int, dentist_id: int, start: datetime, end: datetime) -> dict:
        """Busy and free hours of a dentist over a period (9 working hours per started day)"""
        self._get_dentist(clinic_id, dentist_id)
        appointments = self.repo.get_dentist_appointments(self.db, clinic_id, dentist_id, start, end)

        busy_hours = sum((a.end_time - a.start_time).total_seconds() for a in appointments) / 3600
        days = math.ceil((end - start).total_seconds() / 86400)
        working_hours = days * WORKING_HOURS_PER_DAY
        free_hours = working_hours - busy_hours
        occupancy = busy_hours / working_hours * 100 if working_hours > 0 else 0

        return {
            "dentist_id": dentist_id,
            "available": free_hours > 0,
            "busy_hours": round_half_up(busy_hours, 1),
            "free_hours": round_half_up(free_hours, 1),
            "working_hours": round_half_up(working_hours, 1),
            "occupancy_percentage": round_half_up(occupancy, 1),
            "appointments": len(appointments),
        }
