"""Scheduling router - FastAPI endpoints for appointment validation"""

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_clinic_user
from ...database import get_db
from ...models import User
from ...shared.timezones import as_clinic_local
from .rules import DEFAULT_RULES
from .schemas import AppointmentValidationRequest, AvailabilityResponse, ConflictItem, ValidationResponse
from .service import MAX_SUGGESTIONS, SchedulingService, ValidationChecks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(db)


@router.post("/validate", response_model=ValidationResponse)
async def validate_appointment(
    data: AppointmentValidationRequest,
    current_user: User = Depends(get_current_clinic_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Validate a new or edited appointment. A dentist conflict comes with alternative slots"""
    rules = DEFAULT_RULES.override(**data.rules.model_dump()) if data.rules else DEFAULT_RULES
    result = service.validate_appointment(
        current_user.clinic_id,
        data.dentist_id,
        data.patient_id,
        data.start_time,
        data.end_time,
        exclude_id=data.exclude_appointment_id,
        checks=ValidationChecks(**data.checks.model_dump()),
        rules=rules,
    )
    return ValidationResponse(
        valid=result.valid,
        error=result.error,
        conflicts=[ConflictItem.model_validate(appointment) for appointment in result.conflicts],
        suggestions=result.suggestions,
    )


@router.get("/suggestions", response_model=list[datetime])
async def suggest_alternative_slots(
    dentist_id: int,
    day: date,
    duration_minutes: int = Query(..., ge=1, le=24 * 60),
    count: int = Query(MAX_SUGGESTIONS, ge=1, le=50),
    current_user: User = Depends(get_current_clinic_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Free slots for a dentist on a given day"""
    return service.suggest_alternative_slots(current_user.clinic_id, dentist_id, day, duration_minutes, count)


@router.get("/dentists/{dentist_id}/availability", response_model=AvailabilityResponse)
async def dentist_availability(
    dentist_id: int,
    start: datetime,
    end: datetime,
    current_user: User = Depends(get_current_clinic_user),
    service: SchedulingService = Depends(get_scheduling_service),
):
    start, end = as_clinic_local(start), as_clinic_local(end)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return service.dentist_availability(current_user.clinic_id, dentist_id, start, end)
