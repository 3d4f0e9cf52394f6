"""Google Calendar repository - Integration and appointment lookups for sync"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Appointment, Clinic, Patient
from ...models_google_calendar import GoogleCalendarIntegration


class CalendarRepository:
    """Repository for Google Calendar database operations"""

    @staticmethod
    def get_integration(db: Session, user_id: int) -> Optional[GoogleCalendarIntegration]:
        return db.query(GoogleCalendarIntegration).filter(GoogleCalendarIntegration.user_id == user_id).first()

    @staticmethod
    def get_clinic(db: Session, clinic_id: int) -> Optional[Clinic]:
        return db.query(Clinic).filter(Clinic.id == clinic_id).first()

    @staticmethod
    def get_appointment(db: Session, appointment_id: int, clinic_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.clinic_id == clinic_id)
            .first()
        )

    @staticmethod
    def get_dentist_appointments(
        db: Session, clinic_id: int, dentist_id: int, start: datetime, end: datetime
    ) -> list[Appointment]:
        """Non-cancelled appointments of a dentist starting within [start, end]"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.clinic_id == clinic_id,
                Appointment.dentist_id == dentist_id,
                Appointment.status != "cancelled",
                Appointment.start_time >= start,
                Appointment.start_time <= end,
            )
            .order_by(Appointment.start_time.asc())
            .all()
        )

    @staticmethod
    def get_linked_event_ids(db: Session, clinic_id: int) -> set[str]:
        rows = (
            db.query(Appointment.google_event_id)
            .filter(Appointment.clinic_id == clinic_id, Appointment.google_event_id.isnot(None))
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def find_patient_by_email(db: Session, clinic_id: int, email: str) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(Patient.clinic_id == clinic_id, func.lower(Patient.email) == email.strip().lower())
            .first()
        )
