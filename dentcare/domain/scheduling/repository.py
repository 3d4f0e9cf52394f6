"""Scheduling repository - Appointment queries for conflict checks"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, Dentist, Patient


class SchedulingRepository:
    """Repository for scheduling database operations"""

    @staticmethod
    def get_dentist(db: Session, dentist_id: int, clinic_id: int) -> Optional[Dentist]:
        return db.query(Dentist).filter(Dentist.id == dentist_id, Dentist.clinic_id == clinic_id).first()

    @staticmethod
    def get_patient(db: Session, patient_id: int, clinic_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id, Patient.clinic_id == clinic_id).first()

    @staticmethod
    def find_overlapping(
        db: Session,
        clinic_id: int,
        start: datetime,
        end: datetime,
        dentist_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        exclude_id: Optional[int] = None,
    ) -> list[Appointment]:
        """Non-cancelled appointments overlapping [start, end)"""
        query = db.query(Appointment).filter(
            Appointment.clinic_id == clinic_id,
            Appointment.status != "cancelled",
            Appointment.start_time < end,
            Appointment.end_time > start,
        )

        if dentist_id is not None:
            query = query.filter(Appointment.dentist_id == dentist_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)

        return query.order_by(Appointment.start_time.asc()).all()

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
