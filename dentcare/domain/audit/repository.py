"""Audit repository - Database operations for GDPR records"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Patient
from ...models_audit import (
    AuditLog,
    Consent,
    DataAccessLog,
    DataBreach,
    DataExport,
    DataSubjectRequest,
    RetentionPolicy,
)


class AuditRepository:
    """Repository for audit database operations"""

    @staticmethod
    def add(db: Session, record):
        """Insert any audit record"""
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def save(db: Session, record):
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def get_patient(db: Session, patient_id: int, clinic_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id, Patient.clinic_id == clinic_id).first()

    # Consents

    @staticmethod
    def get_consent(db: Session, consent_id: int, clinic_id: int) -> Optional[Consent]:
        return db.query(Consent).filter(Consent.id == consent_id, Consent.clinic_id == clinic_id).first()

    @staticmethod
    def get_consents(db: Session, patient_id: int, clinic_id: int, consent_type: Optional[str] = None) -> list[Consent]:
        query = db.query(Consent).filter(Consent.patient_id == patient_id, Consent.clinic_id == clinic_id)
        if consent_type:
            query = query.filter(Consent.type == consent_type)
        return query.order_by(Consent.granted_at.desc()).all()

    # Data subject requests

    @staticmethod
    def get_request(db: Session, request_id: int, clinic_id: int) -> Optional[DataSubjectRequest]:
        return (
            db.query(DataSubjectRequest)
            .filter(DataSubjectRequest.id == request_id, DataSubjectRequest.clinic_id == clinic_id)
            .first()
        )

    @staticmethod
    def get_pending_requests(db: Session, clinic_id: int) -> list[DataSubjectRequest]:
        return (
            db.query(DataSubjectRequest)
            .filter(DataSubjectRequest.clinic_id == clinic_id, DataSubjectRequest.status == "pending")
            .order_by(DataSubjectRequest.deadline.asc())
            .all()
        )

    # Breaches

    @staticmethod
    def get_breach(db: Session, breach_id: int, clinic_id: int) -> Optional[DataBreach]:
        return db.query(DataBreach).filter(DataBreach.id == breach_id, DataBreach.clinic_id == clinic_id).first()

    # History

    @staticmethod
    def get_audit_history(
        db: Session,
        clinic_id: int,
        user_id: Optional[int] = None,
        entity: Optional[str] = None,
        entity_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        query = db.query(AuditLog).filter(AuditLog.clinic_id == clinic_id)

        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if entity:
            query = query.filter(AuditLog.entity == entity)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        if start:
            query = query.filter(AuditLog.timestamp >= start)
        if end:
            query = query.filter(AuditLog.timestamp <= end)

        return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()

    @staticmethod
    def get_patient_access_history(db: Session, clinic_id: int, patient_id: int, limit: int = 100) -> list[DataAccessLog]:
        return (
            db.query(DataAccessLog)
            .filter(DataAccessLog.clinic_id == clinic_id, DataAccessLog.data_owner_id == patient_id)
            .order_by(DataAccessLog.timestamp.desc(), DataAccessLog.id.desc())
            .limit(limit)
            .all()
        )

    # Compliance report

    @staticmethod
    def count_by(db: Session, model, column, clinic_id: int, time_column, start: datetime, end: datetime) -> dict:
        """Group rows of a clinic within [start, end] by a column. Missing values count as 'undefined'"""
        rows = (
            db.query(column, func.count(model.id))
            .filter(model.clinic_id == clinic_id, time_column >= start, time_column <= end)
            .group_by(column)
            .all()
        )
        counts: dict[str, int] = {}
        for value, count in rows:
            key = value if value is not None else "undefined"
            counts[key] = counts.get(key, 0) + count
        return counts

    @staticmethod
    def get_requests_in_period(db: Session, clinic_id: int, start: datetime, end: datetime) -> list[DataSubjectRequest]:
        return (
            db.query(DataSubjectRequest)
            .filter(
                DataSubjectRequest.clinic_id == clinic_id,
                DataSubjectRequest.requested_at >= start,
                DataSubjectRequest.requested_at <= end,
            )
            .all()
        )

    @staticmethod
    def get_breaches_in_period(db: Session, clinic_id: int, start: datetime, end: datetime) -> list[DataBreach]:
        return (
            db.query(DataBreach)
            .filter(
                DataBreach.clinic_id == clinic_id,
                DataBreach.detected_at >= start,
                DataBreach.detected_at <= end,
            )
            .all()
        )

    # Retention

    @staticmethod
    def get_retention_policies(db: Session, clinic_id: int, active_only: bool = True) -> list[RetentionPolicy]:
        query = db.query(RetentionPolicy).filter(RetentionPolicy.clinic_id == clinic_id)
        if active_only:
            query = query.filter(RetentionPolicy.active.is_(True))
        return query.order_by(RetentionPolicy.entity_type.asc()).all()

    @staticmethod
    def get_exports(db: Session, clinic_id: int, limit: int = 100) -> list[DataExport]:
        return (
            db.query(DataExport)
            .filter(DataExport.clinic_id == clinic_id)
            .order_by(DataExport.timestamp.desc())
            .limit(limit)
            .all()
        )
