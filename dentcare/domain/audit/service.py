"""Audit service - GDPR compliance logging and data subject rights"""

import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import AuditContext
from ...config import BREACH_NOTIFICATION_HOURS, DATA_SUBJECT_REQUEST_DEADLINE_DAYS
from ...models_audit import (
    AuditLog,
    Consent,
    DataAccessLog,
    DataBreach,
    DataExport,
    DataSubjectRequest,
    RetentionPolicy,
)
from ...security_utils import sanitize_text
from .repository import AuditRepository
from .schemas import (
    BreachCreate,
    ConsentCreate,
    DataExportCreate,
    DataSubjectRequestCreate,
    DataSubjectRequestProcess,
    RetentionPolicyCreate,
)

logger = logging.getLogger(__name__)


def breach_notification_deadline(breach: DataBreach) -> datetime:
    """The supervisory authority must be told within 72 hours of detection"""
    return breach.detected_at + timedelta(hours=BREACH_NOTIFICATION_HOURS)


class AuditService:
    """Service layer for GDPR audit business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AuditRepository()

    # ========================================================================
    # LOGGING (never fails the calling operation)
    # ========================================================================

    def log_action(
        self,
        context: AuditContext,
        action: str,
        entity: str,
        entity_id: Optional[int] = None,
        description: Optional[str] = None,
        changes: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        data_category: Optional[str] = None,
        legal_basis: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Record an action on the system. Returns None if the entry could not be written"""
        entry = AuditLog(
            user_id=context.user_id,
            user_name=context.user_name,
            user_role=context.user_role,
            clinic_id=context.clinic_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            description=description,
            changes=changes,
            extra=metadata,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            data_category=data_category,
            legal_basis=legal_basis,
        )
        try:
            return self.repo.add(self.db, entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to write audit log ({action} {entity}#{entity_id}): {e}")
            return None

    def log_data_access(
        self,
        context: AuditContext,
        data_type: str,
        data_owner_id: int,
        access_type: str,
        data_owner_name: Optional[str] = None,
        access_reason: Optional[str] = None,
    ) -> Optional[DataAccessLog]:
        """Record who accessed which patient's sensitive data"""
        entry = DataAccessLog(
            user_id=context.user_id,
            user_name=context.user_name,
            user_role=context.user_role,
            clinic_id=context.clinic_id,
            data_type=data_type,
            data_owner_id=data_owner_id,
            data_owner_name=data_owner_name,
            access_reason=access_reason,
            access_type=access_type,
            ip_address=context.ip_address,
        )
        try:
            return self.repo.add(self.db, entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to write data access log (patient {data_owner_id}): {e}")
            return None

    def log_export(self, context: AuditContext, data: DataExportCreate) -> Optional[DataExport]:
        """Record a data export (portability, backups, reports)"""
        entry = DataExport(
            user_id=context.user_id,
            user_name=context.user_name,
            clinic_id=context.clinic_id,
            export_type=data.export_type,
            patient_id=data.patient_id,
            format=data.format,
            filters=data.filters,
            record_count=data.record_count,
            file_size=data.file_size,
            purpose=data.purpose,
            ip_address=context.ip_address,
        )
        try:
            return self.repo.add(self.db, entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to write export log ({data.export_type}): {e}")
            return None

    # ========================================================================
    # CONSENTS
    # ========================================================================

    def _get_patient(self, patient_id: int, clinic_id: int):
        patient = self.repo.get_patient(self.db, patient_id, clinic_id)
        if not patient:
            raise HTTPException(status_code=404, detail="Patient not found")
        return patient

    def record_consent(self, context: AuditContext, data: ConsentCreate, now: Optional[datetime] = None) -> Consent:
        """Record a consent given (or refused) now"""
        self._get_patient(data.patient_id, context.clinic_id)

        consent = self.repo.add(
            self.db,
            Consent(
                patient_id=data.patient_id,
                clinic_id=context.clinic_id,
                type=data.type,
                purpose=sanitize_text(data.purpose),
                granted=data.granted,
                granted_at=now or datetime.utcnow(),
                method=data.method,
                evidence=data.evidence,
                expires_at=data.expires_at,
                terms_version=data.terms_version,
            ),
        )
        self.log_action(
            context,
            "CREATE",
            "consent",
            consent.id,
            description=f"Consent '{consent.type}' {'granted' if consent.granted else 'refused'}",
            data_category="personal",
            legal_basis="consent",
        )
        logger.info(f"✅ Consent {consent.id} recorded for patient {data.patient_id}")
        return consent

    def revoke_consent(self, context: AuditContext, consent_id: int) -> Consent:
        consent = self.repo.get_consent(self.db, consent_id, context.clinic_id)
        if not consent:
            raise HTTPException(status_code=404, detail="Consent not found")

        consent.revoked = True
        consent.revoked_at = datetime.utcnow()
        consent = self.repo.save(self.db, consent)

        self.log_action(
            context, "UPDATE", "consent", consent.id, description="Consent revoked", data_category="personal"
        )
        logger.info(f"🔄 Consent {consent.id} revoked")
        return consent

    def has_active_consent(
        self, clinic_id: int, patient_id: int, consent_type: str, now: Optional[datetime] = None
    ) -> bool:
        """True if a granted, unrevoked and unexpired consent of this type exists"""
        now = now or datetime.utcnow()
        for consent in self.repo.get_consents(self.db, patient_id, clinic_id, consent_type):
            if consent.granted and not consent.revoked and (consent.expires_at is None or consent.expires_at > now):
                return True
        return False

    def list_consents(self, clinic_id: int, patient_id: int) -> list[Consent]:
        return self.repo.get_consents(self.db, patient_id, clinic_id)

    # ========================================================================
    # DATA SUBJECT REQUESTS
    # ========================================================================

    def create_data_subject_request(
        self, context: AuditContext, data: DataSubjectRequestCreate, now: Optional[datetime] = None
    ) -> DataSubjectRequest:
        """Open a data subject request. It must be answered within 30 days"""
        patient = self._get_patient(data.patient_id, context.clinic_id)
        requested_at = now or datetime.utcnow()

        request = self.repo.add(
            self.db,
            DataSubjectRequest(
                patient_id=patient.id,
                patient_name=patient.name,
                patient_email=patient.email,
                clinic_id=context.clinic_id,
                right_type=data.right_type,
                description=sanitize_text(data.description),
                requested_data=data.requested_data,
                status="pending",
                requested_at=requested_at,
                deadline=requested_at + timedelta(days=DATA_SUBJECT_REQUEST_DEADLINE_DAYS),
            ),
        )
        self.log_action(
            context,
            "CREATE",
            "data_subject_request",
            request.id,
            description=f"Right of {request.right_type} requested",
            data_category="personal",
            legal_basis="legal_obligation",
        )
        logger.info(f"📥 Data subject request {request.id} ({request.right_type}) due {request.deadline.date()}")
        return request

    def process_data_subject_request(
        self, context: AuditContext, request_id: int, data: DataSubjectRequestProcess
    ) -> DataSubjectRequest:
        request = self.repo.get_request(self.db, request_id, context.clinic_id)
        if not request:
            raise HTTPException(status_code=404, detail="Data subject request not found")

        now = datetime.utcnow()
        previous_status = request.status
        request.status = data.status
        request.processed_at = now
        request.processed_by = context.user_id
        request.processed_by_name = context.user_name
        request.response = sanitize_text(data.response)
        request.action_taken = sanitize_text(data.action_taken)
        if data.status == "completed":
            request.completed_at = now

        request = self.repo.save(self.db, request)
        self.log_action(
            context,
            "UPDATE",
            "data_subject_request",
            request.id,
            changes={"status": {"before": previous_status, "after": request.status}},
            data_category="personal",
            legal_basis="legal_obligation",
        )
        return request

    def list_pending_requests(self, clinic_id: int) -> list[DataSubjectRequest]:
        """Pending requests, nearest deadline first"""
        return self.repo.get_pending_requests(self.db, clinic_id)

    # ========================================================================
    # DATA BREACHES
    # ========================================================================

    def register_breach(self, context: AuditContext, data: BreachCreate) -> DataBreach:
        reference = f"BREACH-{int(time.time() * 1000)}-{context.clinic_id}-{secrets.token_hex(3).upper()}"

        breach = self.repo.add(
            self.db,
            DataBreach(
                reference=reference,
                clinic_id=context.clinic_id,
                type=data.type,
                description=sanitize_text(data.description),
                occurred_at=data.occurred_at,
                detected_at=data.detected_at,
                affected_data=data.affected_data,
                affected_patients_count=data.affected_patients_count,
                affected_patient_ids=data.affected_patient_ids,
                severity=data.severity,
                risk_assessment=sanitize_text(data.risk_assessment),
                immediate_measures=sanitize_text(data.immediate_measures),
                reported_by=context.user_id,
                reported_by_name=context.user_name,
                status="open",
            ),
        )

        if breach.severity in ("high", "critical"):
            logger.warning(
                f"⚠️ {breach.severity.upper()} data breach {breach.reference}: the supervisory authority must be "
                f"notified within {BREACH_NOTIFICATION_HOURS}h (by {breach_notification_deadline(breach).isoformat()})"
            )
        else:
            logger.info(f"ℹ️ Data breach {breach.reference} registered ({breach.severity})")

        self.log_action(
            context,
            "CREATE",
            "data_breach",
            breach.id,
            description=f"Breach {breach.reference} registered",
            metadata={"severity": breach.severity},
            data_category="system",
            legal_basis="legal_obligation",
        )
        return breach

    def _get_breach(self, clinic_id: int, breach_id: int) -> DataBreach:
        breach = self.repo.get_breach(self.db, breach_id, clinic_id)
        if not breach:
            raise HTTPException(status_code=404, detail="Data breach not found")
        return breach

    def notify_breach(self, context: AuditContext, breach_id: int, target: str) -> DataBreach:
        """Mark the authority or the affected subjects as notified"""
        breach = self._get_breach(context.clinic_id, breach_id)
        now = datetime.utcnow()

        if target == "authority":
            breach.authority_notified = True
            breach.authority_notified_at = now
            if breach.status != "resolved":
                breach.status = "notified"
            if now > breach_notification_deadline(breach):
                logger.warning(f"⚠️ Breach {breach.reference} reported to the authority after the deadline")
        else:
            breach.subjects_notified = True
            breach.subjects_notified_at = now

        breach = self.repo.save(self.db, breach)
        self.log_action(
            context,
            "UPDATE",
            "data_breach",
            breach.id,
            description=f"Breach {breach.reference}: {target} notified",
            data_category="system",
            legal_basis="legal_obligation",
        )
        return breach

    def resolve_breach(self, context: AuditContext, breach_id: int, preventive_measures: Optional[str]) -> DataBreach:
        breach = self._get_breach(context.clinic_id, breach_id)
        breach.status = "resolved"
        breach.resolved_at = datetime.utcnow()
        if preventive_measures is not None:
            breach.preventive_measures = sanitize_text(preventive_measures)

        breach = self.repo.save(self.db, breach)
        self.log_action(
            context, "UPDATE", "data_breach", breach.id, description=f"Breach {breach.reference} resolved"
        )
        logger.info(f"✅ Breach {breach.reference} resolved")
        return breach

    # ========================================================================
    # HISTORY AND REPORTS
    # ========================================================================

    def audit_history(
        self,
        clinic_id: int,
        user_id: Optional[int] = None,
        entity: Optional[str] = None,
        entity_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        return self.repo.get_audit_history(self.db, clinic_id, user_id, entity, entity_id, start, end, limit)

    def patient_access_history(self, clinic_id: int, patient_id: int, limit: int = 100) -> list[DataAccessLog]:
        return self.repo.get_patient_access_history(self.db, clinic_id, patient_id, limit)

    def compliance_report(self, clinic_id: int, start: datetime, end: datetime) -> dict:
        """Aggregate GDPR activity for the period [start, end]"""
        actions = self.repo.count_by(
            self.db, AuditLog, AuditLog.action, clinic_id, AuditLog.timestamp, start, end
        )
        accesses = self.repo.count_by(
            self.db, DataAccessLog, DataAccessLog.data_type, clinic_id, DataAccessLog.timestamp, start, end
        )

        requests = self.repo.get_requests_in_period(self.db, clinic_id, start, end)
        by_right: dict[str, int] = {}
        by_status: dict[str, int] = {}
        within_deadline = 0
        for request in requests:
            right = request.right_type or "undefined"
            status = request.status or "undefined"
            by_right[right] = by_right.get(right, 0) + 1
            by_status[status] = by_status.get(status, 0) + 1
            if request.completed_at is None or request.completed_at <= request.deadline:
                within_deadline += 1

        breaches = self.repo.get_breaches_in_period(self.db, clinic_id, start, end)
        by_severity: dict[str, int] = {}
        for breach in breaches:
            severity = breach.severity or "undefined"
            by_severity[severity] = by_severity.get(severity, 0) + 1

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "actions": {"total": sum(actions.values()), "by_action": actions},
            "sensitive_access": {"total": sum(accesses.values()), "by_data_type": accesses},
            "data_subject_requests": {
                "total": len(requests),
                "by_right": by_right,
                "by_status": by_status,
                "within_deadline": within_deadline,
            },
            "breaches": {
                "total": len(breaches),
                "by_severity": by_severity,
                "reported_to_authority": sum(1 for b in breaches if b.authority_notified),
            },
        }

    # ========================================================================
    # RETENTION POLICIES
    # ========================================================================

    def create_retention_policy(self, context: AuditContext, data: RetentionPolicyCreate) -> RetentionPolicy:
        policy = self.repo.add(
            self.db,
            RetentionPolicy(
                clinic_id=context.clinic_id,
                entity_type=data.entity_type,
                category=data.category,
                retention_days=data.retention_days,
                reason=sanitize_text(data.reason),
                action_after_expiry=data.action_after_expiry,
                active=True,
            ),
        )
        self.log_action(
            context,
            "CREATE",
            "retention_policy",
            policy.id,
            description=f"{policy.entity_type}: {policy.action_after_expiry} after {policy.retention_days} days",
            data_category="system",
        )
        return policy

    def list_retention_policies(self, clinic_id: int) -> list[RetentionPolicy]:
        return self.repo.get_retention_policies(self.db, clinic_id)

    def list_exports(self, clinic_id: int, limit: int = 100) -> list[DataExport]:
        return self.repo.get_exports(self.db, clinic_id, limit)
