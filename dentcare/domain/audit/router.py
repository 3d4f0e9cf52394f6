"""Audit router - FastAPI endpoints for GDPR compliance"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import AuditContext, get_audit_context, get_current_clinic_user
from ...database import get_db
from ...models import User
from ...models_audit import DataBreach
from ...shared.validators import as_naive_utc
from .schemas import (
    AuditLogCreate,
    AuditLogResponse,
    BreachCreate,
    BreachNotify,
    BreachResolve,
    BreachResponse,
    ConsentCheckResponse,
    ConsentCreate,
    ConsentResponse,
    DataAccessCreate,
    DataAccessLogResponse,
    DataExportCreate,
    DataSubjectRequestCreate,
    DataSubjectRequestProcess,
    DataSubjectRequestResponse,
    RetentionPolicyCreate,
    RetentionPolicyResponse,
)
from .service import AuditService, breach_notification_deadline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["Audit"])


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    """Dependency injection for AuditService"""
    return AuditService(db)


def _breach_response(breach: DataBreach) -> BreachResponse:
    response = BreachResponse.model_validate(breach)
    response.notification_deadline = breach_notification_deadline(breach)
    return response


# ============================================================================
# ACTION AND ACCESS LOGGING
# ============================================================================


@router.post("/actions")
async def log_action(
    data: AuditLogCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    """Record an action that happened outside the API (login, print, ...)"""
    entry = service.log_action(
        context,
        data.action,
        data.entity,
        data.entity_id,
        description=data.description,
        changes=data.changes,
        metadata=data.metadata,
        data_category=data.data_category,
        legal_basis=data.legal_basis,
    )
    return {"success": entry is not None, "id": entry.id if entry else None}


@router.post("/data-access")
async def log_data_access(
    data: DataAccessCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    """Record an access to a patient's sensitive data"""
    entry = service.log_data_access(
        context,
        data.data_type,
        data.data_owner_id,
        data.access_type,
        data_owner_name=data.data_owner_name,
        access_reason=data.access_reason,
    )
    return {"success": entry is not None, "id": entry.id if entry else None}


@router.post("/exports")
async def log_export(
    data: DataExportCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    entry = service.log_export(context, data)
    return {"success": entry is not None, "id": entry.id if entry else None}


@router.get("/exports")
async def list_exports(
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    exports = service.list_exports(current_user.clinic_id, limit)
    return [
        {
            "id": e.id,
            "export_type": e.export_type,
            "patient_id": e.patient_id,
            "format": e.format,
            "record_count": e.record_count,
            "purpose": e.purpose,
            "user_name": e.user_name,
            "timestamp": e.timestamp,
        }
        for e in exports
    ]


# ============================================================================
# CONSENTS
# ============================================================================


@router.post("/consents", response_model=ConsentResponse)
async def record_consent(
    data: ConsentCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return service.record_consent(context, data)


@router.post("/consents/{consent_id}/revoke", response_model=ConsentResponse)
async def revoke_consent(
    consent_id: int,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return service.revoke_consent(context, consent_id)


@router.get("/consents/check", response_model=ConsentCheckResponse)
async def check_consent(
    patient_id: int,
    type: str,
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    """Whether the patient currently has an active consent of this type"""
    active = service.has_active_consent(current_user.clinic_id, patient_id, type)
    return ConsentCheckResponse(patient_id=patient_id, type=type, active=active)


@router.get("/patients/{patient_id}/consents", response_model=list[ConsentResponse])
async def list_patient_consents(
    patient_id: int,
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    return service.list_consents(current_user.clinic_id, patient_id)


# ============================================================================
# DATA SUBJECT REQUESTS
# ============================================================================


@router.post("/requests", response_model=DataSubjectRequestResponse)
async def create_data_subject_request(
    data: DataSubjectRequestCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return service.create_data_subject_request(context, data)


@router.post("/requests/{request_id}/process", response_model=DataSubjectRequestResponse)
async def process_data_subject_request(
    request_id: int,
    data: DataSubjectRequestProcess,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return service.process_data_subject_request(context, request_id, data)


@router.get("/requests/pending", response_model=list[DataSubjectRequestResponse])
async def list_pending_requests(
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    return service.list_pending_requests(current_user.clinic_id)


# ============================================================================
# DATA BREACHES
# ============================================================================


@router.post("/breaches", response_model=BreachResponse)
async def register_breach(
    data: BreachCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    """Register a breach. The response carries the 72h authority notification deadline"""
    return _breach_response(service.register_breach(context, data))


@router.post("/breaches/{breach_id}/notify", response_model=BreachResponse)
async def notify_breach(
    breach_id: int,
    data: BreachNotify,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return _breach_response(service.notify_breach(context, breach_id, data.target))


@router.post("/breaches/{breach_id}/resolve", response_model=BreachResponse)
async def resolve_breach(
    breach_id: int,
    data: BreachResolve,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return _breach_response(service.resolve_breach(context, breach_id, data.preventive_measures))


# ============================================================================
# HISTORY AND REPORTS
# ============================================================================


@router.get("/history", response_model=list[AuditLogResponse])
async def audit_history(
    user_id: Optional[int] = Query(None),
    entity: Optional[str] = Query(None),
    entity_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    return service.audit_history(
        current_user.clinic_id,
        user_id=user_id,
        entity=entity,
        entity_id=entity_id,
        start=as_naive_utc(start),
        end=as_naive_utc(end),
        limit=limit,
    )


@router.get("/patients/{patient_id}/access-history", response_model=list[DataAccessLogResponse])
async def patient_access_history(
    patient_id: int,
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    """Who accessed this patient's data - answers the GDPR right of access"""
    return service.patient_access_history(current_user.clinic_id, patient_id, limit)


@router.get("/compliance-report")
async def compliance_report(
    start: datetime,
    end: datetime,
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    start, end = as_naive_utc(start), as_naive_utc(end)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return service.compliance_report(current_user.clinic_id, start, end)


# ============================================================================
# RETENTION POLICIES
# ============================================================================


@router.post("/retention-policies", response_model=RetentionPolicyResponse)
async def create_retention_policy(
    data: RetentionPolicyCreate,
    context: AuditContext = Depends(get_audit_context),
    service: AuditService = Depends(get_audit_service),
):
    return service.create_retention_policy(context, data)


@router.get("/retention-policies", response_model=list[RetentionPolicyResponse])
async def list_retention_policies(
    current_user: User = Depends(get_current_clinic_user),
    service: AuditService = Depends(get_audit_service),
):
    return service.list_retention_policies(current_user.clinic_id)
