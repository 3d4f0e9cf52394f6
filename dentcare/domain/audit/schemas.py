"""Audit domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...models_audit import (
    ACCESS_DATA_TYPES,
    ACCESS_TYPES,
    AUDIT_ACTIONS,
    BREACH_SEVERITIES,
    DATA_CATEGORIES,
    RETENTION_ACTIONS,
    SUBJECT_RIGHTS,
)
from ...shared.validators import as_naive_utc, validate_choice

PROCESS_STATUSES = ("in_review", "approved", "rejected", "completed")
NOTIFY_TARGETS = ("authority", "subjects")


class AuditLogCreate(BaseModel):
    """Schema for recording an action explicitly (e.g. LOGIN, PRINT)"""

    action: str
    entity: str = Field(..., min_length=1, max_length=50)
    entity_id: Optional[int] = None
    description: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None
    data_category: Optional[str] = None
    legal_basis: Optional[str] = Field(None, max_length=100)

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        return validate_choice(v, AUDIT_ACTIONS, "action")

    @field_validator("data_category")
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        return validate_choice(v, DATA_CATEGORIES, "data_category")


class DataAccessCreate(BaseModel):
    data_type: str
    data_owner_id: int
    data_owner_name: Optional[str] = None
    access_reason: Optional[str] = None
    access_type: str

    @field_validator("data_type")
    @classmethod
    def validate_data_type(cls, v: str) -> str:
        return validate_choice(v, ACCESS_DATA_TYPES, "data_type")

    @field_validator("access_type")
    @classmethod
    def validate_access_type(cls, v: str) -> str:
        return validate_choice(v, ACCESS_TYPES, "access_type")


class ConsentCreate(BaseModel):
    """Schema for recording a patient consent"""

    patient_id: int
    type: str = Field(..., min_length=1, max_length=100)
    purpose: str = Field(..., min_length=1)
    granted: bool
    method: Optional[str] = None  # digital, written, verbal
    evidence: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    terms_version: Optional[str] = Field(None, max_length=20)

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)


class ConsentResponse(BaseModel):
    id: int
    patient_id: int
    type: str
    purpose: str
    granted: bool
    granted_at: datetime
    revoked: bool
    revoked_at: Optional[datetime] = None
    method: Optional[str] = None
    expires_at: Optional[datetime] = None
    terms_version: Optional[str] = None

    class Config:
        from_attributes = True


class ConsentCheckResponse(BaseModel):
    patient_id: int
    type: str
    active: bool


class DataSubjectRequestCreate(BaseModel):
    patient_id: int
    right_type: str
    description: Optional[str] = None
    requested_data: Optional[list[str]] = None

    @field_validator("right_type")
    @classmethod
    def validate_right(cls, v: str) -> str:
        return validate_choice(v, SUBJECT_RIGHTS, "right_type")


class DataSubjectRequestProcess(BaseModel):
    status: str
    response: Optional[str] = None
    action_taken: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return validate_choice(v, PROCESS_STATUSES, "status")


class DataSubjectRequestResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    right_type: str
    description: Optional[str] = None
    requested_data: Optional[list[str]] = None
    status: str
    requested_at: datetime
    deadline: datetime
    processed_at: Optional[datetime] = None
    processed_by_name: Optional[str] = None
    response: Optional[str] = None
    action_taken: Optional[str] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BreachCreate(BaseModel):
    """Schema for registering a personal data breach"""

    type: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1)
    occurred_at: datetime
    detected_at: datetime
    affected_data: Optional[list[str]] = None
    affected_patients_count: Optional[int] = Field(None, ge=0)
    affected_patient_ids: Optional[list[int]] = None
    severity: str
    risk_assessment: Optional[str] = None
    immediate_measures: Optional[str] = None

    @field_validator("occurred_at", "detected_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        return validate_choice(v, BREACH_SEVERITIES, "severity")


class BreachNotify(BaseModel):
    target: str

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        return validate_choice(v, NOTIFY_TARGETS, "target")


class BreachResolve(BaseModel):
    preventive_measures: Optional[str] = None


class BreachResponse(BaseModel):
    id: int
    reference: str
    type: str
    description: str
    occurred_at: datetime
    detected_at: datetime
    severity: str
    status: str
    affected_patients_count: Optional[int] = None
    authority_notified: bool
    authority_notified_at: Optional[datetime] = None
    subjects_notified: bool
    subjects_notified_at: Optional[datetime] = None
    preventive_measures: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notification_deadline: Optional[datetime] = None

    class Config:
        from_attributes = True


class DataExportCreate(BaseModel):
    export_type: str = Field(..., min_length=1, max_length=50)
    patient_id: Optional[int] = None
    format: Optional[str] = None
    filters: Optional[dict[str, Any]] = None
    record_count: Optional[int] = Field(None, ge=0)
    file_size: Optional[int] = Field(None, ge=0)
    purpose: Optional[str] = Field(None, max_length=100)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: Optional[str]) -> Optional[str]:
        return validate_choice(v, ("pdf", "excel", "json", "xml", "csv"), "format")


class AuditLogResponse(BaseModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    action: str
    entity: str
    entity_id: Optional[int] = None
    description: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    data_category: Optional[str] = None
    legal_basis: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class DataAccessLogResponse(BaseModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    data_type: str
    data_owner_id: int
    data_owner_name: Optional[str] = None
    access_reason: Optional[str] = None
    access_type: str
    ip_address: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class RetentionPolicyCreate(BaseModel):
    entity_type: str = Field(..., min_length=1, max_length=50)
    category: Optional[str] = None
    retention_days: int = Field(..., gt=0)
    reason: Optional[str] = None
    action_after_expiry: str

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        return validate_choice(v, DATA_CATEGORIES, "category")

    @field_validator("action_after_expiry")
    @classmethod
    def validate_action(cls, v: str) -> str:
        return validate_choice(v, RETENTION_ACTIONS, "action_after_expiry")


class RetentionPolicyResponse(BaseModel):
    id: int
    entity_type: str
    category: Optional[str] = None
    retention_days: int
    reason: Optional[str] = None
    action_after_expiry: str
    active: bool

    class Config:
        from_attributes = True
