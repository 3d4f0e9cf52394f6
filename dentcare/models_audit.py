"""
GDPR Audit Models

- Every action on personal data is logged
- Sensitive data accesses are logged separately (who saw which patient)
- Consents, data subject requests and breaches are tracked with their deadlines
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base

AUDIT_ACTIONS = ("CREATE", "READ", "UPDATE", "DELETE", "EXPORT", "PRINT", "LOGIN", "LOGOUT")
DATA_CATEGORIES = ("personal", "medical", "financial", "system")
ACCESS_DATA_TYPES = ("patient_data", "medical_history", "financial_data", "consultation_notes")
ACCESS_TYPES = ("view", "edit", "export", "print")
SUBJECT_RIGHTS = ("access", "rectification", "erasure", "portability", "restriction", "objection")
REQUEST_STATUSES = ("pending", "in_review", "approved", "rejected", "completed")
BREACH_SEVERITIES = ("low", "medium", "high", "critical")
BREACH_STATUSES = ("open", "investigating", "resolved", "notified")
RETENTION_ACTIONS = ("anonymize", "archive", "delete")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    user_role = Column(String(50), nullable=True)
    clinic_id = Column(Integer, nullable=True, index=True)

    action = Column(String(50), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)

    description = Column(Text, nullable=True)
    changes = Column(JSON, nullable=True)  # before/after for UPDATE
    extra = Column("metadata", JSON, nullable=True)

    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    user_agent = Column(Text, nullable=True)

    data_category = Column(String(50), nullable=True)
    legal_basis = Column(String(100), nullable=True)  # consent, contract, legal_obligation, ...

    timestamp = Column(DateTime, server_default=func.now(), nullable=False, index=True)


class DataAccessLog(Base):
    __tablename__ = "data_access_logs"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False)
    user_name = Column(String(255), nullable=True)
    user_role = Column(String(50), nullable=True)
    clinic_id = Column(Integer, nullable=True, index=True)

    data_type = Column(String(50), nullable=False)
    data_owner_id = Column(Integer, nullable=False, index=True)  # Patient whose data was accessed
    data_owner_name = Column(String(255), nullable=True)

    access_reason = Column(Text, nullable=True)
    access_type = Column(String(20), nullable=False)

    ip_address = Column(String(45), nullable=True)
    timestamp = Column(DateTime, server_default=func.now(), nullable=False, index=True)


class Consent(Base):
    __tablename__ = "consents"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    type = Column(String(100), nullable=False)  # data_processing, marketing, insurer_sharing, ...
    purpose = Column(Text, nullable=False)

    granted = Column(Boolean, nullable=False)
    granted_at = Column(DateTime, nullable=False)

    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    method = Column(String(50), nullable=True)  # digital, written, verbal
    evidence = Column(JSON, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    terms_version = Column(String(20), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DataSubjectRequest(Base):
    __tablename__ = "data_subject_requests"

    id = Column(Integer, primary_key=True, index=True)

    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    patient_name = Column(String(255), nullable=True)
    patient_email = Column(String(255), nullable=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    right_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    requested_data = Column(JSON, nullable=True)

    status = Column(String(30), nullable=False, default="pending")

    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(Integer, nullable=True)
    processed_by_name = Column(String(255), nullable=True)
    response = Column(Text, nullable=True)
    action_taken = Column(Text, nullable=True)

    requested_at = Column(DateTime, server_default=func.now(), nullable=False)
    deadline = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    documents = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DataBreach(Base):
    __tablename__ = "data_breaches"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(60), unique=True, nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    type = Column(String(50), nullable=False)  # breach, loss, unauthorized_access, ...
    description = Column(Text, nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    detected_at = Column(DateTime, nullable=False)

    affected_data = Column(JSON, nullable=True)
    affected_patients_count = Column(Integer, nullable=True)
    affected_patient_ids = Column(JSON, nullable=True)

    severity = Column(String(20), nullable=False)
    risk_assessment = Column(Text, nullable=True)

    immediate_measures = Column(Text, nullable=True)
    preventive_measures = Column(Text, nullable=True)

    authority_notified = Column(Boolean, default=False, nullable=False)
    authority_notified_at = Column(DateTime, nullable=True)
    subjects_notified = Column(Boolean, default=False, nullable=False)
    subjects_notified_at = Column(DateTime, nullable=True)

    reported_by = Column(Integer, nullable=True)
    reported_by_name = Column(String(255), nullable=True)

    status = Column(String(30), nullable=False, default="open")
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class RetentionPolicy(Base):
    __tablename__ = "retention_policies"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    entity_type = Column(String(50), nullable=False)  # patients, appointments, invoices
    category = Column(String(50), nullable=True)  # personal, medical, financial
    retention_days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    action_after_expiry = Column(String(30), nullable=False)

    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DataExport(Base):
    __tablename__ = "data_exports"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False)
    user_name = Column(String(255), nullable=True)

    export_type = Column(String(50), nullable=False)  # full_patient, appointments_report, ...
    patient_id = Column(Integer, nullable=True)
    clinic_id = Column(Integer, nullable=True, index=True)

    format = Column(String(20), nullable=True)  # pdf, excel, json, xml
    filters = Column(JSON, nullable=True)
    record_count = Column(Integer, nullable=True)
    file_size = Column(Integer, nullable=True)  # bytes
    purpose = Column(String(100), nullable=True)  # gdpr_portability, backup, audit, ...

    ip_address = Column(String(45), nullable=True)
    timestamp = Column(DateTime, server_default=func.now(), nullable=False)
