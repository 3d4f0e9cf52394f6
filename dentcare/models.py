from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Money columns are stored with two decimals and handled as floats in Python
Money = Numeric(10, 2, asdecimal=False)

APPOINTMENT_STATUSES = ("scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show")
INVOICE_STATUSES = ("draft", "sent", "partially_paid", "paid", "cancelled")


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(2), nullable=False, default="PT")
    active = Column(Boolean, default=True, nullable=False)
    # Subscription: basic, pro, enterprise - null until the clinic subscribes
    plan = Column(String(50), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    subscription_status = Column(String(50), default="active", nullable=True)
    subscription_start_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="clinic")
    dentists = relationship("Dentist", back_populates="clinic")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    open_id = Column(String(64), unique=True, index=True, nullable=False)  # Identity provider subject
    name = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    role = Column(String(20), default="user", nullable=False)  # user, admin
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True, index=True)
    dentist_id = Column(Integer, ForeignKey("dentists.id"), nullable=True)  # Set for dentist accounts
    last_signed_in = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    clinic = relationship("Clinic", back_populates="users")
    dentist = relationship("Dentist")


class Dentist(Base):
    __tablename__ = "dentists"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    specialization = Column(String(255), nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    clinic = relationship("Clinic", back_populates="dentists")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Procedure(Base):
    __tablename__ = "procedures"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    code = Column(String(50), nullable=True)
    name = Column(String(255), nullable=False)
    base_price = Column(Money, nullable=False, default=0)
    duration_minutes = Column(Integer, default=30)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    dentist_id = Column(Integer, ForeignKey("dentists.id"), nullable=False, index=True)
    procedure_id = Column(Integer, ForeignKey("procedures.id"), nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")
    title = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    # Google Calendar event linked to this appointment
    google_event_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    dentist = relationship("Dentist")
    clinic = relationship("Clinic")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    number = Column(String(50), nullable=False)
    invoice_date = Column(DateTime, nullable=False)
    total = Column(Money, nullable=False, default=0)
    amount_paid = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime, server_default=func.now())
