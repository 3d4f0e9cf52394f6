"""
Operational cost tracking models

Tracks fixed and variable clinic costs, per-procedure costs and margins,
monthly budgets and the alerts raised from them.
"""
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base
from .models import Money

COST_CATEGORIES = (
    "fixed",
    "variable",
    "material",
    "equipment",
    "staff",
    "marketing",
    "administrative",
    "infrastructure",
    "training",
    "other",
)
PAYMENT_TYPES = ("one_off", "monthly", "quarterly", "semiannual", "annual")
ALERT_TYPES = ("low_stock", "budget_exceeded", "payment_overdue")
ALERT_SEVERITIES = ("info", "warning", "critical")


class OperationalCost(Base):
    __tablename__ = "operational_costs"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    procedure_id = Column(Integer, ForeignKey("procedures.id"), nullable=True)

    description = Column(Text, nullable=False)
    category = Column(String(30), nullable=False, index=True)
    subcategory = Column(String(200), nullable=True)  # e.g. "Anaesthetics", "Burs"

    value = Column(Money, nullable=False)
    quantity = Column(Money, nullable=False, default=1)
    total = Column(Money, nullable=False)

    payment_type = Column(String(20), nullable=False, default="one_off")
    recurring = Column(Boolean, default=False, nullable=False)

    purchase_date = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=True)

    supplier = Column(String(200), nullable=True)
    supplier_invoice_number = Column(String(100), nullable=True)

    # Stock control (materials)
    stock_quantity = Column(Money, nullable=True)
    minimum_quantity = Column(Money, nullable=True)
    unit_of_measure = Column(String(50), nullable=True)  # e.g. "unit", "ml", "g"

    # Amortization (equipment)
    useful_life_months = Column(Integer, nullable=True)
    residual_value = Column(Money, nullable=True)
    monthly_amortization = Column(Money, nullable=True)

    paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    receipts = Column(JSON, default=list, nullable=True)  # Attachment URLs
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ProcedureCost(Base):
    __tablename__ = "procedure_costs"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    procedure_id = Column(Integer, ForeignKey("procedures.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    materials_cost = Column(Money, default=0)
    labour_cost = Column(Money, default=0)
    equipment_cost = Column(Money, default=0)
    other_cost = Column(Money, default=0)
    total_cost = Column(Money, nullable=False)

    sale_price = Column(Money, nullable=False)
    margin = Column(Money, nullable=True)
    margin_percentage = Column(Money, nullable=True)

    materials_used = Column(JSON, default=list, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Budget(Base):
    __tablename__ = "budgets"
    __table_args__ = (UniqueConstraint("clinic_id", "year", "month", name="uq_budget_clinic_period"),)

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)

    month = Column(Integer, nullable=False)  # 1-12
    year = Column(Integer, nullable=False)

    fixed = Column(Money, default=0)
    variable = Column(Money, default=0)
    material = Column(Money, default=0)
    equipment = Column(Money, default=0)
    staff = Column(Money, default=0)
    marketing = Column(Money, default=0)
    administrative = Column(Money, default=0)
    infrastructure = Column(Money, default=0)
    training = Column(Money, default=0)
    other = Column(Money, default=0)

    total = Column(Money, nullable=False)
    expected_revenue = Column(Money, nullable=True)
    expected_profit = Column(Money, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class CostAlert(Base):
    __tablename__ = "cost_alerts"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    cost_id = Column(Integer, ForeignKey("operational_costs.id"), nullable=True)

    type = Column(String(30), nullable=False)  # low_stock, budget_exceeded, payment_overdue
    severity = Column(String(20), nullable=False)  # info, warning, critical
    # "YYYY-MM" for budget alerts
    period = Column(String(7), nullable=True)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    read = Column(Boolean, default=False, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
