"""Costs domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...models_costs import COST_CATEGORIES, PAYMENT_TYPES
from ...shared.validators import validate_choice, validate_non_negative

STOCK_OPERATIONS = ("add", "remove", "set")


class CostCreate(BaseModel):
    """Schema for creating an operational cost"""

    description: str = Field(..., min_length=1, max_length=500)
    category: str
    subcategory: Optional[str] = Field(None, max_length=200)
    value: float = Field(..., gt=0)
    quantity: float = Field(1, gt=0)
    payment_type: str = "one_off"
    recurring: bool = False
    purchase_date: date
    due_date: Optional[date] = None
    supplier: Optional[str] = Field(None, max_length=200)
    supplier_invoice_number: Optional[str] = Field(None, max_length=100)
    procedure_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=2000)
    # Materials
    stock_quantity: Optional[float] = None
    minimum_quantity: Optional[float] = None
    unit_of_measure: Optional[str] = Field(None, max_length=50)
    # Equipment
    useful_life_months: Optional[int] = Field(None, gt=0)
    residual_value: Optional[float] = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        return validate_choice(v, COST_CATEGORIES, "category")

    @field_validator("payment_type")
    @classmethod
    def validate_payment_type(cls, v: str) -> str:
        return validate_choice(v, PAYMENT_TYPES, "payment_type")

    @field_validator("stock_quantity", "minimum_quantity", "residual_value")
    @classmethod
    def validate_amounts(cls, v: Optional[float], info) -> Optional[float]:
        return validate_non_negative(v, info.field_name)


class CostResponse(BaseModel):
    id: int
    description: str
    category: str
    subcategory: Optional[str] = None
    value: float
    quantity: float
    total: float
    payment_type: str
    recurring: bool
    purchase_date: date
    due_date: Optional[date] = None
    supplier: Optional[str] = None
    supplier_invoice_number: Optional[str] = None
    procedure_id: Optional[int] = None
    notes: Optional[str] = None
    stock_quantity: Optional[float] = None
    minimum_quantity: Optional[float] = None
    unit_of_measure: Optional[str] = None
    useful_life_months: Optional[int] = None
    residual_value: Optional[float] = None
    monthly_amortization: Optional[float] = None
    paid: bool
    paid_at: Optional[date] = None

    class Config:
        from_attributes = True


class MarkPaidRequest(BaseModel):
    paid_at: date


class StockUpdate(BaseModel):
    quantity: float = Field(..., ge=0)
    operation: str

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v: str) -> str:
        return validate_choice(v, STOCK_OPERATIONS, "operation")


class ProcedureMarginRequest(BaseModel):
    procedure_id: int
    materials_cost: float = Field(0, ge=0)
    labour_cost: float = Field(0, ge=0)
    equipment_cost: float = Field(0, ge=0)
    other_cost: float = Field(0, ge=0)
    appointment_id: Optional[int] = None


class ProcedureMarginResponse(BaseModel):
    procedure_id: int
    total_cost: float
    sale_price: float
    margin: float
    margin_percentage: float


class MonthlyReport(BaseModel):
    month: int
    year: int
    revenue: float
    costs: float
    net_profit: float
    margin_percentage: float
    budget_total: Optional[float] = None
    budget_variance: Optional[float] = None
    budget_variance_percentage: Optional[float] = None


class BudgetCreate(BaseModel):
    """Schema for a monthly budget - one amount per cost category"""

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    fixed: float = Field(0, ge=0)
    variable: float = Field(0, ge=0)
    material: float = Field(0, ge=0)
    equipment: float = Field(0, ge=0)
    staff: float = Field(0, ge=0)
    marketing: float = Field(0, ge=0)
    administrative: float = Field(0, ge=0)
    infrastructure: float = Field(0, ge=0)
    training: float = Field(0, ge=0)
    other: float = Field(0, ge=0)
    expected_revenue: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BudgetResponse(BaseModel):
    id: int
    month: int
    year: int
    fixed: float
    variable: float
    material: float
    equipment: float
    staff: float
    marketing: float
    administrative: float
    infrastructure: float
    training: float
    other: float
    total: float
    expected_revenue: Optional[float] = None
    expected_profit: Optional[float] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AlertResponse(BaseModel):
    id: int
    cost_id: Optional[int] = None
    type: str
    severity: str
    period: Optional[str] = None
    title: str
    message: str
    read: bool
    resolved: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
