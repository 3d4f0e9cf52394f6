"""Cost router - FastAPI endpoints for operational costs"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuditContext, get_audit_context, get_current_clinic_user
from ...database import get_db
from ...models import User
from .schemas import (
    AlertResponse,
    BudgetCreate,
    BudgetResponse,
    CostCreate,
    CostResponse,
    MarkPaidRequest,
    MonthlyReport,
    ProcedureMarginRequest,
    ProcedureMarginResponse,
    StockUpdate,
)
from .service import CostService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/costs", tags=["Costs"])


def get_cost_service(db: Session = Depends(get_db)) -> CostService:
    """Dependency injection for CostService"""
    return CostService(db)


# ============================================================================
# OPERATIONAL COSTS
# ============================================================================


@router.post("", response_model=CostResponse)
async def create_cost(
    data: CostCreate,
    context: AuditContext = Depends(get_audit_context),
    service: CostService = Depends(get_cost_service),
):
    """Create a new operational cost"""
    return service.create_cost(context, data)


@router.get("", response_model=list[CostResponse])
async def list_costs(
    category: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    paid: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    """List costs, newest purchase first"""
    return service.list_costs(current_user.clinic_id, category, start_date, end_date, paid, limit, offset)


@router.post("/{cost_id}/pay", response_model=CostResponse)
async def mark_cost_paid(
    cost_id: int,
    data: MarkPaidRequest,
    context: AuditContext = Depends(get_audit_context),
    service: CostService = Depends(get_cost_service),
):
    return service.mark_cost_paid(context, cost_id, data.paid_at)


@router.post("/{cost_id}/stock")
async def update_stock(
    cost_id: int,
    data: StockUpdate,
    context: AuditContext = Depends(get_audit_context),
    service: CostService = Depends(get_cost_service),
):
    """Add, remove or set the stock of a material"""
    new_stock = service.update_stock(context, cost_id, data.quantity, data.operation)
    return {"success": True, "new_stock": new_stock}


# ============================================================================
# MARGINS, REPORTS AND BUDGETS
# ============================================================================


@router.post("/procedure-margin", response_model=ProcedureMarginResponse)
async def calculate_procedure_margin(
    data: ProcedureMarginRequest,
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return service.calculate_procedure_margin(current_user.clinic_id, data)


@router.get("/procedures/{procedure_id}/history")
async def procedure_cost_history(
    procedure_id: int,
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return [
        {
            "id": pc.id,
            "appointment_id": pc.appointment_id,
            "total_cost": pc.total_cost,
            "sale_price": pc.sale_price,
            "margin": pc.margin,
            "margin_percentage": pc.margin_percentage,
            "created_at": pc.created_at,
        }
        for pc in service.procedure_cost_history(current_user.clinic_id, procedure_id)
    ]


@router.get("/reports/monthly", response_model=MonthlyReport)
async def monthly_report(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return service.monthly_report(current_user.clinic_id, month, year)


@router.post("/budgets", response_model=BudgetResponse)
async def create_budget(
    data: BudgetCreate,
    context: AuditContext = Depends(get_audit_context),
    service: CostService = Depends(get_cost_service),
):
    return service.create_budget(context, data)


# ============================================================================
# ALERTS
# ============================================================================


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    read: Optional[bool] = Query(None),
    resolved: Optional[bool] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return service.list_alerts(current_user.clinic_id, read, resolved, limit)


@router.post("/alerts/scan", response_model=list[AlertResponse])
async def scan_alerts(
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    """Raise overdue-payment and budget alerts for the clinic"""
    return service.scan_alerts(current_user.clinic_id)


@router.post("/alerts/{alert_id}/read", response_model=AlertResponse)
async def mark_alert_read(
    alert_id: int,
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return service.mark_alert_read(current_user.clinic_id, alert_id)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    current_user: User = Depends(get_current_clinic_user),
    service: CostService = Depends(get_cost_service),
):
    return service.resolve_alert(current_user.clinic_id, alert_id)
