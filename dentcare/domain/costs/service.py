"""Cost service - Business logic for operational costs, margins and budgets"""

import logging
from datetime import date, datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import AuditContext
from ...cache import CacheKeys, CacheTTL, get_cache, invalidate_reports
from ...models_costs import COST_CATEGORIES, Budget, CostAlert, OperationalCost, ProcedureCost
from ...security_utils import sanitize_text
from ...shared.numbers import percentage, round_half_up
from ..audit.service import AuditService
from .repository import CostRepository
from .schemas import BudgetCreate, CostCreate, ProcedureMarginRequest

logger = logging.getLogger(__name__)

OVERDUE_CRITICAL_DAYS = 30


def _format_quantity(value: float) -> str:
    return f"{value:g}"


def low_stock_message(cost: OperationalCost, stock: float) -> str:
    unit = cost.unit_of_measure or "units"
    return f'Material "{cost.description}" is running low ({_format_quantity(stock)} {unit} left).'


class CostService:
    """Service layer for cost business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CostRepository()
        self.audit = AuditService(db)

    # ========================================================================
    # OPERATIONAL COSTS
    # ========================================================================

    def create_cost(self, context: AuditContext, data: CostCreate) -> OperationalCost:
        """Create a cost. Equipment gets its monthly amortization, low stock raises an alert"""
        total = round_half_up(data.value * data.quantity)

        monthly_amortization = None
        if data.category == "equipment" and data.useful_life_months:
            amortizable = total - (data.residual_value or 0)
            monthly_amortization = round_half_up(amortizable / data.useful_life_months)

        cost = self.repo.create(
            self.db,
            OperationalCost(
                clinic_id=context.clinic_id,
                description=sanitize_text(data.description),
                category=data.category,
                subcategory=sanitize_text(data.subcategory),
                value=data.value,
                quantity=data.quantity,
                total=total,
                payment_type=data.payment_type,
                recurring=data.recurring,
                purchase_date=data.purchase_date,
                due_date=data.due_date,
                supplier=sanitize_text(data.supplier),
                supplier_invoice_number=data.supplier_invoice_number,
                procedure_id=data.procedure_id,
                notes=sanitize_text(data.notes),
                stock_quantity=data.stock_quantity,
                minimum_quantity=data.minimum_quantity,
                unit_of_measure=data.unit_of_measure,
                useful_life_months=data.useful_life_months,
                residual_value=data.residual_value,
                monthly_amortization=monthly_amortization,
                paid=False,
                receipts=[],
                created_by=context.user_id,
            ),
        )

        if (
            data.stock_quantity is not None
            and data.minimum_quantity is not None
            and data.stock_quantity <= data.minimum_quantity
        ):
            self._raise_low_stock_alert(cost, data.stock_quantity)

        self.audit.log_action(
            context,
            "CREATE",
            "operational_cost",
            cost.id,
            description=f"Cost created: {cost.description} ({cost.total:.2f})",
            data_category="financial",
        )
        invalidate_reports(context.clinic_id)
        logger.info(f"✅ Cost {cost.id} created for clinic {context.clinic_id} (total {cost.total:.2f})")
        return cost

    def list_costs(
        self,
        clinic_id: int,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        paid: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationalCost]:
        return self.repo.list_costs(self.db, clinic_id, category, start_date, end_date, paid, limit, offset)

    def _get_cost(self, clinic_id: int, cost_id: int) -> OperationalCost:
        cost = self.repo.get_cost(self.db, cost_id, clinic_id)
        if not cost:
            raise HTTPException(status_code=404, detail="Cost not found")
        return cost

    def mark_cost_paid(self, context: AuditContext, cost_id: int, paid_at: date) -> OperationalCost:
        cost = self._get_cost(context.clinic_id, cost_id)
        cost.paid = True
        cost.paid_at = paid_at
        cost = self.repo.save(self.db, cost)

        self.audit.log_action(
            context,
            "UPDATE",
            "operational_cost",
            cost.id,
            changes={"paid": {"before": False, "after": True}, "paid_at": paid_at.isoformat()},
            data_category="financial",
        )
        invalidate_reports(context.clinic_id)
        return cost

    def update_stock(self, context: AuditContext, cost_id: int, quantity: float, operation: str) -> float:
        """Apply a stock movement and return the new stock level"""
        cost = self._get_cost(context.clinic_id, cost_id)
        current = cost.stock_quantity or 0

        if operation == "add":
            new_stock = current + quantity
        elif operation == "remove":
            new_stock = max(0, current - quantity)
        else:
            new_stock = quantity

        cost.stock_quantity = new_stock
        cost = self.repo.save(self.db, cost)

        minimum = cost.minimum_quantity or 0
        if minimum > 0 and new_stock <= minimum:
            self._raise_low_stock_alert(cost, new_stock)

        logger.info(f"🔄 Stock of cost {cost.id}: {current:g} -> {new_stock:g} ({operation})")
        return new_stock

    def _raise_low_stock_alert(self, cost: OperationalCost, stock: float) -> CostAlert:
        logger.warning(f"⚠️ Low stock for cost {cost.id} in clinic {cost.clinic_id}")
        return self.repo.create(
            self.db,
            CostAlert(
                clinic_id=cost.clinic_id,
                cost_id=cost.id,
                type="low_stock",
                severity="warning",
                title="Low stock",
                message=low_stock_message(cost, stock),
            ),
        )

    # ========================================================================
    # PROCEDURE MARGINS
    # ========================================================================

    def calculate_procedure_margin(self, clinic_id: int, data: ProcedureMarginRequest) -> dict:
        procedure = self.repo.get_procedure(self.db, data.procedure_id, clinic_id)
        if not procedure:
            raise HTTPException(status_code=404, detail="Procedure not found")

        sale_price = float(procedure.base_price or 0)
        total_cost = round_half_up(data.materials_cost + data.labour_cost + data.equipment_cost + data.other_cost)
        margin = round_half_up(sale_price - total_cost)
        margin_percentage = percentage(margin, sale_price)

        self.repo.create(
            self.db,
            ProcedureCost(
                clinic_id=clinic_id,
                procedure_id=procedure.id,
                appointment_id=data.appointment_id,
                materials_cost=data.materials_cost,
                labour_cost=data.labour_cost,
                equipment_cost=data.equipment_cost,
                other_cost=data.other_cost,
                total_cost=total_cost,
                sale_price=sale_price,
                margin=margin,
                margin_percentage=margin_percentage,
                materials_used=[],
            ),
        )

        return {
            "procedure_id": procedure.id,
            "total_cost": total_cost,
            "sale_price": sale_price,
            "margin": margin,
            "margin_percentage": margin_percentage,
        }

    def procedure_cost_history(self, clinic_id: int, procedure_id: int) -> list[ProcedureCost]:
        return self.repo.get_procedure_costs(self.db, clinic_id, procedure_id)

    # ========================================================================
    # REPORTS AND BUDGETS
    # ========================================================================

    def monthly_report(self, clinic_id: int, month: int, year: int) -> dict:
        """Revenue, costs and budget variance for one month (cached per clinic and period)"""
        key = CacheKeys.cost_report(clinic_id, f"{year}-{month:02d}")
        return get_cache().get_or_set(key, lambda: self._build_monthly_report(clinic_id, month, year), CacheTTL.REPORTS)

    def _build_monthly_report(self, clinic_id: int, month: int, year: int) -> dict:
        start = date(year, month, 1)
        end = start + relativedelta(months=1)

        revenue = round_half_up(
            self.repo.sum_paid_invoices(
                self.db, clinic_id, datetime(start.year, start.month, 1), datetime(end.year, end.month, 1)
            )
        )
        costs = round_half_up(self.repo.sum_costs(self.db, clinic_id, start, end))
        net_profit = round_half_up(revenue - costs)

        report = {
            "month": month,
            "year": year,
            "revenue": revenue,
            "costs": costs,
            "net_profit": net_profit,
            "margin_percentage": percentage(net_profit, revenue),
            "budget_total": None,
            "budget_variance": None,
            "budget_variance_percentage": None,
        }

        budget = self.repo.get_budget(self.db, clinic_id, month, year)
        if budget:
            variance = round_half_up(costs - budget.total)
            report["budget_total"] = budget.total
            report["budget_variance"] = variance
            report["budget_variance_percentage"] = (
                round_half_up(variance / budget.total * 100) if budget.total else None
            )

        logger.info(f"📊 Monthly report {year}-{month:02d} built for clinic {clinic_id}")
        return report

    def create_budget(self, context: AuditContext, data: BudgetCreate) -> Budget:
        if self.repo.get_budget(self.db, context.clinic_id, data.month, data.year):
            raise HTTPException(status_code=400, detail="A budget already exists for this month")

        amounts = {category: getattr(data, category) for category in COST_CATEGORIES}
        total = round_half_up(sum(amounts.values()))
        expected_profit = (
            round_half_up(data.expected_revenue - total) if data.expected_revenue is not None else None
        )

        try:
            budget = self.repo.create(
                self.db,
                Budget(
                    clinic_id=context.clinic_id,
                    month=data.month,
                    year=data.year,
                    total=total,
                    expected_revenue=data.expected_revenue,
                    expected_profit=expected_profit,
                    notes=sanitize_text(data.notes),
                    **amounts,
                ),
            )
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(status_code=400, detail="A budget already exists for this month")

        self.audit.log_action(
            context,
            "CREATE",
            "budget",
            budget.id,
            description=f"Budget {data.year}-{data.month:02d}: {total:.2f}",
            data_category="financial",
        )
        invalidate_reports(context.clinic_id)
        return budget

    # ========================================================================
    # ALERTS
    # ========================================================================

    def list_alerts(
        self, clinic_id: int, read: Optional[bool] = None, resolved: Optional[bool] = None, limit: int = 20
    ) -> list[CostAlert]:
        return self.repo.list_alerts(self.db, clinic_id, read, resolved, limit)

    def _get_alert(self, clinic_id: int, alert_id: int) -> CostAlert:
        alert = self.repo.get_alert(self.db, alert_id, clinic_id)
        if not alert:
            raise HTTPException(status_code=404, detail="Alert not found")
        return alert

    def mark_alert_read(self, clinic_id: int, alert_id: int) -> CostAlert:
        alert = self._get_alert(clinic_id, alert_id)
        alert.read = True
        return self.repo.save(self.db, alert)

    def resolve_alert(self, clinic_id: int, alert_id: int) -> CostAlert:
        alert = self._get_alert(clinic_id, alert_id)
        alert.resolved = True
        alert.read = True
        return self.repo.save(self.db, alert)

    def scan_alerts(self, clinic_id: int, today: Optional[date] = None) -> list[CostAlert]:
        """Create overdue-payment and budget alerts that are not already open"""
        today = today or date.today()
        created = []

        for cost in self.repo.get_overdue_unpaid_costs(self.db, clinic_id, today):
            if self.repo.has_open_alert(self.db, clinic_id, "payment_overdue", cost_id=cost.id):
                continue
            days_overdue = (today - cost.due_date).days
            created.append(
                self.repo.create(
                    self.db,
                    CostAlert(
                        clinic_id=clinic_id,
                        cost_id=cost.id,
                        type="payment_overdue",
                        severity="critical" if days_overdue > OVERDUE_CRITICAL_DAYS else "warning",
                        title="Payment overdue",
                        message=(
                            f'"{cost.description}" ({cost.total:.2f}) was due on {cost.due_date.isoformat()} '
                            f"and is {days_overdue} days overdue."
                        ),
                    ),
                )
            )

        period = f"{today.year}-{today.month:02d}"
        budget = self.repo.get_budget(self.db, clinic_id, today.month, today.year)
        if budget and not self.repo.has_open_alert(self.db, clinic_id, "budget_exceeded", period=period):
            month_start = date(today.year, today.month, 1)
            spent = round_half_up(
                self.repo.sum_costs(self.db, clinic_id, month_start, month_start + relativedelta(months=1))
            )
            if spent > budget.total:
                created.append(
                    self.repo.create(
                        self.db,
                        CostAlert(
                            clinic_id=clinic_id,
                            type="budget_exceeded",
                            severity="critical",
                            period=period,
                            title="Budget exceeded",
                            message=f"Costs for {period} ({spent:.2f}) exceed the budget of {budget.total:.2f}.",
                        ),
                    )
                )

        if created:
            logger.warning(f"⚠️ {len(created)} new cost alerts for clinic {clinic_id}")
        return created
