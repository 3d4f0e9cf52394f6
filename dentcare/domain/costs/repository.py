"""Cost repository - Database operations for operational costs"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Invoice, Procedure
from ...models_costs import Budget, CostAlert, OperationalCost, ProcedureCost


class CostRepository:
    """Repository for cost database operations"""

    @staticmethod
    def create(db: Session, record):
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def save(db: Session, record):
        db.commit()
        db.refresh(record)
        return record

    # Costs

    @staticmethod
    def get_cost(db: Session, cost_id: int, clinic_id: int) -> Optional[OperationalCost]:
        return (
            db.query(OperationalCost)
            .filter(OperationalCost.id == cost_id, OperationalCost.clinic_id == clinic_id)
            .first()
        )

    @staticmethod
    def list_costs(
        db: Session,
        clinic_id: int,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        paid: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationalCost]:
        query = db.query(OperationalCost).filter(OperationalCost.clinic_id == clinic_id)

        if category:
            query = query.filter(OperationalCost.category == category)
        if start_date:
            query = query.filter(OperationalCost.purchase_date >= start_date)
        if end_date:
            query = query.filter(OperationalCost.purchase_date <= end_date)
        if paid is not None:
            query = query.filter(OperationalCost.paid.is_(paid))

        return (
            query.order_by(OperationalCost.purchase_date.desc(), OperationalCost.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def sum_costs(db: Session, clinic_id: int, start: date, end: date) -> float:
        """Sum of cost totals purchased in [start, end)"""
        total = (
            db.query(func.coalesce(func.sum(OperationalCost.total), 0))
            .filter(
                OperationalCost.clinic_id == clinic_id,
                OperationalCost.purchase_date >= start,
                OperationalCost.purchase_date < end,
            )
            .scalar()
        )
        return float(total or 0)

    @staticmethod
    def get_overdue_unpaid_costs(db: Session, clinic_id: int, today: date) -> list[OperationalCost]:
        return (
            db.query(OperationalCost)
            .filter(
                OperationalCost.clinic_id == clinic_id,
                OperationalCost.paid.is_(False),
                OperationalCost.due_date.isnot(None),
                OperationalCost.due_date < today,
            )
            .all()
        )

    # Revenue

    @staticmethod
    def sum_paid_invoices(db: Session, clinic_id: int, start: datetime, end: datetime) -> float:
        """Sum of paid invoice totals dated in [start, end)"""
        total = (
            db.query(func.coalesce(func.sum(Invoice.total), 0))
            .filter(
                Invoice.clinic_id == clinic_id,
                Invoice.status == "paid",
                Invoice.invoice_date >= start,
                Invoice.invoice_date < end,
            )
            .scalar()
        )
        return float(total or 0)

    # Procedures

    @staticmethod
    def get_procedure(db: Session, procedure_id: int, clinic_id: int) -> Optional[Procedure]:
        return db.query(Procedure).filter(Procedure.id == procedure_id, Procedure.clinic_id == clinic_id).first()

    @staticmethod
    def get_procedure_costs(db: Session, clinic_id: int, procedure_id: int) -> list[ProcedureCost]:
        return (
            db.query(ProcedureCost)
            .filter(ProcedureCost.clinic_id == clinic_id, ProcedureCost.procedure_id == procedure_id)
            .order_by(ProcedureCost.id.desc())
            .all()
        )

    # Budgets

    @staticmethod
    def get_budget(db: Session, clinic_id: int, month: int, year: int) -> Optional[Budget]:
        return (
            db.query(Budget)
            .filter(Budget.clinic_id == clinic_id, Budget.month == month, Budget.year == year)
            .first()
        )

    # Alerts

    @staticmethod
    def get_alert(db: Session, alert_id: int, clinic_id: int) -> Optional[CostAlert]:
        return db.query(CostAlert).filter(CostAlert.id == alert_id, CostAlert.clinic_id == clinic_id).first()

    @staticmethod
    def list_alerts(
        db: Session,
        clinic_id: int,
        read: Optional[bool] = None,
        resolved: Optional[bool] = None,
        limit: int = 20,
    ) -> list[CostAlert]:
        query = db.query(CostAlert).filter(CostAlert.clinic_id == clinic_id)

        if read is not None:
            query = query.filter(CostAlert.read.is_(read))
        if resolved is not None:
            query = query.filter(CostAlert.resolved.is_(resolved))

        return query.order_by(CostAlert.created_at.desc(), CostAlert.id.desc()).limit(limit).all()

    @staticmethod
    def has_open_alert(
        db: Session,
        clinic_id: int,
        alert_type: str,
        cost_id: Optional[int] = None,
        period: Optional[str] = None,
    ) -> bool:
        query = db.query(CostAlert).filter(
            CostAlert.clinic_id == clinic_id,
            CostAlert.type == alert_type,
            CostAlert.resolved.is_(False),
        )
        if cost_id is not None:
            query = query.filter(CostAlert.cost_id == cost_id)
        if period is not None:
            query = query.filter(CostAlert.period == period)
        return db.query(query.exists()).scalar()
