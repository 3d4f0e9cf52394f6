"""
Subscription plans, Stripe price metadata and plan limits.

Stripe products and prices are created in the Stripe Dashboard; only their
price ids are configured here.
"""

from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from .config import STRIPE_PRICE_BASIC_MONTHLY, STRIPE_PRICE_ENTERPRISE_MONTHLY, STRIPE_PRICE_PRO_MONTHLY
from .models import Appointment, Clinic, Dentist, Patient

STRIPE_PRODUCTS = {
    "BASIC": {
        "name": "Basic Plan",
        "description": "For small clinics with up to 100 patients",
        "features": [
            "Up to 100 active patients",
            "1 dentist",
            "Basic calendar",
            "Appointment management",
            "Simple invoicing",
            "Email support",
        ],
        "price_monthly": 29,  # EUR
        "price_id": STRIPE_PRICE_BASIC_MONTHLY,
    },
    "PRO": {
        "name": "Pro Plan",
        "description": "For growing clinics with up to 500 patients",
        "features": [
            "Up to 500 active patients",
            "Up to 5 dentists",
            "Advanced calendar",
            "Full appointment management",
            "Invoicing and payments",
            "Basic reports",
            "Automatic reminders",
            "Priority support",
        ],
        "price_monthly": 79,
        "price_id": STRIPE_PRICE_PRO_MONTHLY,
    },
    "ENTERPRISE": {
        "name": "Enterprise Plan",
        "description": "Complete solution for large clinics",
        "features": [
            "Unlimited patients",
            "Unlimited dentists",
            "Calendar with multiple views",
            "Full management suite",
            "Advanced invoicing",
            "Complete reports and statistics",
            "SMS and email notifications",
            "Integration API",
            "Dedicated 24/7 support",
            "Personalized training",
        ],
        "price_monthly": 199,
        "price_id": STRIPE_PRICE_ENTERPRISE_MONTHLY,
    },
}

# None means unlimited
PLAN_LIMITS = {
    "BASIC": {"patients": 100, "dentists": 1, "appointments_per_month": 200},
    "PRO": {"patients": 500, "dentists": 5, "appointments_per_month": 1000},
    "ENTERPRISE": {"patients": None, "dentists": None, "appointments_per_month": None},
}

PLAN_RESOURCES = ("patients", "dentists", "appointments_per_month")


def get_plan_by_price_id(price_id: str) -> Optional[dict]:
    """Find the plan for a Stripe price id. Returns {"plan", "product"} or None"""
    for plan, product in STRIPE_PRODUCTS.items():
        if product["price_id"] == price_id:
            return {"plan": plan, "product": product}
    return None


def get_plan_limit(plan: Optional[str], resource: str) -> Optional[int]:
    """Get the limit of a resource for a plan. Returns None for unlimited, 0 for no plan."""
    if not plan or plan.upper() not in PLAN_LIMITS:
        return 0
    return PLAN_LIMITS[plan.upper()][resource]


def _month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


def count_resource(clinic: Clinic, resource: str, db: Session, now: Optional[datetime] = None) -> int:
    """Current usage of a plan resource"""
    if resource == "patients":
        return db.query(Patient).filter(Patient.clinic_id == clinic.id, Patient.active.is_(True)).count()

    if resource == "dentists":
        return db.query(Dentist).filter(Dentist.clinic_id == clinic.id, Dentist.active.is_(True)).count()

    if resource == "appointments_per_month":
        month_start = _month_start(now or datetime.utcnow())
        return (
            db.query(Appointment)
            .filter(
                Appointment.clinic_id == clinic.id,
                Appointment.status != "cancelled",
                Appointment.start_time >= month_start,
                Appointment.start_time < month_start + relativedelta(months=1),
            )
            .count()
        )

    raise ValueError(f"Unknown plan resource: {resource}")


def check_plan_limit(clinic: Clinic, resource: str, db: Session, now: Optional[datetime] = None) -> tuple:
    """
    Check if the clinic can add one more unit of a resource.
    Returns (allowed, error_message).
    """
    if not clinic.plan:
        return (False, "Please select a plan to continue.")

    limit = get_plan_limit(clinic.plan, resource)

    # Unlimited plan
    if limit is None:
        return (True, None)

    current = count_resource(clinic, resource, db, now)
    if current < limit:
        return (True, None)

    label = resource.replace("_", " ")
    return (
        False,
        f"You've reached your plan limit of {limit} {label}. Please upgrade your plan.",
    )


def get_usage_stats(clinic: Clinic, db: Session, now: Optional[datetime] = None) -> dict:
    """
    Get current usage statistics for the clinic.
    Returns plan and, per resource, limit, current and remaining.
    """
    now = now or datetime.utcnow()
    usage = {}
    for resource in PLAN_RESOURCES:
        limit = get_plan_limit(clinic.plan, resource)
        current = count_resource(clinic, resource, db, now)
        usage[resource] = {
            "limit": limit,  # None for unlimited
            "current": current,
            "remaining": None if limit is None else max(0, limit - current),
        }

    return {
        "plan": clinic.plan,
        "subscription_status": clinic.subscription_status,
        "usage": usage,
        "reset_date": (_month_start(now) + relativedelta(months=1)).isoformat(),
    }
