"""Billing router - Plan catalogue, clinic usage and cache administration"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import get_current_admin_user, get_current_clinic_user
from ...cache import CacheKeys, CacheTTL, get_cache, get_cache_stats, invalidate_clinic
from ...database import get_db
from ...models import Clinic, User
from ...plans import PLAN_LIMITS, STRIPE_PRODUCTS, get_plan_by_price_id, get_usage_stats
from .schemas import CacheClearResponse, CacheStatsResponse, PlanResponse, UsageResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


def _plan_entry(plan: str, product: dict) -> dict:
    return {"plan": plan, **product, "limits": PLAN_LIMITS[plan]}


def list_plans() -> list[dict]:
    return [_plan_entry(plan, product) for plan, product in STRIPE_PRODUCTS.items()]


# ============================================================================
# PLANS
# ============================================================================


@router.get("/plans", response_model=list[PlanResponse])
async def get_plans():
    """Public plan catalogue"""
    return get_cache().get_or_set(CacheKeys.plans(), list_plans, CacheTTL.PLANS)


@router.get("/plans/by-price/{price_id}", response_model=PlanResponse)
async def get_plan_for_price(price_id: str):
    match = get_plan_by_price_id(price_id)
    if not match:
        raise HTTPException(status_code=404, detail="Plan not found")
    return _plan_entry(match["plan"], match["product"])


@router.get("/billing/usage", response_model=UsageResponse)
async def get_usage(
    current_user: User = Depends(get_current_clinic_user),
    db: Session = Depends(get_db),
):
    """Usage of the caller clinic against its plan limits"""
    clinic = db.query(Clinic).filter(Clinic.id == current_user.clinic_id).first()
    if not clinic:
        raise HTTPException(status_code=404, detail="Clinic not found")
    return get_usage_stats(clinic, db)


# ============================================================================
# CACHE ADMIN
# ============================================================================


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(current_user: User = Depends(get_current_admin_user)):
    return get_cache_stats(current_user.clinic_id)


@router.post("/cache/clear", response_model=CacheClearResponse)
async def cache_clear(current_user: User = Depends(get_current_admin_user)):
    """Drop every cached entry of the caller clinic"""
    removed = invalidate_clinic(current_user.clinic_id)
    logger.info(f"🔄 Cache cleared for clinic {current_user.clinic_id}: {removed} entries")
    return {"success": True, "removed": removed}
