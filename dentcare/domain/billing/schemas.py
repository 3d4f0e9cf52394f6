"""Billing domain schemas - Plan catalogue, usage and cache admin responses"""

from typing import Optional

from pydantic import BaseModel


class PlanLimits(BaseModel):
    patients: Optional[int] = None  # None = unlimited
    dentists: Optional[int] = None
    appointments_per_month: Optional[int] = None


class PlanResponse(BaseModel):
    plan: str
    name: str
    description: str
    features: list[str]
    price_monthly: float
    price_id: str
    limits: PlanLimits


class ResourceUsage(BaseModel):
    limit: Optional[int] = None
    current: int
    remaining: Optional[int] = None


class UsageResponse(BaseModel):
    plan: Optional[str] = None
    subscription_status: Optional[str] = None
    usage: dict[str, ResourceUsage]
    reset_date: str


class CacheStatsResponse(BaseModel):
    backend: str
    size: int
    clinic_keys: list[str]


class CacheClearResponse(BaseModel):
    success: bool = True
    removed: int
