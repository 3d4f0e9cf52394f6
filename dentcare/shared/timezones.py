"""Clinic local time helpers. Appointment times are stored naive, in clinic local time"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import GOOGLE_CALENDAR_TIMEZONE

CLINIC_TZ = ZoneInfo(GOOGLE_CALENDAR_TIMEZONE)


def clinic_now() -> datetime:
    return datetime.now(CLINIC_TZ).replace(tzinfo=None)


def as_clinic_local(value: Optional[datetime]) -> Optional[datetime]:
    """Naive values are already local. Aware values are converted and made naive"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(CLINIC_TZ).replace(tzinfo=None)
