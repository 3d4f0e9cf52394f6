"""
Google Calendar Integration Routes
Handles OAuth connection, event management and appointment syncing
"""

import logging
from datetime import datetime

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_clinic_user, get_current_dentist_user
from ...database import get_db
from ...models import User
from ...shared.timezones import as_clinic_local
from .client import GoogleCalendarClient, get_http_client
from .schemas import (
    AuthUrlResponse,
    CalendarItem,
    ConfigResponse,
    EventCreate,
    EventIdResponse,
    ExchangeCodeRequest,
    FullSyncRequest,
    StatusResponse,
    SyncAppointmentRequest,
    SyncResult,
)
from .service import GoogleCalendarService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google-calendar", tags=["google-calendar"])


def get_calendar_service(
    db: Session = Depends(get_db), http: httpx.AsyncClient = Depends(get_http_client)
) -> GoogleCalendarService:
    """Dependency injection for GoogleCalendarService"""
    return GoogleCalendarService(db, GoogleCalendarClient(http))


# ============================================================================
# CONNECTION
# ============================================================================


@router.get("/config", response_model=ConfigResponse)
async def check_config(
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Whether Google OAuth credentials are configured on the server"""
    return {"configured": service.check_config()}


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Initiate Google Calendar OAuth flow"""
    return {"auth_url": service.get_auth_url(current_user)}


@router.post("/exchange-code", response_model=StatusResponse)
async def exchange_code(
    data: ExchangeCodeRequest,
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Handle the OAuth code sent back by the frontend"""
    await service.exchange_code(current_user, data.code)
    return service.status(current_user)


@router.get("/status", response_model=StatusResponse)
async def get_status(
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Get Google Calendar connection status"""
    return service.status(current_user)


@router.post("/disconnect")
async def disconnect(
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Disconnect Google Calendar integration"""
    await service.disconnect(current_user)
    return {"success": True, "message": "Google Calendar disconnected"}


# ============================================================================
# CALENDARS AND EVENTS
# ============================================================================


@router.get("/calendars", response_model=list[CalendarItem])
async def list_calendars(
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    return await service.list_calendars(current_user)


@router.get("/events")
async def list_events(
    start: datetime,
    end: datetime,
    calendar_id: str = Query("primary"),
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Raw Google events in [start, end], expanded and ordered by start time"""
    start, end = as_clinic_local(start), as_clinic_local(end)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    return await service.list_events(current_user, calendar_id, start, end)


@router.post("/events", response_model=EventIdResponse)
async def create_event(
    data: EventCreate,
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    event_id = await service.create_event(current_user, data)
    return {"success": True, "event_id": event_id}


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    calendar_id: str = Query("primary"),
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    await service.delete_event(current_user, calendar_id, event_id)
    return {"success": True}


# ============================================================================
# APPOINTMENT SYNC
# ============================================================================


@router.post("/sync-appointment", response_model=EventIdResponse)
async def sync_appointment(
    data: SyncAppointmentRequest,
    current_user: User = Depends(get_current_clinic_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Create or update the Google event of an appointment"""
    event_id = await service.sync_appointment_to_google(
        current_user, data.appointment_id, data.calendar_id, data.google_event_id
    )
    return {"success": True, "event_id": event_id}


@router.post("/full-sync", response_model=SyncResult)
async def full_sync(
    data: FullSyncRequest,
    current_user: User = Depends(get_current_dentist_user),
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    """Two-way sync between the dentist's appointments and their Google Calendar"""
    return await service.full_sync(current_user, data.calendar_id, data.start_date, data.end_date)
