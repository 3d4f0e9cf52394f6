"""
Google Calendar service - OAuth connection, event management and appointment sync
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import invalidate_appointments
from ...config import GOOGLE_CALENDAR_TIMEZONE
from ...models import Appointment, User
from ...models_google_calendar import GoogleCalendarIntegration
from ...plans import check_plan_limit
from ...security_utils import decrypt_token, encrypt_token, sanitize_text
from ...shared.timezones import as_clinic_local
from .client import GOOGLE_CALENDAR_SCOPES, GoogleCalendarClient, GoogleCalendarError
from .repository import CalendarRepository
from .schemas import EventCreate

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
DEFAULT_REMINDERS = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 24 * 60},
        {"method": "popup", "minutes": 60},
    ],
}


def google_error(e: GoogleCalendarError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"Google Calendar error: {e}")


def build_event_body(
    summary: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Event resource in the clinic timezone with the default reminders"""
    event = {
        "summary": summary,
        "start": {"dateTime": start.isoformat(), "timeZone": GOOGLE_CALENDAR_TIMEZONE},
        "end": {"dateTime": end.isoformat(), "timeZone": GOOGLE_CALENDAR_TIMEZONE},
        "reminders": DEFAULT_REMINDERS,
    }
    if description:
        event["description"] = description
    if location:
        event["location"] = location
    if attendees:
        event["attendees"] = attendees
    return event


def parse_event_time(value: Optional[dict[str, Any]]) -> Optional[datetime]:
    """
    Event start/end to naive clinic local time.
    All-day events only carry a date and map to midnight.
    """
    if not value:
        return None
    if value.get("dateTime"):
        return as_clinic_local(datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00")))
    if value.get("date"):
        day = date.fromisoformat(value["date"])
        return datetime(day.year, day.month, day.day)
    return None


class GoogleCalendarService:
    """Service layer for the Google Calendar integration"""

    def __init__(self, db: Session, client: GoogleCalendarClient):
        self.db = db
        self.client = client
        self.repo = CalendarRepository()

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def check_config(self) -> bool:
        return self.client.is_configured()

    def get_auth_url(self, user: User) -> str:
        if not self.check_config():
            logger.error("❌ Google Calendar OAuth not configured")
            raise HTTPException(status_code=503, detail="Google Calendar integration is not configured")
        return self.client.build_auth_url(state=user.open_id)

    async def exchange_code(self, user: User, code: str) -> GoogleCalendarIntegration:
        """Exchange the OAuth code and store the encrypted tokens"""
        if not self.check_config():
            raise HTTPException(status_code=503, detail="Google Calendar integration is not configured")

        try:
            tokens = await self.client.exchange_code(code)
        except GoogleCalendarError as e:
            raise HTTPException(status_code=400, detail="Failed to exchange authorization code") from e

        access_token = tokens.get("access_token")
        refresh_token = tokens.get("refresh_token")
        if not access_token:
            raise HTTPException(status_code=400, detail="No access token received from Google")

        try:
            google_email = await self.client.get_user_email(access_token)
        except GoogleCalendarError as e:
            raise google_error(e) from e

        expires_at = datetime.utcnow() + timedelta(seconds=tokens.get("expires_in", 3600))
        integration = self.repo.get_integration(self.db, user.id)

        if integration:
            integration.access_token = encrypt_token(access_token)
            # Google only returns a refresh token on first consent unless prompt=consent
            if refresh_token:
                integration.refresh_token = encrypt_token(refresh_token)
            integration.token_expires_at = expires_at
            integration.scope = tokens.get("scope") or " ".join(GOOGLE_CALENDAR_SCOPES)
            integration.google_user_email = google_email
            integration.clinic_id = user.clinic_id
            logger.info(f"🔄 Updated Google Calendar integration for user {user.id}")
        else:
            if not refresh_token:
                raise HTTPException(status_code=400, detail="No refresh token received from Google")
            integration = GoogleCalendarIntegration(
                user_id=user.id,
                clinic_id=user.clinic_id,
                access_token=encrypt_token(access_token),
                refresh_token=encrypt_token(refresh_token),
                token_expires_at=expires_at,
                scope=tokens.get("scope") or " ".join(GOOGLE_CALENDAR_SCOPES),
                google_user_email=google_email,
                google_calendar_id="primary",
                auto_sync_enabled=True,
            )
            self.db.add(integration)
            logger.info(f"✅ Created Google Calendar integration for user {user.id}")

        self.db.commit()
        self.db.refresh(integration)
        return integration

    def status(self, user: User) -> dict:
        integration = self.repo.get_integration(self.db, user.id)
        if not integration:
            return {"connected": False, "user_email": None, "calendar_id": None, "auto_sync_enabled": False}
        return {
            "connected": True,
            "user_email": integration.google_user_email,
            "calendar_id": integration.google_calendar_id,
            "auto_sync_enabled": bool(integration.auto_sync_enabled),
            "last_synced_at": integration.last_synced_at,
        }

    async def disconnect(self, user: User) -> None:
        integration = self.repo.get_integration(self.db, user.id)
        if not integration:
            raise HTTPException(status_code=404, detail="Google Calendar not connected")

        # Revoking is best effort; the integration is deleted either way
        access_token = decrypt_token(integration.access_token)
        if access_token:
            try:
                await self.client.revoke_token(access_token)
            except GoogleCalendarError as e:
                logger.warning(f"⚠️ Failed to revoke Google token for user {user.id}: {e}")

        self.db.delete(integration)
        self.db.commit()
        logger.info(f"✅ Google Calendar disconnected for user {user.id}")

    # ========================================================================
    # TOKENS
    # ========================================================================

    async def get_valid_access_token(self, integration: GoogleCalendarIntegration) -> str:
        """Decrypted access token, refreshed first when it expires within 5 minutes"""
        if integration.token_expires_at > datetime.utcnow() + TOKEN_REFRESH_MARGIN:
            access_token = decrypt_token(integration.access_token)
            if access_token:
                return access_token

        logger.info("🔄 Google Calendar token expired, refreshing...")
        refresh_token = decrypt_token(integration.refresh_token)
        if not refresh_token:
            raise HTTPException(status_code=400, detail="Google Calendar connection is invalid, please reconnect")

        tokens = await self.client.refresh_access_token(refresh_token)
        new_access_token = tokens.get("access_token")
        if not new_access_token:
            logger.error("❌ No access token in refresh response")
            raise GoogleCalendarError("No access token in refresh response")

        integration.access_token = encrypt_token(new_access_token)
        integration.token_expires_at = datetime.utcnow() + timedelta(seconds=tokens.get("expires_in", 3600))
        self.db.commit()
        logger.info("✅ Google Calendar token refreshed successfully")
        return new_access_token

    def _get_integration(self, user: User) -> GoogleCalendarIntegration:
        integration = self.repo.get_integration(self.db, user.id)
        if not integration:
            raise HTTPException(status_code=404, detail="Google Calendar not connected")
        return integration

    async def _access_token(self, user: User) -> str:
        integration = self._get_integration(user)
        try:
            return await self.get_valid_access_token(integration)
        except GoogleCalendarError as e:
            raise google_error(e) from e

    # ========================================================================
    # EVENTS
    # ========================================================================

    async def list_calendars(self, user: User) -> list[dict[str, Any]]:
        access_token = await self._access_token(user)
        try:
            return await self.client.list_calendars(access_token)
        except GoogleCalendarError as e:
            raise google_error(e) from e

    async def list_events(self, user: User, calendar_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        access_token = await self._access_token(user)
        try:
            return await self.client.list_events(access_token, calendar_id, start, end)
        except GoogleCalendarError as e:
            raise google_error(e) from e

    async def create_event(self, user: User, data: EventCreate) -> str:
        if data.end_time <= data.start_time:
            raise HTTPException(status_code=400, detail="end_time must be after start_time")

        access_token = await self._access_token(user)
        event = build_event_body(
            sanitize_text(data.summary),
            data.start_time,
            data.end_time,
            description=sanitize_text(data.description),
            location=sanitize_text(data.location),
            attendees=[
                {"email": attendee.email, "displayName": attendee.display_name}
                if attendee.display_name
                else {"email": attendee.email}
                for attendee in data.attendees
            ],
        )
        try:
            return await self.client.create_event(access_token, data.calendar_id, event)
        except GoogleCalendarError as e:
            raise google_error(e) from e

    async def delete_event(self, user: User, calendar_id: str, event_id: str) -> None:
        access_token = await self._access_token(user)
        try:
            await self.client.delete_event(access_token, calendar_id, event_id)
        except GoogleCalendarError as e:
            raise google_error(e) from e

    # ========================================================================
    # APPOINTMENT SYNC
    # ========================================================================

    def _appointment_event(self, appointment: Appointment) -> dict[str, Any]:
        patient = appointment.patient
        dentist = appointment.dentist
        clinic = appointment.clinic

        lines = []
        if dentist:
            lines.append(f"Dentist: {dentist.name}")
        if patient and patient.phone:
            lines.append(f"Patient phone: {patient.phone}")
        if appointment.notes:
            lines.append(appointment.notes)

        attendees = []
        if patient and patient.email:
            attendees.append({"email": patient.email, "displayName": patient.name})
        if dentist and dentist.email:
            attendees.append({"email": dentist.email, "displayName": dentist.name})

        location = None
        if clinic:
            location = ", ".join(part for part in (clinic.name, clinic.address, clinic.city) if part)

        return build_event_body(
            f"Appointment - {patient.name if patient else 'Patient'}",
            appointment.start_time,
            appointment.end_time,
            description="\n".join(lines) or None,
            location=location,
            attendees=attendees,
        )

    async def _push_appointment(
        self, access_token: str, appointment: Appointment, calendar_id: str, google_event_id: Optional[str] = None
    ) -> str:
        """Create or update the event of an appointment and link it. Raises GoogleCalendarError"""
        event = self._appointment_event(appointment)
        event_id = google_event_id or appointment.google_event_id

        if event_id:
            event_id = await self.client.update_event(access_token, calendar_id, event_id, event)
        else:
            event_id = await self.client.create_event(access_token, calendar_id, event)

        appointment.google_event_id = event_id
        self.db.commit()
        return event_id

    async def sync_appointment_to_google(
        self, user: User, appointment_id: int, calendar_id: str = "primary", google_event_id: Optional[str] = None
    ) -> str:
        appointment = self.repo.get_appointment(self.db, appointment_id, user.clinic_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")

        access_token = await self._access_token(user)
        try:
            event_id = await self._push_appointment(access_token, appointment, calendar_id, google_event_id)
        except GoogleCalendarError as e:
            raise google_error(e) from e

        logger.info(f"✅ Appointment {appointment.id} synced to Google Calendar event {event_id}")
        return event_id

    async def sync_appointment_if_enabled(self, user: User, appointment: Appointment) -> Optional[str]:
        """
        Push an appointment when the user has auto-sync on.
        Returns the event id, or None when skipped or failed.
        """
        integration = self.repo.get_integration(self.db, user.id)
        if not integration or not integration.auto_sync_enabled:
            logger.info("ℹ️ Google Calendar not connected or auto-sync disabled")
            return None

        try:
            access_token = await self.get_valid_access_token(integration)
            return await self._push_appointment(
                access_token, appointment, integration.google_calendar_id or "primary"
            )
        except (GoogleCalendarError, HTTPException) as e:
            logger.error(f"❌ Auto-sync of appointment {appointment.id} failed: {e}")
            return None

    async def remove_appointment_event(self, user: User, appointment: Appointment) -> bool:
        """Delete the linked event of a cancelled appointment. False when skipped or failed"""
        integration = self.repo.get_integration(self.db, user.id)
        if not integration or not integration.auto_sync_enabled or not appointment.google_event_id:
            return False

        try:
            access_token = await self.get_valid_access_token(integration)
            await self.client.delete_event(
                access_token, integration.google_calendar_id or "primary", appointment.google_event_id
            )
        except (GoogleCalendarError, HTTPException) as e:
            logger.error(f"❌ Removing Google event of appointment {appointment.id} failed: {e}")
            return False

        appointment.google_event_id = None
        self.db.commit()
        return True

    async def full_sync(self, user: User, calendar_id: str, start: datetime, end: datetime) -> dict:
        """
        Two-way sync of a dentist's calendar over [start, end].

        Push: the dentist's appointments are created or updated on Google.
        Pull: unlinked events with a patient attendee become scheduled appointments.
        """
        if not user.dentist_id:
            raise HTTPException(status_code=403, detail="Only dentists can run a full calendar sync")
        if end < start:
            raise HTTPException(status_code=400, detail="end_date must not be before start_date")

        integration = self._get_integration(user)
        access_token = await self._access_token(user)
        result = {"pushed": 0, "pulled": 0, "skipped": 0, "failed": 0}

        appointments = self.repo.get_dentist_appointments(self.db, user.clinic_id, user.dentist_id, start, end)
        for appointment in appointments:
            try:
                await self._push_appointment(access_token, appointment, calendar_id)
                result["pushed"] += 1
            except GoogleCalendarError as e:
                logger.error(f"❌ Failed to push appointment {appointment.id}: {e}")
                result["failed"] += 1

        try:
            events = await self.client.list_events(access_token, calendar_id, start, end)
        except GoogleCalendarError as e:
            raise google_error(e) from e

        linked = self.repo.get_linked_event_ids(self.db, user.clinic_id)
        clinic = self.repo.get_clinic(self.db, user.clinic_id)

        for event in events:
            if event.get("id") in linked or event.get("status") == "cancelled":
                result["skipped"] += 1
                continue

            patient = None
            for attendee in event.get("attendees", []):
                email = attendee.get("email")
                if email:
                    patient = self.repo.find_patient_by_email(self.db, user.clinic_id, email)
                    if patient:
                        break
            if not patient:
                result["skipped"] += 1
                continue

            try:
                event_start = parse_event_time(event.get("start"))
                event_end = parse_event_time(event.get("end"))
            except ValueError as e:
                logger.error(f"❌ Unreadable Google event {event.get('id')}: {e}")
                result["failed"] += 1
                continue
            if not event_start or not event_end:
                result["failed"] += 1
                continue

            allowed, message = check_plan_limit(clinic, "appointments_per_month", self.db, now=event_start)
            if not allowed:
                logger.warning(f"⚠️ Skipping Google event {event.get('id')}: {message}")
                result["skipped"] += 1
                continue

            self.db.add(
                Appointment(
                    clinic_id=user.clinic_id,
                    patient_id=patient.id,
                    dentist_id=user.dentist_id,
                    start_time=event_start,
                    end_time=event_end,
                    status="scheduled",
                    title=sanitize_text(event.get("summary")),
                    notes=sanitize_text(event.get("description")),
                    google_event_id=event["id"],
                )
            )
            self.db.commit()
            invalidate_appointments(user.clinic_id, event_start.date())
            linked.add(event["id"])
            result["pulled"] += 1

        integration.last_synced_at = datetime.utcnow()
        self.db.commit()

        logger.info(
            f"📊 Full sync for dentist {user.dentist_id}: pushed={result['pushed']} pulled={result['pulled']} "
            f"skipped={result['skipped']} failed={result['failed']}"
        )
        return result
