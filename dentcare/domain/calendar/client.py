"""
Google Calendar HTTP client
Thin wrapper over the Google OAuth 2.0 and Calendar v3 REST endpoints
"""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote, urlencode

import httpx

from ...config import GOOGLE_API_TIMEOUT, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI
from ...shared.timezones import CLINIC_TZ

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
]


class GoogleCalendarError(Exception):
    """Google rejected a request or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _rfc3339(value: datetime) -> str:
    """Google needs an explicit offset on timeMin/timeMax. Naive values are clinic local time"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=CLINIC_TZ)
    return value.isoformat()


class GoogleCalendarClient:
    """Google OAuth and Calendar API calls over a shared httpx.AsyncClient"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: Optional[str] = GOOGLE_CLIENT_ID,
        client_secret: Optional[str] = GOOGLE_CLIENT_SECRET,
        redirect_uri: str = GOOGLE_REDIRECT_URI,
    ):
        self.http = http
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ Google API unreachable ({method} {url}): {e}")
            raise GoogleCalendarError(f"Google API unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"❌ Google API {method} {url} failed: HTTP {response.status_code} {response.text[:300]}")
            raise GoogleCalendarError(
                f"Google API returned HTTP {response.status_code}", status_code=response.status_code
            )
        return response

    def _auth_headers(self, access_token: str) -> dict:
        return {"Authorization": f"Bearer {access_token}"}

    def _events_url(self, calendar_id: str, event_id: Optional[str] = None) -> str:
        url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id or 'primary', safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    # ========================================================================
    # OAUTH
    # ========================================================================

    def build_auth_url(self, state: Optional[str] = None) -> str:
        """Consent URL requesting offline access so Google returns a refresh token"""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        return response.json()

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        return response.json()

    async def revoke_token(self, token: str) -> None:
        await self._request("POST", GOOGLE_REVOKE_URL, params={"token": token})

    async def get_user_email(self, access_token: str) -> Optional[str]:
        response = await self._request("GET", GOOGLE_USERINFO_URL, headers=self._auth_headers(access_token))
        return response.json().get("email")

    # ========================================================================
    # CALENDARS AND EVENTS
    # ========================================================================

    async def list_calendars(self, access_token: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET", f"{GOOGLE_CALENDAR_API}/users/me/calendarList", headers=self._auth_headers(access_token)
        )
        return [
            {
                "id": item.get("id"),
                "summary": item.get("summary"),
                "primary": item.get("primary", False),
                "time_zone": item.get("timeZone"),
            }
            for item in response.json().get("items", [])
        ]

    async def list_events(
        self, access_token: str, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            self._events_url(calendar_id),
            headers=self._auth_headers(access_token),
            params={
                "timeMin": _rfc3339(time_min),
                "timeMax": _rfc3339(time_max),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return response.json().get("items", [])

    async def create_event(self, access_token: str, calendar_id: str, event: dict[str, Any]) -> str:
        response = await self._request(
            "POST",
            self._events_url(calendar_id),
            headers=self._auth_headers(access_token),
            params={"sendUpdates": "all"},
            json=event,
        )
        event_id = response.json().get("id")
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    async def update_event(self, access_token: str, calendar_id: str, event_id: str, event: dict[str, Any]) -> str:
        await self._request(
            "PUT",
            self._events_url(calendar_id, event_id),
            headers=self._auth_headers(access_token),
            params={"sendUpdates": "all"},
            json=event,
        )
        logger.info(f"✅ Google Calendar event updated: {event_id}")
        return event_id

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        await self._request(
            "DELETE",
            self._events_url(calendar_id, event_id),
            headers=self._auth_headers(access_token),
            params={"sendUpdates": "all"},
        )
        logger.info(f"✅ Google Calendar event deleted: {event_id}")


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """One AsyncClient per request for Google API calls"""
    async with httpx.AsyncClient(timeout=GOOGLE_API_TIMEOUT) as http:
        yield http
