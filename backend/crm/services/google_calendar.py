# Overview: Google Calendar v3 client (OAuth token exchange/refresh and event push) over httpx.

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from crm.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

# Dashboard palette -> Google colorId
COLOR_MAP = {
    "#3498db": "1",
    "#2ecc71": "2",
    "#9b59b6": "3",
    "#e74c3c": "4",
    "#7f8c8d": "5",
    "#f39c12": "6",
    "#1abc9c": "7",
    "#34495e": "8",
}

STATUS_MAP = {
    "PLANNED": "confirmed",
    "COMPLETED": "confirmed",
    "CANCELLED": "cancelled",
    "POSTPONED": "tentative",
}

ATTENDEE_STATUS_MAP = {
    "INVITED": "needsAction",
    "ACCEPTED": "accepted",
    "DECLINED": "declined",
    "TENTATIVE": "tentative",
}


class CalendarSyncError(Exception):
    """Raised when Google Calendar rejects a request or is unreachable."""


def map_color(color: str | None) -> str:
    return COLOR_MAP.get((color or "").lower(), "1")


def map_status(status: str | None) -> str:
    return STATUS_MAP.get(status or "", "confirmed")


def map_attendee_status(status: str | None) -> str:
    return ATTENDEE_STATUS_MAP.get(status or "", "needsAction")


def build_event_body(event, timezone: str) -> dict:
    """Translate an Event row into a Google Calendar event resource."""
    if event.all_day:
        start = {"date": event.start_at.date().isoformat()}
        # Google's all-day end date is exclusive
        end = {"date": (event.end_at.date() + timedelta(days=1)).isoformat()}
    else:
        start = {"dateTime": to_utc_z(event.start_at), "timeZone": timezone}
        end = {"dateTime": to_utc_z(event.end_at), "timeZone": timezone}

    body: dict[str, Any] = {
        "summary": event.title,
        "description": event.description or "",
        "location": event.location or "",
        "start": start,
        "end": end,
        "status": map_status(event.status),
        "colorId": map_color(event.color),
        "attendees": [
            {
                "email": a.email,
                "displayName": a.name or a.email,
                "responseStatus": map_attendee_status(a.status),
            }
            for a in event.attendees
        ],
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email" if r.channel == "EMAIL" else "popup", "minutes": r.minutes_before}
                for r in event.reminders
            ][:5],
        },
    }
    return body


class GoogleCalendarClient:
    """
    Thin REST client for one OAuth application.

    Built from app config in create_app() and stored in
    app.extensions["crm.calendar"]. Per-user tokens live on the User row;
    refreshed access tokens are written back to the user (caller commits).
    """

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        timezone: str = "UTC",
        http_client: httpx.Client | None = None,
        timeout: float = 15.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timezone = timezone
        self._http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "GoogleCalendarClient":
        return cls(
            client_id=config.get("GOOGLE_CLIENT_ID"),
            client_secret=config.get("GOOGLE_CLIENT_SECRET"),
            redirect_uri=config.get("GOOGLE_REDIRECT_URI"),
            timezone=config.get("GOOGLE_CALENDAR_TIMEZONE", "UTC"),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str | None = None) -> str:
        if not self.is_configured:
            raise CalendarSyncError("Google Calendar integration is not configured")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _token_request(self, data: dict) -> dict:
        try:
            response = self._http.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.HTTPError as exc:
            raise CalendarSyncError(f"Token endpoint unreachable: {exc}") from exc
        if response.status_code != 200:
            logger.error("Google token request failed: %s", response.text)
            raise CalendarSyncError("Google token request failed")
        return response.json()

    def exchange_code(self, code: str) -> dict:
        return self._token_request({
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })

    def refresh_access_token(self, refresh_token: str) -> dict:
        return self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })

    def store_tokens(self, user, tokens: dict) -> None:
        """Copy a token response onto the user row."""
        user.google_access_token = tokens.get("access_token")
        if tokens.get("refresh_token"):
            user.google_refresh_token = tokens["refresh_token"]
        user.google_token_expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        user.google_calendar_enabled = True

    def _access_token(self, user) -> str:
        if not user.google_access_token and not user.google_refresh_token:
            raise CalendarSyncError("User has not connected Google Calendar")

        expires_at: Optional[datetime] = user.google_token_expires_at
        if user.google_refresh_token and (expires_at is None or expires_at <= utcnow() + timedelta(minutes=5)):
            logger.info("Refreshing Google Calendar token for user %s", user.id)
            self.store_tokens(user, self.refresh_access_token(user.google_refresh_token))
        return user.google_access_token

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _request(self, user, method: str, path: str, **kwargs) -> httpx.Response:
        token = self._access_token(user)
        try:
            response = self._http.request(
                method,
                f"{GOOGLE_CALENDAR_API}{path}",
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise CalendarSyncError(f"Google Calendar unreachable: {exc}") from exc
        if response.status_code >= 400 and not (method == "DELETE" and response.status_code == 410):
            logger.error("Google Calendar %s %s failed: %s", method, path, response.text)
            raise CalendarSyncError(f"Google Calendar request failed ({response.status_code})")
        return response

    def create_event(self, user, event, *, send_updates: bool = True) -> str:
        response = self._request(
            user, "POST", "/calendars/primary/events",
            params={"sendUpdates": "all" if send_updates else "none"},
            json=build_event_body(event, self.timezone),
        )
        google_id = response.json().get("id")
        logger.info("Google Calendar event created: %s", google_id)
        return google_id

    def update_event(self, user, event, *, send_updates: bool = True) -> None:
        if not event.google_calendar_id:
            raise CalendarSyncError("Event is not linked to Google Calendar")
        self._request(
            user, "PUT", f"/calendars/primary/events/{event.google_calendar_id}",
            params={"sendUpdates": "all" if send_updates else "none"},
            json=build_event_body(event, self.timezone),
        )

    def delete_event(self, user, google_event_id: str, *, send_updates: bool = True) -> None:
        self._request(
            user, "DELETE", f"/calendars/primary/events/{google_event_id}",
            params={"sendUpdates": "all" if send_updates else "none"},
        )
