"""
Google Calendar v3 REST wrapper.
"""

import logging
from datetime import datetime
from urllib.parse import quote

import requests

from .models import AuthError
from .models import NotFoundError
from .models import RemoteEvent
from .models import TransientError
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/calendar/v3"
REQUEST_TIMEOUT = 30
PAGE_SIZE = 250

# Google colorId (1-11) → hex, used when importing event colors.
GOOGLE_COLOR_MAP = {
    "1": "#7986cb",  # Lavender
    "2": "#33b679",  # Sage
    "3": "#8e24aa",  # Grape
    "4": "#e67c73",  # Flamingo
    "5": "#f6bf26",  # Banana
    "6": "#f4511e",  # Tangerine
    "7": "#039be5",  # Peacock
    "8": "#616161",  # Graphite
    "9": "#3f51b5",  # Blueberry
    "10": "#0b8043",  # Basil
    "11": "#d50000",  # Tomato
}


def _error_detail(response: requests.Response) -> str:
    """Best-effort human-readable message from a Google error body."""
    try:
        detail = response.json().get("error", {}).get("message")
    except ValueError:
        detail = None
    return detail or f"Google Calendar API error: {response.status_code}"


class GoogleCalendarClient:
    """Bearer-token client for the handful of Calendar endpoints the sync needs.

    Every request is preceded by ``rate_limiter.throttle()``. Failures are
    raised as typed errors and never retried here: a 404 becomes
    NotFoundError, a 401 AuthError, anything else TransientError.
    """

    def __init__(
        self,
        access_token: str,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
        base_url: str = API_BASE_URL,
    ):
        self.access_token = access_token
        self.rate_limiter = rate_limiter or RateLimiter()
        self.session = session or requests.Session()
        self.base_url = base_url

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self.base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            url += f"/{quote(event_id, safe='')}"
        return url

    def _request(self, method: str, url: str, **kwargs) -> dict | None:
        self.rate_limiter.throttle()
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise TransientError(f"Network error calling Google Calendar: {e}") from e

        if response.status_code == 204:
            return None
        if response.status_code == 404:
            raise NotFoundError(_error_detail(response), status=404)
        if response.status_code == 401:
            raise AuthError("Access token expired or invalid")
        if not 200 <= response.status_code < 300:
            raise TransientError(_error_detail(response), status=response.status_code)

        if not response.content:
            return None
        return response.json()

    def list_calendars(self) -> list[dict]:
        """Calendars on the account, simplified to id/summary/primary/backgroundColor."""
        data = self._request("GET", f"{self.base_url}/users/me/calendarList") or {}
        return [
            {
                "id": item.get("id"),
                "summary": item.get("summary"),
                "primary": item.get("primary", False),
                "backgroundColor": item.get("backgroundColor"),
            }
            for item in data.get("items", [])
        ]

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[RemoteEvent]:
        """All single (expanded) events in the window, following pagination."""
        events: list[RemoteEvent] = []
        page_token = None
        while True:
            params = {
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "maxResults": PAGE_SIZE,
                "singleEvents": "true",
                "orderBy": "startTime",
            }
            if page_token:
                params["pageToken"] = page_token

            data = self._request("GET", self._events_url(calendar_id), params=params) or {}
            events.extend(RemoteEvent.from_api(item) for item in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(events)} events from {calendar_id}")
        return events

    def insert_event(self, calendar_id: str, draft: RemoteEvent) -> RemoteEvent:
        data = self._request("POST", self._events_url(calendar_id), json=draft.to_api())
        return RemoteEvent.from_api(data or {})

    def update_event(self, calendar_id: str, event_id: str, draft: RemoteEvent) -> RemoteEvent:
        """PATCH the given fields of an existing event."""
        data = self._request(
            "PATCH",
            self._events_url(calendar_id, event_id),
            json=draft.to_api(clear_empty=True),
        )
        return RemoteEvent.from_api(data or {})

    def delete_event(self, calendar_id: str, event_id: str):
        self._request("DELETE", self._events_url(calendar_id, event_id))
