"""
Calendar provider clients (Google Calendar v3, Microsoft Graph calendarView).

Events are normalized to dicts:
    {"id", "summary", "start", "end", "all_day", "location", "description"}
where start/end are timezone-aware datetimes (None when the provider omits them).
"""

from datetime import datetime
from typing import Dict, List, Optional

import pytz

from core.provider_client import ProviderClient
from utils.helpers import parse_time

NO_TITLE = "(No Title)"


class CalendarClient(ProviderClient):
    """Base class for provider calendar clients."""

    def list_events(self, access_token: str, start: datetime, end: datetime,
                    max_results: int = 50) -> List[Dict]:
        """Events overlapping [start, end), ordered by start time."""
        raise NotImplementedError


class GoogleCalendarClient(CalendarClient):
    provider = "google"
    base_url = "https://www.googleapis.com/calendar/v3"

    @staticmethod
    def _parse_boundary(boundary: Optional[Dict], tz) -> Optional[datetime]:
        if not boundary:
            return None
        if boundary.get("dateTime"):
            return parse_time(boundary["dateTime"])
        if boundary.get("date"):
            return parse_time(boundary["date"], default_tz=tz)
        return None

    def list_events(self, access_token: str, start: datetime, end: datetime,
                    max_results: int = 50) -> List[Dict]:
        params = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": max_results,
        }
        data = self._request("GET", "calendars/primary/events", access_token, params=params)

        tz = start.tzinfo or pytz.utc
        events = []
        for item in data.get("items", []):
            events.append({
                "id": item.get("id"),
                "summary": item.get("summary") or NO_TITLE,
                "start": self._parse_boundary(item.get("start"), tz),
                "end": self._parse_boundary(item.get("end"), tz),
                "all_day": "date" in (item.get("start") or {}),
                "location": item.get("location") or "",
                "description": item.get("description") or "",
            })
        return events


class OutlookCalendarClient(CalendarClient):
    provider = "microsoft"
    base_url = "https://graph.microsoft.com/v1.0/me"

    def list_events(self, access_token: str, start: datetime, end: datetime,
                    max_results: int = 50) -> List[Dict]:
        params = {
            "startDateTime": start.astimezone(pytz.utc).isoformat(),
            "endDateTime": end.astimezone(pytz.utc).isoformat(),
            "$orderby": "start/dateTime",
            "$top": max_results,
        }
        # Ask Graph to report event times in UTC so naive values parse unambiguously
        data = self._request(
            "GET", "calendarView", access_token, params=params,
            extra_headers={"Prefer": 'outlook.timezone="UTC"'}
        )

        events = []
        for item in data.get("value", []):
            events.append({
                "id": item.get("id"),
                "summary": item.get("subject") or NO_TITLE,
                "start": parse_time((item.get("start") or {}).get("dateTime")),
                "end": parse_time((item.get("end") or {}).get("dateTime")),
                "all_day": bool(item.get("isAllDay")),
                "location": (item.get("location") or {}).get("displayName") or "",
                "description": item.get("bodyPreview") or "",
            })
        return events


CALENDAR_CLIENTS = {
    "google": GoogleCalendarClient,
    "microsoft": OutlookCalendarClient,
}


def build_calendar_client(provider: str) -> Optional[CalendarClient]:
    client_class = CALENDAR_CLIENTS.get((provider or "").strip().lower())
    return client_class() if client_class else None
