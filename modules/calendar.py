"""
Calendar Module - read-only view of Google Calendar or Outlook.

Handles:
- "show my calendar for tomorrow" / "events this week": events in a range
- "what's my next meeting": next event today
- "when am I free": free slots today within working hours
- Event reminders through stream_updates

Creating, changing and cancelling events is not available; those commands
return NOT_SUPPORTED so the dispatcher can hand them to the general assistant.
"""

import asyncio
import calendar as month_calendar
from datetime import date, datetime, time, timedelta
from typing import AsyncIterator, Dict, List, Optional, Tuple

from core.calendar_client import CalendarClient, build_calendar_client
from core.errors import ErrorCodes, ProviderApiError
from core.models import ModuleResponse, ModuleUpdate, UserContext
from core.scoring import ALL_WORDS_MATCH, contains_any, normalize
from modules.base import BaseModule
from utils.helpers import format_duration

CALENDAR_KEYWORDS = ["calendar", "schedule", "meeting", "event", "events", "appointment", "appointments"]
ACTION_KEYWORDS = [
    "show", "check", "view", "list", "create", "add", "book",
    "cancel", "delete", "remove", "update", "modify", "change"
]
TIME_KEYWORDS = ["today", "tomorrow", "next", "upcoming", "free", "available", "when"]
CREATE_KEYWORDS = ["create", "add", "book", "schedule a", "schedule an", "schedule meeting", "new event"]
DELETE_KEYWORDS = ["cancel", "delete", "remove"]
UPDATE_KEYWORDS = ["update", "modify", "change", "reschedule", "move"]
RANGE_KEYWORDS = ["today", "tomorrow", "week", "month"]

PROVIDER_FAILURE_MESSAGE = "Failed to read your calendar. Please check your sign-in and try again."


def _add_month(day: date) -> date:
    year = day.year + (1 if day.month == 12 else 0)
    month = 1 if day.month == 12 else day.month + 1
    last_day = month_calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _parse_clock(value: str, default: time) -> time:
    try:
        hours, minutes = str(value).split(":")
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        return default


class CalendarModule(BaseModule):
    """Calendar assistant over Google Calendar and Microsoft Graph."""

    def __init__(self, config: Optional[Dict] = None, timezone: str = "America/Los_Angeles",
                 calendar_client: Optional[CalendarClient] = None):
        super().__init__(config, timezone)
        self.calendar_client = calendar_client

    def get_id(self) -> str:
        return "calendar"

    def get_name(self) -> str:
        return "Calendar Manager"

    def get_description(self) -> str:
        return "Manage calendar events from Google Calendar and Microsoft Outlook"

    def get_priority(self) -> int:
        return 9

    def get_supported_commands(self) -> List[str]:
        return [
            "show calendar", "check calendar", "view calendar", "list events",
            "what's on my calendar", "my schedule", "today's events", "tomorrow's events",
            "create event", "schedule meeting", "add appointment", "book time",
            "cancel event", "delete event", "remove appointment",
            "update event", "modify event", "change meeting",
            "free time", "available time", "when am i free",
            "next meeting", "upcoming events", "what's next"
        ]

    def get_domain_keywords(self) -> List[str]:
        return CALENDAR_KEYWORDS

    def adjust_confidence(self, confidence: float, normalized_input: str,
                          context: UserContext) -> float:
        has_calendar = contains_any(normalized_input, CALENDAR_KEYWORDS)
        has_action = contains_any(normalized_input, ACTION_KEYWORDS)
        has_time = contains_any(normalized_input, TIME_KEYWORDS)

        if has_calendar and has_action:
            keyword_score = 0.9
        elif has_calendar:
            keyword_score = 0.7
        elif has_time and has_action:
            keyword_score = 0.3
        elif has_action:
            keyword_score = 0.1
        else:
            keyword_score = 0.0

        # Strong phrase matches ("when am i free", "what's next") stand on their own
        if confidence >= ALL_WORDS_MATCH:
            return max(confidence, keyword_score)
        return keyword_score

    @property
    def working_hours(self) -> Tuple[time, time]:
        return (
            _parse_clock(self.config.get("working_hours_start", "09:00"), time(9, 0)),
            _parse_clock(self.config.get("working_hours_end", "17:00"), time(17, 0)),
        )

    def _client_for(self, context: UserContext) -> Optional[CalendarClient]:
        return self.calendar_client or build_calendar_client(context.provider_key)

    def _localize(self, day: date, at: time = time.min) -> datetime:
        return self.timezone.localize(datetime.combine(day, at))

    def get_time_range(self, normalized: str) -> Tuple[datetime, datetime]:
        """[start, end) for today / tomorrow / week / month; today by default."""
        today = self.get_today_in_timezone()
        if "tomorrow" in normalized:
            first, last = today + timedelta(days=1), today + timedelta(days=2)
        elif "week" in normalized:
            first, last = today, today + timedelta(days=7)
        elif "month" in normalized:
            first, last = today, _add_month(today)
        else:
            first, last = today, today + timedelta(days=1)
        return self._localize(first), self._localize(last)

    def _format_time(self, value: Optional[datetime], fmt: str = "%b %d, %Y %H:%M") -> str:
        if value is None:
            return "All Day"
        return value.astimezone(self.timezone).strftime(fmt)

    def _serialize(self, event: Dict) -> Dict:
        serialized = dict(event)
        serialized["start"] = event["start"].isoformat() if event.get("start") else None
        serialized["end"] = event["end"].isoformat() if event.get("end") else None
        return serialized

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, text: str, context: UserContext) -> ModuleResponse:
        credentials_error = self.check_credentials(context)
        if credentials_error:
            return credentials_error

        client = self._client_for(context)
        if client is None:
            return self.error(
                "Unsupported calendar provider. Please use a Google or Microsoft account.",
                ErrorCodes.UNSUPPORTED_PROVIDER
            )

        normalized = normalize(text)
        try:
            return await self._route(normalized, context, client)
        except ProviderApiError as e:
            self.logger.error(f"Calendar provider call failed for user {context.user_id}", exc_info=True)
            if e.status_code == 401:
                return self.error(
                    "Your sign-in has expired. Please sign in again and retry.",
                    ErrorCodes.TOKEN_EXPIRED
                )
            return self.error(PROVIDER_FAILURE_MESSAGE, ErrorCodes.PROVIDER_ERROR)

    async def _route(self, normalized: str, context: UserContext,
                     client: CalendarClient) -> ModuleResponse:
        if contains_any(normalized, CREATE_KEYWORDS):
            return self.error(
                "Event creation feature is not yet implemented. Please use your calendar app to create events.",
                ErrorCodes.NOT_SUPPORTED
            )
        if contains_any(normalized, DELETE_KEYWORDS):
            return self.error(
                "Event deletion feature is not yet implemented for safety reasons.",
                ErrorCodes.NOT_SUPPORTED
            )
        if contains_any(normalized, UPDATE_KEYWORDS):
            return self.error("Event update feature is not yet implemented.", ErrorCodes.NOT_SUPPORTED)

        if "free" in normalized or "available" in normalized:
            return await self._free_time(context, client)

        if "next" in normalized or (
            contains_any(normalized, ["upcoming", "what's next"]) and not contains_any(normalized, RANGE_KEYWORDS)
        ):
            return await self._next_event(context, client)

        if contains_any(normalized, ["show", "check", "view", "list", "what's on"]) or \
                contains_any(normalized, CALENDAR_KEYWORDS) or contains_any(normalized, RANGE_KEYWORDS):
            return await self._view(normalized, context, client)

        return self.error(
            "I understand you want to work with your calendar, but I'm not sure what specific action "
            "you'd like to take. Try 'show my calendar' or 'what's my next meeting'.",
            ErrorCodes.NOT_UNDERSTOOD
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _list_events(self, context: UserContext, client: CalendarClient,
                           start: datetime, end: datetime) -> List[Dict]:
        return await asyncio.to_thread(
            client.list_events, context.access_token, start, end,
            int(self.config.get("max_events", 50))
        )

    async def _view(self, normalized: str, context: UserContext, client: CalendarClient) -> ModuleResponse:
        start, end = self.get_time_range(normalized)
        events = await self._list_events(context, client, start, end)

        if not events:
            return self.success(
                f"No events found between {start:%b %d} and {end:%b %d}.",
                {"events": []}
            )

        lines = []
        for event in events:
            line = f"• {self._format_time(event['start'])} - {event['summary']}"
            if event.get("location"):
                line += f" ({event['location']})"
            lines.append(line)

        message = f"You have {len(events)} event(s) between {start:%b %d} and {end:%b %d}.\n\n" + "\n".join(lines)
        return self.success(message, {"events": [self._serialize(e) for e in events]})

    async def _next_event(self, context: UserContext, client: CalendarClient) -> ModuleResponse:
        now = self.get_now_in_timezone()
        end = self._localize(now.date() + timedelta(days=1))
        events = await self._list_events(context, client, now, end)

        upcoming = [e for e in events if e.get("start") and not e.get("all_day") and e["start"] >= now]
        if not upcoming:
            return self.success("No upcoming events today.")

        event = min(upcoming, key=lambda e: e["start"])
        minutes = int((event["start"] - now).total_seconds() // 60)
        message = f"Your next event is '{event['summary']}' at {self._format_time(event['start'], '%H:%M')}"
        if event.get("location"):
            message += f" at {event['location']}"
        message += f" (in {format_duration(minutes)})."
        return self.success(message, self._serialize(event))

    async def _free_time(self, context: UserContext, client: CalendarClient) -> ModuleResponse:
        now = self.get_now_in_timezone()
        day_start_at, day_end_at = self.working_hours
        day_start = self._localize(now.date(), day_start_at)
        day_end = self._localize(now.date(), day_end_at)

        if now >= day_end:
            return self.success("Your working day is over; there's no free time left today.", {"slots": []})

        window_start = max(now, day_start)
        events = await self._list_events(context, client, window_start, day_end)
        busy = sorted(
            (max(e["start"], window_start), min(e["end"] or day_end, day_end))
            for e in events
            if e.get("start") and not e.get("all_day") and e["start"] < day_end
        )

        min_minutes = int(self.config.get("min_free_minutes", 15))
        slots = []
        cursor = window_start
        for busy_start, busy_end in busy:
            if busy_start > cursor and (busy_start - cursor) >= timedelta(minutes=min_minutes):
                slots.append((cursor, busy_start))
            cursor = max(cursor, busy_end)
        if day_end > cursor and (day_end - cursor) >= timedelta(minutes=min_minutes):
            slots.append((cursor, day_end))

        if not slots:
            return self.success("You have no free time left today.", {"slots": []})

        lines = []
        for slot_start, slot_end in slots:
            minutes = int((slot_end - slot_start).total_seconds() // 60)
            lines.append(
                f"• {self._format_time(slot_start, '%H:%M')} - {self._format_time(slot_end, '%H:%M')} "
                f"({format_duration(minutes)})"
            )
        data = {"slots": [{"start": s.isoformat(), "end": e.isoformat()} for s, e in slots]}
        return self.success("You're free today at:\n\n" + "\n".join(lines), data)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def stream_updates(self, context: UserContext) -> AsyncIterator[ModuleUpdate]:
        """One UpcomingEvent reminder per event starting within reminder_minutes."""
        client = self._client_for(context)
        if client is None or not context.access_token:
            return

        interval = float(self.config.get("poll_interval_seconds", 60))
        window = timedelta(minutes=int(self.config.get("reminder_minutes", 15)))
        reminded: Dict[str, datetime] = {}

        while not context.is_token_expired:
            now = self.get_now_in_timezone()
            try:
                events = await self._list_events(context, client, now, now + window)
            except ProviderApiError:
                self.logger.warning(f"Calendar poll failed for user {context.user_id}", exc_info=True)
                events = []

            for event in events:
                start = event.get("start")
                if not start or event.get("all_day") or event.get("id") in reminded:
                    continue
                if not now <= start <= now + window:
                    continue
                reminded[event["id"]] = start
                minutes = int((start - now).total_seconds() // 60)
                yield ModuleUpdate(
                    module_id=self.get_id(),
                    type="UpcomingEvent",
                    title="Upcoming Event",
                    message=f"'{event['summary']}' starts in {format_duration(minutes)}",
                    data=self._serialize(event),
                    priority="high",
                    metadata={"provider": context.provider_key},
                )

            # Forget events that have already started
            reminded = {k: v for k, v in reminded.items() if v >= now}
            await asyncio.sleep(interval)

        self.logger.info(f"Stopping calendar updates for user {context.user_id}: token expired")
