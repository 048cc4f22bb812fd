"""
Tests for the calendar module (clock pinned to 2024-05-01 10:00 UTC).
"""

import asyncio

from core.dispatcher import CommandDispatcher
from core.errors import ErrorCodes, ProviderApiError
from helpers import FakeCalendarClient, StubModule, make_context, make_event, utc
from modules.calendar import CalendarModule
from modules.registry import ModuleRegistry

NOW = utc(2024, 5, 1, 10, 0)


def run(coro):
    return asyncio.run(coro)


class FixedClockCalendar(CalendarModule):

    def __init__(self, now=NOW, **kwargs):
        super().__init__(timezone="UTC", **kwargs)
        self.now = now

    def get_now_in_timezone(self):
        return self.now

    def get_today_in_timezone(self):
        return self.now.date()


class FailingCalendarClient(FakeCalendarClient):

    def __init__(self, status_code):
        super().__init__()
        self.status_code = status_code

    def list_events(self, access_token, start, end, max_results=50):
        raise ProviderApiError("google", "calendar unavailable", self.status_code)


def busy_day():
    return [
        make_event("standup", utc(2024, 5, 1, 11, 0), summary="Standup"),
        make_event("review", utc(2024, 5, 1, 14, 0), minutes=60, summary="Review", location="Room 4"),
        make_event("planning", utc(2024, 5, 2, 9, 0), summary="Planning"),
    ]


class TestCalendarScoring:

    def setup_method(self):
        self.module = FixedClockCalendar(calendar_client=FakeCalendarClient())
        self.context = make_context()

    def score(self, text):
        return run(self.module.can_handle(text, self.context))

    def test_calendar_and_action(self):
        assert self.score("show my calendar") == 0.9

    def test_exact_phrase(self):
        assert self.score("when am i free") == 1.0

    def test_calendar_keyword_only(self):
        assert self.score("any appointments today") == 0.7

    def test_unrelated(self):
        assert self.score("what's the weather like") == 0.0


class TestCalendarView:

    def setup_method(self):
        self.client = FakeCalendarClient(busy_day())
        self.module = FixedClockCalendar(calendar_client=self.client)
        self.context = make_context()

    def handle(self, text):
        return run(self.module.handle(text, self.context))

    def test_today(self):
        response = self.handle("show my calendar")

        assert response.success
        assert response.message == (
            "You have 2 event(s) between May 01 and May 02.\n\n"
            "• May 01, 2024 11:00 - Standup\n"
            "• May 01, 2024 14:00 - Review (Room 4)"
        )
        assert response.data["events"][0]["start"] == "2024-05-01T11:00:00+00:00"
        assert self.client.calls[-1] == (utc(2024, 5, 1), utc(2024, 5, 2))

    def test_tomorrow(self):
        response = self.handle("what's on my calendar tomorrow")

        assert response.message.startswith("You have 1 event(s) between May 02 and May 03.")
        assert "Planning" in response.message

    def test_week(self):
        self.handle("events this week")

        assert self.client.calls[-1] == (utc(2024, 5, 1), utc(2024, 5, 8))

    def test_month_wraps_year(self):
        module = FixedClockCalendar(now=utc(2024, 12, 31, 9, 0), calendar_client=self.client)

        start, end = module.get_time_range("this month")

        assert (start, end) == (utc(2024, 12, 31), utc(2025, 1, 31))

    def test_no_events(self):
        module = FixedClockCalendar(calendar_client=FakeCalendarClient())

        response = run(module.handle("events this week", self.context))

        assert response.message == "No events found between May 01 and May 08."
        assert response.data == {"events": []}

    def test_vague_request(self):
        response = self.handle("hmm")

        assert response.error_code == ErrorCodes.NOT_UNDERSTOOD


class TestNextEventAndFreeTime:

    def setup_method(self):
        self.context = make_context()

    def handle(self, module, text):
        return run(module.handle(text, self.context))

    def test_next_event(self):
        module = FixedClockCalendar(calendar_client=FakeCalendarClient(busy_day()))

        response = self.handle(module, "what's my next meeting")

        assert response.message == "Your next event is 'Standup' at 11:00 (in 1h)."
        assert response.data["id"] == "standup"

    def test_next_event_with_location(self):
        module = FixedClockCalendar(now=utc(2024, 5, 1, 12, 30), calendar_client=FakeCalendarClient(busy_day()))

        response = self.handle(module, "next meeting")

        assert response.message == "Your next event is 'Review' at 14:00 at Room 4 (in 1h 30m)."

    def test_no_upcoming_events(self):
        module = FixedClockCalendar(now=utc(2024, 5, 1, 16, 0), calendar_client=FakeCalendarClient(busy_day()))

        response = self.handle(module, "what's next")

        assert response.message == "No upcoming events today."

    def test_free_slots(self):
        module = FixedClockCalendar(calendar_client=FakeCalendarClient(busy_day()))

        response = self.handle(module, "when am i free")

        assert response.message == (
            "You're free today at:\n\n"
            "• 10:00 - 11:00 (1h)\n"
            "• 11:30 - 14:00 (2h 30m)\n"
            "• 15:00 - 17:00 (2h)"
        )
        assert len(response.data["slots"]) == 3

    def test_short_gaps_are_ignored(self):
        events = [make_event("block", utc(2024, 5, 1, 10, 5), minutes=415)]
        module = FixedClockCalendar(calendar_client=FakeCalendarClient(events))

        response = self.handle(module, "am i available")

        assert response.message == "You have no free time left today."

    def test_custom_working_hours(self):
        module = FixedClockCalendar(
            config={"working_hours_start": "08:00", "working_hours_end": "12:00"},
            now=utc(2024, 5, 1, 7, 0),
            calendar_client=FakeCalendarClient(busy_day()),
        )

        response = self.handle(module, "free time")

        assert "• 08:00 - 11:00 (3h)" in response.message
        assert "• 11:30 - 12:00 (30m)" in response.message

    def test_after_working_hours(self):
        module = FixedClockCalendar(now=utc(2024, 5, 1, 18, 0), calendar_client=FakeCalendarClient(busy_day()))

        response = self.handle(module, "when am i free")

        assert response.message == "Your working day is over; there's no free time left today."


class TestCalendarFailures:

    def setup_method(self):
        self.context = make_context()

    def test_write_operations_not_supported(self):
        module = FixedClockCalendar(calendar_client=FakeCalendarClient())

        for text in ("create event tomorrow", "cancel my meeting", "reschedule my meeting", "add appointment"):
            response = run(module.handle(text, self.context))
            assert response.error_code == ErrorCodes.NOT_SUPPORTED, text

    def test_unsupported_provider(self):
        response = run(CalendarModule().handle("show calendar", make_context(provider="yahoo")))

        assert response.error_code == ErrorCodes.UNSUPPORTED_PROVIDER

    def test_provider_error(self):
        module = FixedClockCalendar(calendar_client=FailingCalendarClient(500))

        response = run(module.handle("show calendar", self.context))

        assert response.error_code == ErrorCodes.PROVIDER_ERROR

    def test_provider_unauthorized(self):
        module = FixedClockCalendar(calendar_client=FailingCalendarClient(401))

        response = run(module.handle("show calendar", self.context))

        assert response.error_code == ErrorCodes.TOKEN_EXPIRED

    def test_create_falls_back_through_dispatcher(self):
        registry = ModuleRegistry()
        dispatcher = CommandDispatcher(registry)
        dispatcher.register_module(FixedClockCalendar(calendar_client=FakeCalendarClient()))
        general = StubModule("general", confidence=0.0)
        dispatcher.register_module(general)

        response = run(dispatcher.process_command("add a meeting with Sam", self.context))

        assert response.metadata["moduleId"] == "general"
        assert response.metadata["isFallback"] is True
        assert response.metadata["originalModule"] == "calendar"
        assert general.handled == ["add a meeting with Sam"]


class TestCalendarReminders:

    def test_one_reminder_per_event(self):
        client = FakeCalendarClient([make_event("a", utc(2024, 5, 1, 10, 5), summary="Standup")])
        module = FixedClockCalendar(
            config={"poll_interval_seconds": 0, "reminder_minutes": 15}, calendar_client=client
        )

        async def collect():
            stream = module.stream_updates(make_context())
            first = await stream.__anext__()
            client.events.append(make_event("b", utc(2024, 5, 1, 10, 12), summary="Review"))
            second = await stream.__anext__()
            await stream.aclose()
            return first, second

        first, second = run(collect())

        assert first.type == "UpcomingEvent"
        assert first.message == "'Standup' starts in 5m"
        assert first.priority == "high"
        assert second.data["id"] == "b"
        assert second.message == "'Review' starts in 12m"
