"""
Test doubles shared by the test suite.

No network: mail, calendar and OpenAI collaborators are replaced by
in-memory fakes that record every call.
"""

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytz

from core.calendar_client import CalendarClient
from core.errors import ProviderApiError
from core.mail_client import MailClient
from core.models import ModuleResponse, ModuleUpdate, UserContext
from modules.base import BaseModule


def make_context(user_id: str = "user-1", provider: str = "google",
                 access_token: str = "token-123", token_expiry: Optional[datetime] = None) -> UserContext:
    return UserContext(
        user_id=user_id,
        email=f"{user_id}@example.com",
        name="Test User",
        provider=provider,
        access_token=access_token,
        token_expiry=token_expiry,
        scopes=("mail.read", "calendar.read"),
    )


class StubModule(BaseModule):
    """Configurable module: fixed or phrase-based confidence, canned response or error."""

    def __init__(self, module_id: str, phrases=(), priority: int = 1,
                 confidence: Optional[float] = None, response: Optional[ModuleResponse] = None,
                 raises: Optional[Exception] = None, score_raises: Optional[Exception] = None,
                 keywords=()):
        self._id = module_id
        self._phrases = list(phrases)
        self._priority = priority
        self._keywords = list(keywords)
        super().__init__()
        self.confidence = confidence
        self.response = response
        self.raises = raises
        self.score_raises = score_raises
        self.handled: List[str] = []
        self.scored: List[str] = []

    def get_id(self) -> str:
        return self._id

    def get_name(self) -> str:
        return f"{self._id.title()} Stub"

    def get_description(self) -> str:
        return f"Stub module {self._id}"

    def get_supported_commands(self) -> List[str]:
        return self._phrases

    def get_priority(self) -> int:
        return self._priority

    def get_domain_keywords(self) -> List[str]:
        return self._keywords

    async def can_handle(self, text: str, context: UserContext) -> float:
        self.scored.append(text)
        if self.score_raises is not None:
            raise self.score_raises
        if self.confidence is not None:
            return self.confidence
        return await super().can_handle(text, context)

    async def handle(self, text: str, context: UserContext) -> ModuleResponse:
        self.handled.append(text)
        if self.raises is not None:
            raise self.raises
        if self.response is not None:
            return copy.deepcopy(self.response)
        return ModuleResponse.ok(f"{self._id} handled: {text}")


class BarrierModule(StubModule):
    """Scores 0.9 only if every sibling started scoring before any finished."""

    def __init__(self, module_id: str, barrier: Dict, priority: int = 1):
        super().__init__(module_id, priority=priority)
        self.barrier = barrier

    async def can_handle(self, text: str, context: UserContext) -> float:
        self.barrier["started"] += 1
        if self.barrier["started"] == self.barrier["expected"]:
            self.barrier["event"].set()
        await asyncio.wait_for(self.barrier["event"].wait(), timeout=1.0)
        return 0.9


class FakeOpenAIClient:
    """Stands in for core.openai_client.OpenAIClient."""

    def __init__(self, intent: Optional[Dict] = None, reply: str = "Hello! How can I help?",
                 reply_error: Optional[Exception] = None, intent_error: Optional[Exception] = None):
        self.intent = intent if intent is not None else {
            "should_route_to_specific_module": False,
            "target_module": "general",
            "confidence": 0.9,
            "reasoning": "general question",
        }
        self.reply = reply
        self.reply_error = reply_error
        self.intent_error = intent_error
        self.intent_calls: List[tuple] = []
        self.reply_calls: List[tuple] = []

    def analyze_intent(self, text: str, modules: List[Dict]) -> Dict:
        self.intent_calls.append((text, modules))
        if self.intent_error is not None:
            raise self.intent_error
        return dict(self.intent)

    def generate_reply(self, text: str, history=None, system_prompt: str = "") -> str:
        self.reply_calls.append((text, list(history or []), system_prompt))
        if self.reply_error is not None:
            raise self.reply_error
        return self.reply


def make_message(index: int, unread: bool = False) -> Dict:
    return {
        "id": f"msg-{index}",
        "thread_id": f"thread-{index}",
        "subject": f"Subject {index}",
        "from": f"sender{index}@example.com",
        "date": "2024-05-01 09:00",
        "snippet": f"Snippet {index}",
        "is_unread": unread,
        "message_id_header": f"<msg-{index}@example.com>",
        "body": "",
    }


class FakeMailClient(MailClient):
    """In-memory mailbox; newest message first."""

    provider = "fake"

    def __init__(self, messages: Optional[List[Dict]] = None, fail_with: Optional[ProviderApiError] = None):
        self.messages = messages if messages is not None else [make_message(i) for i in range(3)]
        self.fail_with = fail_with
        self.trashed: List[str] = []
        self.spammed: List[str] = []
        self.sent: List[tuple] = []
        self.replies: List[tuple] = []
        self.list_calls: List[tuple] = []

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def get_inbox_counts(self, access_token: str) -> Dict[str, int]:
        self._check()
        return {
            "total": len(self.messages),
            "unread": sum(1 for m in self.messages if m["is_unread"]),
        }

    def list_messages(self, access_token: str, count: int = 10,
                      only_unread: bool = False, query: Optional[str] = None) -> List[Dict]:
        self._check()
        self.list_calls.append((count, only_unread, query))
        found = [m for m in self.messages if m["is_unread"] or not only_unread]
        if query:
            found = [m for m in found if query.lower() in m["subject"].lower()]
        return [dict(m) for m in found[:count]]

    def get_message(self, access_token: str, index: int = 0) -> Optional[Dict]:
        self._check()
        if index >= len(self.messages):
            return None
        message = dict(self.messages[index])
        message["body"] = f"Body of {message['subject']}"
        return message

    def trash_message(self, access_token: str, message_id: str) -> None:
        self._check()
        self.trashed.append(message_id)

    def move_to_spam(self, access_token: str, message_id: str) -> None:
        self._check()
        self.spammed.append(message_id)

    def send_message(self, access_token: str, to: str, subject: str, body: str) -> None:
        self._check()
        self.sent.append((to, subject, body))

    def reply_to_message(self, access_token: str, message: Dict, body: str) -> None:
        self._check()
        self.replies.append((message["id"], body))


class FakeCalendarClient(CalendarClient):
    """In-memory calendar returning events that overlap the requested range."""

    provider = "fake"

    def __init__(self, events: Optional[List[Dict]] = None):
        self.events = events or []
        self.calls: List[tuple] = []

    def list_events(self, access_token: str, start: datetime, end: datetime,
                    max_results: int = 50) -> List[Dict]:
        self.calls.append((start, end))
        found = [
            dict(e) for e in self.events
            if e["start"] < end and (e["end"] or e["start"]) > start
        ]
        return sorted(found, key=lambda e: e["start"])[:max_results]


def make_event(event_id: str, start: datetime, minutes: int = 30, summary: Optional[str] = None,
               location: str = "") -> Dict:
    return {
        "id": event_id,
        "summary": summary or f"Event {event_id}",
        "start": start,
        "end": start + timedelta(minutes=minutes),
        "all_day": False,
        "location": location,
        "description": "",
    }


class CountingUpdatesModule(StubModule):
    """Emits a fixed list of updates, then stops."""

    def __init__(self, updates: List[ModuleUpdate]):
        super().__init__("updates")
        self.updates = updates

    async def stream_updates(self, context: UserContext):
        for update in self.updates:
            await asyncio.sleep(0)
            yield update


def utc(*args) -> datetime:
    return pytz.utc.localize(datetime(*args))
