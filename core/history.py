"""
Conversation history: an append-only log of commands and responses per user.

Two stores share one interface (record / get_recent_history):
- CommandHistoryStore: MongoDB collection (see core.database)
- InMemoryCommandHistory: bounded per-user deques, for tests and local runs

ConversationContextService turns history into chat turns for modules that
need multi-turn context.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytz

from core.database import HISTORY_COLLECTION
from utils.logger import get_logger

logger = get_logger("history")

CONFIRMATION_KEYWORDS = ["yes", "no", "confirm", "cancel", "delete", "reply", "next"]
QUESTION_MARKERS = ["?", "yes or no", "confirm or cancel", "would you like"]
FOLLOW_UP_WINDOW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(pytz.utc)


@dataclass
class HistoryEntry:
    """One executed command."""
    user_id: str
    command: str
    response: str
    module_id: str
    success: bool
    timestamp: datetime
    module_name: str = ""
    error_message: Optional[str] = None
    duration_ms: float = 0.0

    def to_document(self) -> Dict:
        return {
            "user_id": self.user_id,
            "command": self.command,
            "response": self.response,
            "module_id": self.module_id,
            "module_name": self.module_name,
            "is_success": self.success,
            "error_message": self.error_message,
            "executed_at": self.timestamp,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "HistoryEntry":
        timestamp = doc.get("executed_at") or _utcnow()
        if timestamp.tzinfo is None:
            timestamp = pytz.utc.localize(timestamp)
        return cls(
            user_id=doc.get("user_id", ""),
            command=doc.get("command", ""),
            response=doc.get("response") or "",
            module_id=doc.get("module_id", ""),
            module_name=doc.get("module_name", ""),
            success=bool(doc.get("is_success", False)),
            error_message=doc.get("error_message"),
            timestamp=timestamp,
            duration_ms=float(doc.get("duration_ms", 0.0)),
        )


def entry_from_response(user_id: str, command: str, response, duration_ms: float = 0.0) -> HistoryEntry:
    """Build a history entry from a dispatched ModuleResponse."""
    return HistoryEntry(
        user_id=user_id,
        command=command[:500],
        response=(response.message or "")[:2000],
        module_id=str(response.metadata.get("moduleId", "none")),
        module_name=str(response.metadata.get("moduleName", "")),
        success=response.success,
        error_message=None if response.success else response.error_code,
        timestamp=_utcnow(),
        duration_ms=duration_ms,
    )


class CommandHistoryStore:
    """MongoDB-backed command history."""

    def __init__(self, db):
        self.collection = db[HISTORY_COLLECTION]

    def record(self, entry: HistoryEntry) -> None:
        self.collection.insert_one(entry.to_document())

    def get_recent_history(self, user_id: str, count: int = 5) -> List[HistoryEntry]:
        """Most recent `count` entries for a user, oldest first."""
        cursor = (
            self.collection.find({"user_id": user_id})
            .sort("executed_at", -1)
            .limit(count)
        )
        entries = [HistoryEntry.from_document(doc) for doc in cursor]
        entries.reverse()
        return entries


class InMemoryCommandHistory:
    """Process-local history keeping the last `max_per_user` entries per user."""

    def __init__(self, max_per_user: int = 50):
        self.max_per_user = max_per_user
        self._entries: Dict[str, deque] = {}
        self._lock = threading.Lock()

    def record(self, entry: HistoryEntry) -> None:
        with self._lock:
            log = self._entries.setdefault(entry.user_id, deque(maxlen=self.max_per_user))
            log.append(entry)

    def get_recent_history(self, user_id: str, count: int = 5) -> List[HistoryEntry]:
        if count <= 0:
            return []
        with self._lock:
            log = list(self._entries.get(user_id, ()))
        return log[-count:]


class ConversationContextService:
    """Builds multi-turn conversation context from a history store."""

    def __init__(self, history_store):
        self.history_store = history_store

    def get_recent_conversation(self, user_id: str, message_count: int = 5) -> List[Dict]:
        """
        Recent turns as chat messages, oldest first.

        Returns:
            [{"role", "content", "timestamp", "module_id", "success"}];
            empty when the store fails
        """
        try:
            history = self.history_store.get_recent_history(user_id, message_count)
        except Exception as e:
            logger.error(f"Error retrieving conversation history for user {user_id}: {e}", exc_info=True)
            return []

        conversation = []
        for entry in history:
            conversation.append({
                "role": "user",
                "content": entry.command,
                "timestamp": entry.timestamp,
                "module_id": entry.module_id,
                "success": True,
            })
            conversation.append({
                "role": "assistant",
                "content": entry.response or "No response recorded",
                "timestamp": entry.timestamp + timedelta(seconds=1),
                "module_id": entry.module_id,
                "success": entry.success,
            })
        return conversation[-message_count * 2:]

    def get_chat_messages(self, user_id: str, message_count: int = 5) -> List[Dict]:
        """Recent turns in the shape chat completion APIs expect."""
        return [
            {"role": m["role"], "content": m["content"]}
            for m in self.get_recent_conversation(user_id, message_count)
        ]

    def build_conversation_context(self, user_id: str, message_count: int = 5) -> str:
        conversation = self.get_recent_conversation(user_id, message_count)
        if not conversation:
            return "No previous conversation history."

        lines = ["Recent conversation history:"]
        for message in conversation:
            speaker = "User" if message["role"] == "user" else "Assistant"
            lines.append(f"{message['timestamp'].strftime('%H:%M:%S')} {speaker}: {message['content']}")
        return "\n".join(lines)

    def is_follow_up_command(self, text: str, user_id: str) -> bool:
        """
        True when the last assistant turn asked a question, the input is a
        short confirmation-style answer, and the question is under 5 minutes old.
        """
        conversation = self.get_recent_conversation(user_id, 2)
        assistant_turns = [m for m in conversation if m["role"] == "assistant"]
        if not assistant_turns:
            return False

        last = max(assistant_turns, key=lambda m: m["timestamp"])
        last_message = last["content"].lower()
        normalized = text.lower().strip()

        was_asking = any(marker in last_message for marker in QUESTION_MARKERS)
        is_answer = any(
            normalized == keyword or keyword in normalized.split()
            for keyword in CONFIRMATION_KEYWORDS
        )
        recent = _utcnow() - last["timestamp"] <= FOLLOW_UP_WINDOW
        return was_asking and is_answer and recent
