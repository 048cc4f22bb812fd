"""
Per-user follow-up state owned by a single module.

A module that asks the user a question ("Would you like me to read the
subjects?") stores what it asked here, keyed by user ID, and interprets the
user's next input as the answer. Entries are consumed once (pop), replaced
by newer entries, or expire after `ttl_seconds`.

Each module creates its own stores; nothing here is shared across modules.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class PendingQuestion:
    """A question a module asked and is waiting to have answered."""
    kind: str
    prompt: str
    data: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)


class FollowUpStore(Generic[T]):
    """Lock-protected map of user ID -> value with optional expiry."""

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and time.monotonic() - stored_at > self.ttl_seconds

    def set(self, user_id: str, value: T) -> None:
        with self._lock:
            self._entries[user_id] = (value, time.monotonic())

    def get(self, user_id: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            value, stored_at = entry
            if self._expired(stored_at):
                del self._entries[user_id]
                return None
            return value

    def pop(self, user_id: str) -> Optional[T]:
        """Return and remove the entry; a pending entry is consumed exactly once."""
        with self._lock:
            entry = self._entries.pop(user_id, None)
        if entry is None:
            return None
        value, stored_at = entry
        if self._expired(stored_at):
            return None
        return value

    def has(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    def clear(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)
