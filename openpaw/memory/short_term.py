"""
Short-term memory — sliding window of recent conversation turns.

Never persisted directly: the session flush turns it into a daily-log entry.
"""

from collections import deque

from openpaw.config import DEFAULT_SHORT_TERM_WINDOW
from openpaw.memory.models import MESSAGE_ROLES, ShortTermMessage


SUMMARY_TURNS = 10
SUMMARY_CONTENT_CHARS = 200


class ShortTermWindow:
    """Bounded FIFO of ShortTermMessage, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_SHORT_TERM_WINDOW) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._messages: deque[ShortTermMessage] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._messages.maxlen

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: ShortTermMessage) -> None:
        if message.role not in MESSAGE_ROLES:
            raise ValueError(f"unknown role: {message.role!r}")
        self._messages.append(message)

    def snapshot(self) -> list[ShortTermMessage]:
        """Copy of the window; later appends do not show up in it."""
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def last_user_message(self) -> ShortTermMessage | None:
        for message in reversed(self._messages):
            if message.role == "user":
                return message
        return None

    def summarize(self) -> str:
        """Last turns as `[role]: content` lines, or "" if the window is empty."""
        if not self._messages:
            return ""

        recent = list(self._messages)[-SUMMARY_TURNS:]
        lines = [f"[{m.role}]: {m.content[:SUMMARY_CONTENT_CHARS]}" for m in recent]
        return f"Recent conversation (last {len(lines)} turns):\n" + "\n".join(lines)
