"""Bounded in-process buffer of recent webhook bodies, for diagnostics only."""

from collections import deque
from threading import Lock
from typing import Any, Optional

from app.config import settings
from app.db_utils import utcnow


class WebhookDebugBuffer:
    def __init__(self, maxlen: int = 20) -> None:
        self._items: deque = deque(maxlen=max(int(maxlen), 1))
        self._lock = Lock()

    def record(self, body: Any, note: Optional[str] = None) -> None:
        entry = {"received_at": utcnow().isoformat(), "body": body}
        if note:
            entry["note"] = note
        with self._lock:
            self._items.append(entry)

    def recent(self, limit: Optional[int] = None) -> list[dict]:
        """Newest first."""
        with self._lock:
            items = list(self._items)
        items.reverse()
        if limit is not None:
            items = items[: max(limit, 0)]
        return items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


webhook_debug_buffer = WebhookDebugBuffer(settings.webhook_debug_buffer_size)
