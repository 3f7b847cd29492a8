"""Append-only observability log."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable

from visualcortex.common.logging import get_logger
from visualcortex.models import LogCategory, LogEntry

LogListener = Callable[[LogEntry], None]

_LEVELS = {
    LogCategory.ERROR: "warning",
    LogCategory.INFO: "info",
    LogCategory.SUCCESS: "info",
    LogCategory.VISUAL: "info",
    LogCategory.BRIDGE: "info",
}


class LogSink:
    """Unbounded, insertion-ordered list of log entries.

    Entries are never deduplicated or dropped. Listeners are notified after
    each append; a failing listener is logged and ignored.
    """

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self._listeners: list[LogListener] = []
        self.logger = get_logger("log_sink")

    def append(self, message: str, category: LogCategory | str = LogCategory.INFO) -> LogEntry:
        """Append a new entry and return it."""
        entry = LogEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(),
            category=LogCategory(category),
            message=message,
        )
        self._entries.append(entry)

        getattr(self.logger, _LEVELS[entry.category])(
            "log_entry", category=entry.category.value, message=message
        )

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                self.logger.exception("log_listener_failed", error=str(e))

        return entry

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def entries(self) -> list[LogEntry]:
        """All entries in insertion order (a copy)."""
        return list(self._entries)

    def by_category(self, category: LogCategory | str) -> list[LogEntry]:
        category = LogCategory(category)
        return [e for e in self._entries if e.category is category]

    def __len__(self) -> int:
        return len(self._entries)
