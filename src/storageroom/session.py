"""Terminal session: an append-only log of operation output shared by explicit reference."""

import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from storageroom.models import DeploymentEvent, EventLevel, EventType

# Levels that pull the terminal into view when logged.
FOCUS_LEVELS = {EventLevel.ERROR, EventLevel.COMMAND}


@dataclass(frozen=True)
class TerminalLine:
    id: str
    timestamp: datetime
    level: EventLevel
    message: str
    source: str | None = None


Subscriber = Callable[[TerminalLine], None]


class TerminalSession:
    """Collects log lines for one operator session.

    Components receive the session explicitly and call ``log``; consumers
    register with ``subscribe`` to see each line as it is appended.
    """

    def __init__(self):
        self._lines: list[TerminalLine] = []
        self._subscribers: list[Subscriber] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self.is_open = False

    @property
    def lines(self) -> tuple[TerminalLine, ...]:
        return tuple(self._lines)

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for new lines. Returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def log(
        self,
        message: str,
        level: EventLevel = EventLevel.INFO,
        source: str | None = None,
    ) -> TerminalLine:
        with self._lock:
            line = TerminalLine(
                id=f"log-{next(self._counter)}",
                timestamp=datetime.now(UTC),
                level=level,
                message=message,
                source=source,
            )
            self._lines.append(line)
        if level in FOCUS_LEVELS:
            self.is_open = True
        for callback in list(self._subscribers):
            callback(line)
        return line

    def log_event(self, event: DeploymentEvent, source: str | None = None) -> None:
        """Append a deployment event, expanding error-intelligence hints into lines."""
        if event.type == EventType.ERROR_INTELLIGENCE:
            self.log(f"Hint: {event.title or event.message}", EventLevel.WARN, source)
            if event.suggestion:
                self.log(f"   {event.suggestion}", EventLevel.WARN, source)
            if event.command:
                self.log(f"   Fix: {event.command}", EventLevel.COMMAND, source)
            return
        self.log(event.message, event.level, source)

    @property
    def last_error(self) -> str | None:
        for line in reversed(self._lines):
            if line.level == EventLevel.ERROR:
                return line.message
        return None
