"""NDJSON deployment event protocol: line assembly, parsing and the consumer state machine.

Each line of a deployment stream is tried as a JSON object::

    {"message": "...", "level": "info|warn|error|success|command",
     "status": "ok|error", "type": "log|result|error-intelligence",
     "title": "...", "suggestion": "...", "command": "..."}

Lines that are not JSON objects become plain ``info`` events carrying the raw
text, so unstructured tool output is never dropped.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from enum import StrEnum

from storageroom.models import (
    DeploymentEvent,
    DeploymentResult,
    EventLevel,
    EventType,
    ResultStatus,
)

logger = logging.getLogger(__name__)

# Result lines written by older producers use "success" for a good run.
STATUS_ALIASES = {"success": ResultStatus.OK}


class LineBuffer:
    """Splits a chunked text stream into lines.

    A trailing partial line is held until a later chunk completes it or
    ``flush`` is called at end of stream.
    """

    def __init__(self):
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        rest, self._pending = self._pending.rstrip("\r"), ""
        return [rest] if rest else []

    @property
    def pending(self) -> str:
        return self._pending


def _enum_or_none(enum_cls: type[StrEnum], value, aliases: dict | None = None):
    if value is None:
        return None
    if aliases and value in aliases:
        return aliases[value]
    try:
        return enum_cls(value)
    except ValueError:
        return None


def parse_line(line: str) -> DeploymentEvent:
    """Parse one stream line into an event. Never raises."""
    try:
        data = json.loads(line)
    except ValueError:
        data = None

    if not isinstance(data, dict):
        return DeploymentEvent(message=line, level=EventLevel.INFO)

    message = data.get("message") or data.get("label") or line
    level = _enum_or_none(EventLevel, data.get("level")) or EventLevel.INFO
    return DeploymentEvent(
        message=str(message),
        level=level,
        status=_enum_or_none(ResultStatus, data.get("status"), STATUS_ALIASES),
        type=_enum_or_none(EventType, data.get("type")),
        title=data.get("title"),
        suggestion=data.get("suggestion"),
        command=data.get("command"),
    )


def encode_event(event: DeploymentEvent) -> str:
    """Serialize an event as one NDJSON line, newline included."""
    data = {"message": event.message, "level": event.level.value}
    if event.status is not None:
        data["status"] = event.status.value
    if event.type is not None:
        data["type"] = event.type.value
    for key in ("title", "suggestion", "command"):
        value = getattr(event, key)
        if value is not None:
            data[key] = value
    return json.dumps(data) + "\n"


class StreamState(StrEnum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class EventStream:
    """Consumer side of the protocol.

    Feed raw text chunks in arrival order; complete lines come back as events
    in the same order. The stream remembers whether a failing ``result`` line
    was seen, which makes the run a failure regardless of the exit status.
    """

    def __init__(self):
        self._buffer = LineBuffer()
        self.state = StreamState.IDLE
        self.events: list[DeploymentEvent] = []
        self.failed = False
        self.last_error_message: str | None = None

    def feed(self, chunk: str) -> list[DeploymentEvent]:
        if self.state in (StreamState.FINISHED, StreamState.CANCELLED):
            return []
        self.state = StreamState.STREAMING
        return self._consume(self._buffer.feed(chunk))

    def close(self) -> list[DeploymentEvent]:
        """Flush a final unterminated line and finish the stream."""
        if self.state in (StreamState.FINISHED, StreamState.CANCELLED):
            return []
        events = self._consume(self._buffer.flush())
        self.state = StreamState.FINISHED
        return events

    def cancel(self) -> list[DeploymentEvent]:
        """Stop accepting input. Text already received is still delivered."""
        if self.state in (StreamState.FINISHED, StreamState.CANCELLED):
            return []
        events = self._consume(self._buffer.flush())
        self.state = StreamState.CANCELLED
        return events

    def _consume(self, lines: Iterable[str]) -> list[DeploymentEvent]:
        events = []
        for line in lines:
            if not line.strip():
                continue
            event = parse_line(line)
            if event.is_failure_result:
                self.failed = True
                self.last_error_message = event.message
            events.append(event)
        self.events.extend(events)
        return events

    def result(
        self,
        exit_code: int | None,
        outputs: dict[str, str] | None = None,
    ) -> DeploymentResult:
        """Overall outcome: exit status 0 and no failing result line."""
        cancelled = self.state == StreamState.CANCELLED
        success = exit_code == 0 and not self.failed and not cancelled
        last_error = self.last_error_message
        if not success and last_error is None:
            last_error = "cancelled" if cancelled else f"exited with code {exit_code}"
        return DeploymentResult(
            success=success,
            last_error_message=None if success else last_error,
            exit_code=exit_code,
            cancelled=cancelled,
            outputs=dict(outputs or {}) if success else {},
        )


def iter_events(chunks: Iterable[str]) -> Iterator[DeploymentEvent]:
    """Parse an iterable of text chunks into events."""
    stream = EventStream()
    for chunk in chunks:
        yield from stream.feed(chunk)
    yield from stream.close()
