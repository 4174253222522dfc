"""
SSE frame parsing for agent chat streams.

Upstream agents mix two framing styles: named events (`event: message` +
`data: {...}`) and JSON-only data lines that carry their own `event` field.
`parse_frame` accepts both; `classify` turns the result into a typed event.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Union

from loguru import logger

from ev_advisor.errors import ErrorKind

DONE_SENTINEL = "[DONE]"

THOUGHT_EVENTS = frozenset({"agent_thought"})
ANSWER_EVENTS = frozenset({"message", "agent_message"})
END_EVENTS = frozenset({"message_end", "agent_message_end", "done"})
ERROR_EVENTS = frozenset({"error"})


class Frame(NamedTuple):
    event: str
    payload: Dict[str, Any]


def parse_frame(text: str) -> Optional[Frame]:
    normalized = text.strip()
    if not normalized:
        return None

    named_event = ""
    data_lines: List[str] = []
    bag: Dict[str, Any] = {}

    for line in normalized.split("\n"):
        if line.startswith("event:"):
            named_event = line[6:].strip()
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
            continue

        sep = line.find(":")
        if sep > 0:
            bag[line[:sep].strip()] = line[sep + 1:].strip()

    if data_lines:
        raw = "\n".join(data_lines)
        if raw == DONE_SENTINEL:
            return Frame("done", {})

        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None

        if isinstance(parsed, dict):
            own_event = parsed.get("event")
            if isinstance(own_event, str) and own_event.strip():
                return Frame(own_event, parsed)
            return Frame(named_event or "message", parsed)

        # degrade to a raw-text answer so the text is not lost
        logger.debug("{}: using raw text as answer: {!r}", ErrorKind.MALFORMED_FRAME.value, raw[:120])
        return Frame(named_event or "message", {**bag, "answer": raw})

    if bag:
        return Frame(bag.get("event") or named_event or "message", bag)

    return None


class FrameBuffer:
    """Accumulates decoded stream text and yields complete frames."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> Iterator[str]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        while True:
            idx = self._buffer.find("\n\n")
            if idx < 0:
                return
            frame, self._buffer = self._buffer[:idx], self._buffer[idx + 2:]
            yield frame

    def tail(self) -> str:
        rest, self._buffer = self._buffer, ""
        return rest

    @property
    def pending(self) -> str:
        return self._buffer


# -----------------------------
# Typed events
# -----------------------------
def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class _Event:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def conversation_id(self) -> str:
        return _text(self.payload, "conversation_id") or ""


@dataclass(frozen=True)
class ThoughtEvent(_Event):
    @property
    def text(self) -> str:
        for key in ("thought", "message", "answer"):
            value = _text(self.payload, key)
            if value is not None:
                return value.strip()
        return ""

    @property
    def observation(self) -> Optional[str]:
        return _text(self.payload, "observation")

    @property
    def tool(self) -> Optional[str]:
        return _text(self.payload, "tool") or _text(self.payload, "tool_name")

    @property
    def created_at(self) -> Optional[float]:
        value = self.payload.get("created_at")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value


@dataclass(frozen=True)
class AnswerDelta(_Event):
    @property
    def answer(self) -> str:
        return _text(self.payload, "answer") or ""


@dataclass(frozen=True)
class EndEvent(_Event):
    pass


@dataclass(frozen=True)
class ErrorEvent(_Event):
    DEFAULT_MESSAGE = "对话过程中出现错误"

    @property
    def message(self) -> str:
        return _text(self.payload, "message") or self.DEFAULT_MESSAGE


@dataclass(frozen=True)
class UnknownEvent(_Event):
    pass


StreamEvent = Union[ThoughtEvent, AnswerDelta, EndEvent, ErrorEvent, UnknownEvent]


def classify(frame: Frame) -> StreamEvent:
    name, payload = frame
    if name in THOUGHT_EVENTS:
        return ThoughtEvent(name, payload)
    if name in ANSWER_EVENTS:
        return AnswerDelta(name, payload)
    if name in END_EVENTS:
        return EndEvent(name, payload)
    if name in ERROR_EVENTS:
        return ErrorEvent(name, payload)
    return UnknownEvent(name, payload)
