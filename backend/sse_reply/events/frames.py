from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel

from sse_reply.core.errors import SerializationError

EventId = Union[int, str]

LINE_END = b"\r\n"
TERMINAL_EVENT_NAME = "end"


@dataclass(frozen=True)
class Event:
    """
    One logical unit on the wire.

    `id` / `event` set to None drop the matching line from the frame.
    `data` is text or bytes (sent verbatim) or any JSON-serializable value.
    """

    data: Any
    id: EventId | None = None
    event: str | None = None


TERMINAL_EVENT = Event(data="", event=TERMINAL_EVENT_NAME)


def serialize_data(value: Any) -> bytes:
    """
    Render a payload for the `data:` field.

    Text and bytes go out untouched; models and plain values become compact JSON
    (same shape as JavaScript's JSON.stringify, key order preserved).
    """
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        payload = json.dumps(
            value, ensure_ascii=False, separators=(",", ":"), allow_nan=False
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f"cannot serialize event data: {e}") from e
    return payload.encode("utf-8")


def _field_value(name: str, value: object) -> bytes:
    text = str(value)
    if "\r" in text or "\n" in text:
        raise SerializationError(f"event {name} must be a single line: {text!r}")
    return text.encode("utf-8")


def encode_event(event: Event) -> bytes:
    """
    Encode a single event as SSE bytes: `id`, `event`, `data` lines, then a blank line.
    """
    parts: list[bytes] = []
    if event.id is not None:
        parts.append(b"id: " + _field_value("id", event.id) + LINE_END)
    if event.event is not None:
        parts.append(b"event: " + _field_value("name", event.event) + LINE_END)
    parts.append(b"data: " + serialize_data(event.data) + LINE_END)
    parts.append(LINE_END)
    return b"".join(parts)


TERMINAL_FRAME = encode_event(TERMINAL_EVENT)
