from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from sse_reply.core.errors import ConfigurationError
from sse_reply.events.frames import EventId

IdGenerator = Callable[[Any], Union[EventId, None]]
EventNamer = Callable[[Any], Union[str, None]]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Distinguishes "id_generator not given" (auto ids) from an explicit None (no ids).
MISSING: Any = _Missing()


@dataclass(frozen=True)
class AutoId:
    """Counter owned by the emitter: 1, 2, 3, ..."""


@dataclass(frozen=True)
class NoId:
    pass


@dataclass(frozen=True)
class DerivedId:
    generate: IdGenerator


IdPolicy = Union[AutoId, NoId, DerivedId]


@dataclass(frozen=True)
class NoEventName:
    pass


@dataclass(frozen=True)
class StaticEventName:
    name: str


@dataclass(frozen=True)
class DerivedEventName:
    derive: EventNamer


EventNamePolicy = Union[NoEventName, StaticEventName, DerivedEventName]


@dataclass(frozen=True)
class EventOptions:
    id_policy: IdPolicy = field(default_factory=AutoId)
    event_policy: EventNamePolicy = field(default_factory=NoEventName)

    @classmethod
    def from_config(
        cls,
        *,
        id_generator: IdGenerator | None = MISSING,
        event: str | EventNamer | None = None,
    ) -> EventOptions:
        """
        Build options from the loose keyword form used by `send_events`.

        id_generator: omitted -> auto ids, None -> no ids, callable -> derived per value.
        event: None -> no event line, str -> static name, callable -> derived per value.
        """
        return cls(
            id_policy=_id_policy(id_generator),
            event_policy=_event_policy(event),
        )


def _id_policy(id_generator: Any) -> IdPolicy:
    if id_generator is MISSING:
        return AutoId()
    if id_generator is None:
        return NoId()
    if callable(id_generator):
        return DerivedId(id_generator)
    raise ConfigurationError(
        f"id_generator must be a callable or None, got {type(id_generator).__name__}"
    )


def _event_policy(event: Any) -> EventNamePolicy:
    if event is None:
        return NoEventName()
    if isinstance(event, str):
        if "\r" in event or "\n" in event:
            raise ConfigurationError("static event name must be a single line")
        return StaticEventName(event)
    if callable(event):
        return DerivedEventName(event)
    raise ConfigurationError(
        f"event must be a string, a callable or None, got {type(event).__name__}"
    )
