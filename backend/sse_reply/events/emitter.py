from __future__ import annotations

import logging
import uuid
from typing import Any, AsyncIterator, Protocol

from sse_reply.core.config import Settings, get_settings
from sse_reply.core.errors import (
    ConfigurationError,
    ReplyAlreadySentError,
    SerializationError,
    SinkClosedError,
)
from sse_reply.events.frames import TERMINAL_FRAME, Event, EventId, encode_event
from sse_reply.events.policies import (
    DerivedEventName,
    DerivedId,
    EventOptions,
    NoId,
    StaticEventName,
)
from sse_reply.events.sources import Single, Source, Stream

logger = logging.getLogger(__name__)

# Set before the first byte and never overridden.
EVENT_STREAM_HEADERS: dict[str, str] = {
    "content-type": "text/event-stream",
    "content-encoding": "identity",
}
# Keep intermediaries from caching or holding back events.
NO_BUFFERING_HEADERS: dict[str, str] = {
    "cache-control": "no-cache",
    "x-accel-buffering": "no",
}


class EventSink(Protocol):
    """Where frames go. `write` raises SinkClosedError once the client is gone."""

    def set_header(self, name: str, value: str) -> None: ...

    async def write(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...


class EventEmitter:
    """
    Turns one source into the frames of one response.

    Owns the auto id counter, so an instance must never be shared between
    responses.
    """

    def __init__(
        self,
        source: Source,
        options: EventOptions | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        if not isinstance(source, (Single, Stream)):
            raise ConfigurationError(
                f"source must be Single(...) or Stream(...), got {type(source).__name__}"
            )
        if options is not None and not isinstance(options, EventOptions):
            raise ConfigurationError(
                f"options must be EventOptions, got {type(options).__name__}"
            )
        self.source = source
        self.options = options or EventOptions()
        self._settings = settings or get_settings()
        self.stream_id = uuid.uuid4().hex[:12]
        self.next_id = 1
        self.frames_sent = 0
        self._rendered: list[bytes] | None = None
        self._started = False

    @property
    def log_extra(self) -> dict[str, Any]:
        return {"stream_id": self.stream_id, "frames_sent": self.frames_sent}

    def derive_id(self, value: Any) -> EventId | None:
        policy = self.options.id_policy
        if isinstance(policy, NoId):
            return None
        if isinstance(policy, DerivedId):
            return policy.generate(value)
        event_id = self.next_id
        self.next_id += 1
        return event_id

    def derive_name(self, value: Any) -> str | None:
        policy = self.options.event_policy
        if isinstance(policy, StaticEventName):
            return policy.name
        if isinstance(policy, DerivedEventName):
            return policy.derive(value)
        return None

    def build_event(self, value: Any) -> Event:
        return Event(data=value, id=self.derive_id(value), event=self.derive_name(value))

    def encode(self, value: Any) -> bytes:
        return encode_event(self.build_event(value))

    def prepare(self) -> None:
        """
        Encode a Single source up front so a bad payload fails before any
        header or byte is sent. No-op for streams.
        """
        if isinstance(self.source, Single):
            self._render_single(self.source)

    def _render_single(self, single: Single) -> list[bytes]:
        if self._rendered is None:
            self._rendered = [self.encode(single.value), TERMINAL_FRAME]
        return self._rendered

    async def frames(self) -> AsyncIterator[bytes]:
        if self._started:
            raise ReplyAlreadySentError("this emitter has already produced its frames")
        self._started = True

        if isinstance(self.source, Single):
            data_frame, terminal_frame = self._render_single(self.source)
            yield data_frame
            self.frames_sent = 1
            yield terminal_frame
            return

        stream = self.source
        iterator = stream.open()
        logger.debug("event stream started", extra=self.log_extra)
        try:
            while True:
                try:
                    value = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                except Exception:
                    logger.exception("event source failed", extra=self.log_extra)
                    if self._settings.terminal_event_on_source_error:
                        yield TERMINAL_FRAME
                    return

                try:
                    frame = self.encode(value)
                except SerializationError:
                    logger.error(
                        "aborting event stream: unserializable value", extra=self.log_extra
                    )
                    raise
                yield frame
                self.frames_sent += 1

            yield TERMINAL_FRAME
            logger.info("event stream completed", extra=self.log_extra)
        finally:
            await stream.release(iterator)


async def emit(
    source: Source,
    options: EventOptions | None,
    sink: EventSink,
    *,
    settings: Settings | None = None,
) -> int:
    """
    Write every frame for `source` to `sink`, then close it.

    Returns the number of data frames written. Configuration and (single value)
    serialization errors are raised before the sink is touched.
    """
    emitter = EventEmitter(source, options, settings=settings)
    emitter.prepare()

    for name, value in {**NO_BUFFERING_HEADERS, **EVENT_STREAM_HEADERS}.items():
        sink.set_header(name, value)

    frames = emitter.frames()
    try:
        async for frame in frames:
            try:
                await sink.write(frame)
            except SinkClosedError:
                logger.info("client went away; stopping event stream", extra=emitter.log_extra)
                return emitter.frames_sent
    finally:
        await frames.aclose()

    try:
        await sink.close()
    except SinkClosedError:
        logger.info("client went away before the stream was closed", extra=emitter.log_extra)
    return emitter.frames_sent
