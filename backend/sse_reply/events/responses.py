from __future__ import annotations

import logging
from collections.abc import Mapping

from fastapi import Depends, Request
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from sse_reply.core.config import Settings, get_settings
from sse_reply.core.errors import ConfigurationError, ReplyAlreadySentError
from sse_reply.events.emitter import (
    EVENT_STREAM_HEADERS,
    NO_BUFFERING_HEADERS,
    EventEmitter,
)
from sse_reply.events.policies import (
    MISSING,
    EventNamer,
    EventOptions,
    IdGenerator,
)
from sse_reply.events.sources import Source

logger = logging.getLogger(__name__)


class EventStreamResponse(StreamingResponse):
    """
    Streams the frames of one EventEmitter.

    Content-Type and Content-Encoding always come from EVENT_STREAM_HEADERS,
    whatever the caller passes in `headers`.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        emitter: EventEmitter,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        background: BackgroundTask | None = None,
    ) -> None:
        merged = dict(NO_BUFFERING_HEADERS)
        for name, value in (headers or {}).items():
            if name.lower() in EVENT_STREAM_HEADERS:
                logger.warning("ignoring caller header on event stream", extra={"header": name})
                continue
            merged[name.lower()] = value
        merged.update(EVENT_STREAM_HEADERS)

        self.emitter = emitter
        super().__init__(
            emitter.frames(),
            status_code=status_code,
            headers=merged,
            background=background,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Releases the source when the client disconnected mid-stream.
            await self.body_iterator.aclose()


def send_events(
    source: Source,
    *,
    id_generator: IdGenerator | None = MISSING,
    event: str | EventNamer | None = None,
    options: EventOptions | None = None,
    settings: Settings | None = None,
    status_code: int = 200,
    headers: Mapping[str, str] | None = None,
) -> EventStreamResponse:
    """
    Build the text/event-stream response for `source`.

    Either pass the loose `id_generator` / `event` keywords or a ready
    EventOptions, not both. Bad options, and a Single payload that cannot be
    serialized, raise here, before the response exists.
    """
    if options is None:
        options = EventOptions.from_config(id_generator=id_generator, event=event)
    elif id_generator is not MISSING or event is not None:
        raise ConfigurationError("pass either options or id_generator/event, not both")

    emitter = EventEmitter(source, options, settings=settings)
    emitter.prepare()
    return EventStreamResponse(emitter, status_code=status_code, headers=headers)


class EventReply:
    """
    Per-request handle for answering with an event stream.

    `send` may be called once; a second call raises ReplyAlreadySentError.
    """

    def __init__(self, *, request: Request, settings: Settings) -> None:
        self._request = request
        self._settings = settings
        self._response: EventStreamResponse | None = None

    @property
    def sent(self) -> bool:
        return self._response is not None

    def send(
        self,
        source: Source,
        *,
        id_generator: IdGenerator | None = MISSING,
        event: str | EventNamer | None = None,
        options: EventOptions | None = None,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> EventStreamResponse:
        if self._response is not None:
            raise ReplyAlreadySentError(
                f"events were already sent for {self._request.url.path}"
            )
        response = send_events(
            source,
            id_generator=id_generator,
            event=event,
            options=options,
            settings=self._settings,
            status_code=status_code,
            headers=headers,
        )
        self._response = response
        logger.debug(
            "event reply prepared",
            extra={
                "path": str(self._request.url.path),
                "stream_id": response.emitter.stream_id,
            },
        )
        return response


def get_event_reply(
    request: Request, settings: Settings = Depends(get_settings)
) -> EventReply:
    # One reply per request, even if several dependencies ask for it.
    reply = getattr(request.state, "event_reply", None)
    if reply is None:
        reply = EventReply(request=request, settings=settings)
        request.state.event_reply = reply
    return reply
