from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Body, Depends, Query

from sse_reply.core.config import Settings, get_settings
from sse_reply.core.errors import ChannelClosedError
from sse_reply.events.responses import EventReply, EventStreamResponse, get_event_reply
from sse_reply.events.sources import EventChannel, Single, Stream

logger = logging.getLogger(__name__)
router = APIRouter()

# Strong references to running producers; asyncio only keeps weak ones.
_producers: set[asyncio.Task] = set()


@router.post("/events/echo", response_class=EventStreamResponse)
async def echo_event(
    payload: Any = Body(...),
    event: str | None = Query(default=None, max_length=64),
    ids: bool = True,
    reply: EventReply = Depends(get_event_reply),
) -> EventStreamResponse:
    if ids:
        return reply.send(Single(payload), event=event)
    return reply.send(Single(payload), id_generator=None, event=event)


@router.get("/events/ticks", response_class=EventStreamResponse)
async def stream_ticks(
    count: int = Query(default=3, ge=0, le=1000),
    interval_ms: int = Query(default=0, ge=0, le=5000),
    event: str | None = Query(default=None, max_length=64),
    reply: EventReply = Depends(get_event_reply),
) -> EventStreamResponse:
    async def ticks() -> AsyncIterator[dict[str, int]]:
        for i in range(count):
            if interval_ms:
                await asyncio.sleep(interval_ms / 1000.0)
            yield {"tick": i}

    return reply.send(Stream(ticks()), event=event)


@router.get("/events/lines", response_class=EventStreamResponse)
async def stream_lines(
    text: str = Query(..., max_length=10_000),
    reply: EventReply = Depends(get_event_reply),
) -> EventStreamResponse:
    # Plain text values go out verbatim, one event per line.
    return reply.send(Stream(text.splitlines()))


@router.get("/events/countdown", response_class=EventStreamResponse)
async def stream_countdown(
    start: int = Query(default=3, ge=0, le=100),
    settings: Settings = Depends(get_settings),
    reply: EventReply = Depends(get_event_reply),
) -> EventStreamResponse:
    channel = EventChannel(settings=settings)

    async def produce() -> None:
        try:
            for remaining in range(start, 0, -1):
                await channel.send({"remaining": remaining})
        except ChannelClosedError:
            logger.info("countdown listener went away", extra={"remaining": remaining})
            return
        channel.close()

    task = asyncio.create_task(produce(), name="countdown")
    _producers.add(task)
    task.add_done_callback(_producers.discard)

    return reply.send(
        Stream(channel),
        id_generator=lambda v: v["remaining"],
        event=lambda v: "last" if v["remaining"] == 1 else "tick",
    )
