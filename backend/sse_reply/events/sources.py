from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel
from starlette.concurrency import iterate_in_threadpool

from sse_reply.core.config import Settings, get_settings
from sse_reply.core.errors import (
    ChannelClosedError,
    ChannelFullError,
    ConfigurationError,
    SourceError,
)


@dataclass(frozen=True)
class Single:
    """One finished value: sent as one event followed by `event: end`."""

    value: Any


class Stream:
    """
    An ongoing producer of values, each sent as its own event.

    Accepts async iterables (async generators, EventChannel, ...) and plain
    iterables; the latter are pulled in the threadpool so a blocking producer
    never stalls the event loop.
    """

    def __init__(self, values: AsyncIterable[Any] | Iterable[Any]) -> None:
        if isinstance(
            values, (str, bytes, bytearray, memoryview, Mapping, BaseModel)
        ):
            raise ConfigurationError(
                f"{type(values).__name__} is a single value; wrap it in Single()"
            )
        if not isinstance(values, (AsyncIterable, Iterable)):
            raise ConfigurationError(
                f"Stream needs an iterable or async iterable, got {type(values).__name__}"
            )
        self.values = values
        self._sync_iterator: Iterator[Any] | None = None

    @property
    def is_async(self) -> bool:
        return isinstance(self.values, AsyncIterable)

    def open(self) -> AsyncIterator[Any]:
        if isinstance(self.values, AsyncIterable):
            return self.values.__aiter__()
        self._sync_iterator = iter(self.values)
        return iterate_in_threadpool(self._sync_iterator)

    async def release(self, iterator: AsyncIterator[Any]) -> None:
        """Stop the producer: close async generators/channels and sync generators."""
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._sync_iterator is not None:
            close = getattr(self._sync_iterator, "close", None)
            if close is not None:
                close()
            self._sync_iterator = None


Source = Union[Single, Stream]


_ITEM = "item"
_END = "end"
_ERROR = "error"


class EventChannel:
    """
    Bounded push source for producers that are not generators.

    Producers call `send()` (waits while the channel is full) or `send_nowait()`
    (raises ChannelFullError), then `close()` on success or `fail(exc)` on error.
    The response side iterates the channel and calls `aclose()` when the client
    goes away; later sends raise ChannelClosedError.
    """

    def __init__(self, maxsize: int | None = None, *, settings: Settings | None = None) -> None:
        if maxsize is None:
            maxsize = (settings or get_settings()).channel_max_size
        if maxsize < 1:
            raise ConfigurationError("channel maxsize must be at least 1")
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=maxsize)
        # End/error marker, held back while the queue is full or senders are waiting.
        self._pending: tuple[str, Any] | None = None
        # Producers suspended in send(); their values go ahead of the end marker.
        self._waiting_senders = 0
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, value: Any) -> None:
        self._check_open()
        self._waiting_senders += 1
        try:
            await self._queue.put((_ITEM, value))
        finally:
            self._waiting_senders -= 1
            self._flush_pending()

    def send_nowait(self, value: Any) -> None:
        self._check_open()
        try:
            self._queue.put_nowait((_ITEM, value))
        except asyncio.QueueFull as e:
            raise ChannelFullError("channel is full; the consumer is not keeping up") from e

    def close(self) -> None:
        self._finish((_END, None))

    def fail(self, exc: BaseException) -> None:
        self._finish((_ERROR, exc))

    async def aclose(self) -> None:
        """Consumer side release: drop buffered values and unblock waiting producers."""
        self._closed = True
        self._finished = True
        self._pending = None
        while not self._queue.empty():
            self._queue.get_nowait()

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelClosedError("channel is closed")

    def _finish(self, marker: tuple[str, Any]) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending = marker
        self._flush_pending()

    def _flush_pending(self) -> None:
        if self._pending is None or self._waiting_senders or self._queue.full():
            return
        self._queue.put_nowait(self._pending)
        self._pending = None

    def __aiter__(self) -> EventChannel:
        return self

    async def __anext__(self) -> Any:
        if self._finished:
            raise StopAsyncIteration
        if self._queue.empty() and self._pending is not None and not self._waiting_senders:
            kind, payload = self._pending
            self._pending = None
        else:
            kind, payload = await self._queue.get()

        if kind == _ITEM:
            return payload
        self._finished = True
        if kind == _ERROR:
            raise SourceError(f"channel producer failed: {payload!r}") from payload
        raise StopAsyncIteration
