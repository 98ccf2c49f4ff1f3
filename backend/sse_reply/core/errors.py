from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EventStreamError(Exception):
    """Base class for everything raised while producing an event stream."""


class ConfigurationError(EventStreamError, TypeError):
    """Invalid id/event options or source wrapper; raised before any byte is written."""


class SerializationError(EventStreamError, ValueError):
    """A payload, id or event name cannot be rendered into a frame."""


class SourceError(EventStreamError):
    """The producing source failed mid-stream."""


class SinkClosedError(EventStreamError):
    """The response sink no longer accepts writes (client went away)."""


class ReplyAlreadySentError(EventStreamError, RuntimeError):
    pass


class ChannelFullError(EventStreamError):
    pass


class ChannelClosedError(EventStreamError):
    pass


def friendly_http_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"error": {"message": message}}
    )


async def event_stream_exception_handler(
    request: Request, exc: EventStreamError
) -> JSONResponse:
    # Only reachable before the stream started; afterwards the status line is gone.
    logger.exception(
        "event stream could not be started",
        extra={"path": str(request.url.path), "error_type": type(exc).__name__},
    )
    return friendly_http_error(500, "Event stream could not be started.")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled exception", extra={"path": str(request.url.path)})
    return friendly_http_error(500, "Unexpected server error. Please try again.")
