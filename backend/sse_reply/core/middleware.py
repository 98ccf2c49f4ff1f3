from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from sse_reply.core.logging import request_id_ctx

logger = logging.getLogger(__name__)

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


def is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith(EVENT_STREAM_MEDIA_TYPE)


async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    token = request_id_ctx.set(request_id)

    start = time.perf_counter()
    streaming = False
    try:
        response: Response = await call_next(request)
        response.headers["x-request-id"] = request_id
        streaming = is_event_stream(response)
        return response
    finally:
        # For event streams this measures time-to-headers only.
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            "event stream opened" if streaming else "request completed",
            extra={
                "method": request.method,
                "path": str(request.url.path),
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )
        request_id_ctx.reset(token)
