from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from sse_reply.api.router import router as api_router
from sse_reply.core.config import get_settings
from sse_reply.core.errors import (
    EventStreamError,
    event_stream_exception_handler,
    unhandled_exception_handler,
)
from sse_reply.core.logging import configure_logging
from sse_reply.core.middleware import request_context_middleware

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="SSE Reply", version="0.1.0")

    app.middleware("http")(request_context_middleware)

    # Event streams set Content-Encoding: identity, so GZip passes them through untouched.
    app.add_middleware(GZipMiddleware, minimum_size=settings.gzip_minimum_size)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    app.add_exception_handler(EventStreamError, event_stream_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("app created", extra={"env": settings.env})

    return app


app = create_app()
