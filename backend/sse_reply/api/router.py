from __future__ import annotations

from fastapi import APIRouter

from sse_reply.api.events import router as events_router
from sse_reply.api.health import router as health_router

router = APIRouter()

router.include_router(health_router)
router.include_router(events_router, prefix="/api", tags=["events"])
