from __future__ import annotations

from fastapi import APIRouter, Depends

from sse_reply.core.config import Settings, get_settings

router = APIRouter()


@router.get("/healthz", tags=["health"])
async def healthz(settings: Settings = Depends(get_settings)) -> dict[str, str | int]:
    return {
        "status": "ok",
        "env": settings.env,
        "channel_max_size": settings.channel_max_size,
    }
