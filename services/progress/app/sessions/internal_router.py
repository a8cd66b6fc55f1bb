from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import get_db
from app.dependencies import get_redis, get_settings
from app.sessions import controller
from app.sessions.schemas import ReapRequest, ReapResponse

router = APIRouter(prefix="/watch/internal", tags=["Watch Sessions"])


@router.post(
    "/sessions/reap",
    response_model=ReapResponse,
    summary="Internal: close sessions that stopped sending heartbeats (scheduler).",
)
async def reap_stale_sessions(
    body: ReapRequest | None = None,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis = Depends(get_redis),
) -> ReapResponse:
    return await controller.reap_stale_sessions(db, body or ReapRequest(), settings, redis)
