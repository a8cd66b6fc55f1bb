"""Watch session router: open, progress batches, heartbeat, close, analytics.

HTTP layer only. Delegates to controller for business logic.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import get_db
from app.dependencies import get_redis, get_settings
from app.sessions import controller
from app.sessions.schemas import (
    BulkProgressRequest,
    BulkProgressResponse,
    CloseSessionResponse,
    HeartbeatResponse,
    OpenSessionRequest,
    OpenSessionResponse,
    ProgressBatchRequest,
    ProgressBatchResponse,
    SkipAnalyticsResponse,
)

router = APIRouter(prefix="/watch/sessions", tags=["Watch Sessions"])


@router.post(
    "",
    response_model=OpenSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a watch session",
    description="Resolves the user's in-progress attempt for the lesson (creating "
    "the next numbered attempt if none is open) and opens a session against it. "
    "When the attempt becomes assigned, recent unassigned viewing is credited into it.",
)
async def open_session(
    body: OpenSessionRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OpenSessionResponse:
    return await controller.open_session(db, body, settings)


@router.post(
    "/bulk-progress",
    response_model=BulkProgressResponse,
    summary="Record progress for several sessions",
    description="Each session's batch is applied independently; an unknown session "
    "is reported in its result entry without failing the others.",
)
async def record_bulk_progress(
    body: BulkProgressRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis = Depends(get_redis),
) -> BulkProgressResponse:
    return await controller.record_bulk_progress(db, body, settings, redis)


@router.post(
    "/{session_id}/progress",
    response_model=ProgressBatchResponse,
    summary="Record watched segments and seeks",
    description="Also counts as a heartbeat. Segments are idempotent on "
    "client_event_id: a retried batch is acknowledged and ignored.",
)
async def record_progress(
    session_id: UUID,
    body: ProgressBatchRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis = Depends(get_redis),
) -> ProgressBatchResponse:
    return await controller.record_progress(db, session_id, body, settings, redis)


@router.put(
    "/{session_id}/heartbeat",
    response_model=HeartbeatResponse,
    summary="Session heartbeat",
)
async def heartbeat(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis = Depends(get_redis),
) -> HeartbeatResponse:
    return await controller.heartbeat(db, session_id, settings, redis)


@router.put(
    "/{session_id}/close",
    response_model=CloseSessionResponse,
    summary="Close a watch session",
    description="Idempotent. The first close adds the session's effective time and "
    "skips to its attempt; later calls only recompute coverage.",
)
async def close_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    redis: Redis = Depends(get_redis),
) -> CloseSessionResponse:
    return await controller.close_session(db, session_id, settings, redis)


@router.get(
    "/{session_id}/skip-analytics",
    response_model=SkipAnalyticsResponse,
    summary="Skips detected in a session",
)
async def get_skip_analytics(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SkipAnalyticsResponse:
    return await controller.get_skip_analytics(db, session_id)
