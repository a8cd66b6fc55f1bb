"""Watch session controller: maps service results to HTTP responses."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.attempts.schemas import LessonAttemptResponse
from app.config import Settings
from app.exceptions import (
    AggregationConflictError,
    LessonAttemptNotFoundError,
    WatchSessionNotFoundError,
)
from app.sessions import service
from app.sessions.schemas import (
    BulkProgressRequest,
    BulkProgressResponse,
    CloseSessionResponse,
    HeartbeatResponse,
    OpenSessionRequest,
    OpenSessionResponse,
    ProgressBatchRequest,
    ProgressBatchResponse,
    ReapRequest,
    ReapResponse,
    SkipAnalyticsResponse,
    WatchSessionResponse,
)

logger = logging.getLogger(__name__)


def _handle_domain_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (WatchSessionNotFoundError, LessonAttemptNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AggregationConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Attempt is being updated concurrently. Retry the request.",
        )
    if isinstance(exc, SQLAlchemyError):
        logger.error("Storage failure: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable.",
        )
    logger.exception("Unhandled error in watch session controller")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error.",
    )


async def open_session(
    db: AsyncSession,
    body: OpenSessionRequest,
    settings: Settings,
) -> OpenSessionResponse:
    try:
        result = await service.start_watching(
            db,
            body.user_id,
            body.lesson_id,
            settings,
            is_assigned=body.is_assigned,
            client_info=body.client_info,
            lesson_duration_secs=body.lesson_duration_secs,
        )
        return OpenSessionResponse(
            session=WatchSessionResponse.model_validate(result.session),
            attempt=LessonAttemptResponse.model_validate(result.attempt),
            attempt_created=result.attempt_created,
            credited_session_ids=result.credited_session_ids,
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def heartbeat(
    db: AsyncSession,
    session_id: UUID,
    settings: Settings,
    redis: Redis | None = None,
) -> HeartbeatResponse:
    try:
        session = await service.heartbeat(
            db, session_id, redis=redis, ttl_secs=settings.stale_session_secs,
        )
        return HeartbeatResponse(
            session_id=session.session_id, last_heartbeat_at=session.last_heartbeat_at,
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def record_progress(
    db: AsyncSession,
    session_id: UUID,
    body: ProgressBatchRequest,
    settings: Settings,
    redis: Redis | None = None,
) -> ProgressBatchResponse:
    try:
        result = await service.record_progress(
            db,
            session_id,
            settings,
            segments=[s.to_data() for s in body.segments],
            seeks=[s.to_data() for s in body.seeks],
            redis=redis,
        )
        return ProgressBatchResponse(
            session_id=result.session_id,
            segments_recorded=result.segments_recorded,
            duplicates_ignored=result.duplicates_ignored,
            seeks_recorded=result.seeks_recorded,
            skips_detected=result.skips_detected,
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def record_bulk_progress(
    db: AsyncSession,
    body: BulkProgressRequest,
    settings: Settings,
    redis: Redis | None = None,
) -> BulkProgressResponse:
    try:
        batches = [
            (
                batch.session_id,
                [s.to_data() for s in batch.segments],
                [s.to_data() for s in batch.seeks],
            )
            for batch in body.sessions
        ]
        results = await service.record_bulk_progress(db, batches, settings, redis=redis)
        return BulkProgressResponse(results=results)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def close_session(
    db: AsyncSession,
    session_id: UUID,
    settings: Settings,
    redis: Redis | None = None,
) -> CloseSessionResponse:
    try:
        result = await service.close_session(db, session_id, settings, redis=redis)
        return CloseSessionResponse(
            session=WatchSessionResponse.model_validate(result.session),
            closed_now=result.closed_now,
            aggregated_now=result.aggregated_now,
            attempt=(
                LessonAttemptResponse.model_validate(result.attempt)
                if result.attempt is not None else None
            ),
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def get_skip_analytics(db: AsyncSession, session_id: UUID) -> SkipAnalyticsResponse:
    try:
        result = await service.get_skip_analytics(db, session_id)
        return SkipAnalyticsResponse(**result)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def reap_stale_sessions(
    db: AsyncSession,
    body: ReapRequest,
    settings: Settings,
    redis: Redis | None = None,
) -> ReapResponse:
    try:
        closed = await service.close_stale_sessions(
            db, settings, stale_after_secs=body.stale_after_secs, redis=redis,
        )
        return ReapResponse(closed_session_ids=closed, count=len(closed))
    except Exception as exc:
        raise _handle_domain_error(exc) from exc
