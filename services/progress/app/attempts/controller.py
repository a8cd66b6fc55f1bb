"""Lesson attempt controller: maps service results to HTTP responses."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.attempts import service
from app.attempts.schemas import (
    AttemptResolutionResponse,
    CreditResponse,
    CreditUnassignedRequest,
    GetOrCreateAttemptRequest,
    LessonAttemptResponse,
    LessonProgressResponse,
    ProgressNumbers,
    SessionSummary,
    UnassignedHistoryResponse,
)
from app.config import Settings
from app.exceptions import (
    AggregationConflictError,
    CreditTargetMismatchError,
    LessonAttemptNotFoundError,
    ProgressNotFoundError,
)

logger = logging.getLogger(__name__)


def _handle_domain_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LessonAttemptNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ProgressNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No progress found for this lesson.",
        )
    if isinstance(exc, CreditTargetMismatchError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
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
    logger.exception("Unhandled error in lesson attempt controller")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error.",
    )


async def get_or_create_attempt(
    db: AsyncSession, body: GetOrCreateAttemptRequest,
) -> AttemptResolutionResponse:
    try:
        resolution = await service.get_or_create_attempt(
            db, body.user_id, body.lesson_id, body.is_assigned,
        )
        return AttemptResolutionResponse(
            attempt=LessonAttemptResponse.model_validate(resolution.attempt),
            created=resolution.created,
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def mark_complete(db: AsyncSession, attempt_id: UUID) -> LessonAttemptResponse:
    try:
        attempt = await service.mark_complete(db, attempt_id)
        return LessonAttemptResponse.model_validate(attempt)
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def credit_unassigned(
    db: AsyncSession,
    attempt_id: UUID,
    body: CreditUnassignedRequest,
    settings: Settings,
) -> CreditResponse:
    try:
        result = await service.credit_unassigned_history(
            db,
            body.user_id,
            body.lesson_id,
            attempt_id,
            window_days=body.window_days or settings.credit_window_days,
            duration_cap_seconds=body.lesson_duration_secs,
            max_retries=settings.aggregation_max_retries,
        )
        return CreditResponse(
            attempt=LessonAttemptResponse.model_validate(result.attempt),
            credited_session_ids=result.credited_session_ids,
            credited_effective_seconds=result.credited_effective_seconds,
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def get_lesson_progress(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    settings: Settings,
) -> LessonProgressResponse:
    try:
        result = await service.get_lesson_progress(
            db, user_id, lesson_id, recent_limit=settings.recent_sessions_limit,
        )
        return LessonProgressResponse(
            attempt=LessonAttemptResponse.model_validate(result["attempt"]),
            sessions=[SessionSummary.model_validate(s) for s in result["sessions"]],
            progress=ProgressNumbers(**result["progress"]),
            coverage_intervals=result["coverage_intervals"],
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc


async def get_unassigned_history(db: AsyncSession, user_id: UUID) -> UnassignedHistoryResponse:
    try:
        attempts = await service.get_unassigned_history(db, user_id)
        return UnassignedHistoryResponse(
            user_id=user_id,
            attempts=[LessonAttemptResponse.model_validate(a) for a in attempts],
        )
    except Exception as exc:
        raise _handle_domain_error(exc) from exc
