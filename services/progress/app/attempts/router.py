"""Lesson attempt router: attempts, crediting, progress reports.

HTTP layer only. Delegates to controller for business logic.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.attempts import controller
from app.attempts.schemas import (
    AttemptResolutionResponse,
    CreditResponse,
    CreditUnassignedRequest,
    GetOrCreateAttemptRequest,
    LessonAttemptResponse,
    LessonProgressResponse,
    UnassignedHistoryResponse,
)
from app.config import Settings
from app.database import get_db
from app.dependencies import get_settings

router = APIRouter(prefix="/watch", tags=["Lesson Attempts"])


@router.post(
    "/attempts",
    response_model=AttemptResolutionResponse,
    summary="Get or create the in-progress attempt",
    description="Returns the open attempt for the user and lesson, or starts the next "
    "numbered attempt when the previous one was completed.",
)
async def get_or_create_attempt(
    body: GetOrCreateAttemptRequest,
    db: AsyncSession = Depends(get_db),
) -> AttemptResolutionResponse:
    return await controller.get_or_create_attempt(db, body)


@router.put(
    "/attempts/{attempt_id}/complete",
    response_model=LessonAttemptResponse,
    summary="Mark an attempt completed",
)
async def mark_complete(
    attempt_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> LessonAttemptResponse:
    return await controller.mark_complete(db, attempt_id)


@router.post(
    "/attempts/{attempt_id}/credit-unassigned",
    response_model=CreditResponse,
    summary="Credit recent unassigned viewing into an attempt",
    description="Folds closed, not yet credited sessions of unassigned viewing within the "
    "window into the attempt. Coverage is capped to the lesson length when given.",
)
async def credit_unassigned(
    attempt_id: UUID,
    body: CreditUnassignedRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CreditResponse:
    return await controller.credit_unassigned(db, attempt_id, body, settings)


@router.get(
    "/users/{user_id}/lessons/{lesson_id}/progress",
    response_model=LessonProgressResponse,
    summary="Lesson progress for a user",
    description="Latest attempt with its recent sessions, effective time, coverage and "
    "the merged coverage intervals.",
)
async def get_lesson_progress(
    user_id: UUID,
    lesson_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> LessonProgressResponse:
    return await controller.get_lesson_progress(db, user_id, lesson_id, settings)


@router.get(
    "/users/{user_id}/unassigned-history",
    response_model=UnassignedHistoryResponse,
    summary="Unassigned attempts of a user",
)
async def get_unassigned_history(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> UnassignedHistoryResponse:
    return await controller.get_unassigned_history(db, user_id)
