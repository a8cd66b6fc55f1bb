"""Lesson attempt Pydantic V2 schemas: lifecycle, crediting, progress."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import AttemptStatus


class GetOrCreateAttemptRequest(BaseModel):
    user_id: UUID
    lesson_id: UUID
    is_assigned: bool = False


class CreditUnassignedRequest(BaseModel):
    user_id: UUID
    lesson_id: UUID
    window_days: int | None = Field(
        default=None, gt=0, description="Defaults to the configured credit window.",
    )
    lesson_duration_secs: int | None = Field(
        default=None, ge=0, description="Caps credited coverage to the lesson length.",
    )


class LessonAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempt_id: UUID
    user_id: UUID
    lesson_id: UUID
    attempt_no: int
    status: AttemptStatus
    is_assigned: bool
    max_verified_second: int
    total_effective_seconds: Decimal
    coverage_seconds: int
    skip_event_count: int
    lesson_duration_secs: int | None = None
    flags: dict = Field(default_factory=dict)
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class AttemptResolutionResponse(BaseModel):
    attempt: LessonAttemptResponse
    created: bool


class CreditResponse(BaseModel):
    attempt: LessonAttemptResponse
    credited_session_ids: list[UUID]
    credited_effective_seconds: Decimal


class SessionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: UUID
    lesson_attempt_id: UUID | None = None
    credited_attempt_id: UUID | None = None
    started_at: datetime
    last_heartbeat_at: datetime | None = None
    closed_at: datetime | None = None


class ProgressNumbers(BaseModel):
    max_verified_second: int
    total_effective_seconds: Decimal
    coverage_seconds: int
    skip_event_count: int
    is_assigned: bool
    coverage_pct: Decimal | None = Field(
        default=None, description="Coverage over the known lesson length, when known.",
    )
    speed_breakdown: dict[str, int] = Field(
        default_factory=dict, description="Raw watched seconds per playback speed.",
    )
    effective_time_note: str


class CoverageInterval(BaseModel):
    start_second: int
    end_second: int


class LessonProgressResponse(BaseModel):
    attempt: LessonAttemptResponse
    sessions: list[SessionSummary]
    progress: ProgressNumbers
    coverage_intervals: list[CoverageInterval]


class UnassignedHistoryResponse(BaseModel):
    user_id: UUID
    attempts: list[LessonAttemptResponse]
