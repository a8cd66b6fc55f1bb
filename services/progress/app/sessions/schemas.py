"""Watch session Pydantic V2 schemas.

Covers session open, progress batches (segments + seeks), close, reaping
and skip analytics. Range and speed validation happens here; the recorder
stores whatever reaches it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.attempts.schemas import LessonAttemptResponse
from app.models.enums import SeekReason
from app.sessions.seeks import SeekData
from app.sessions.segments import SegmentData


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class OpenSessionRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: UUID
    lesson_id: UUID
    is_assigned: bool = Field(
        default=False,
        description="Whether the lesson is assigned to the user (vs. free viewing).",
    )
    client_info: dict | None = Field(
        default=None, description="Opaque player/device metadata.",
    )
    lesson_duration_secs: int | None = Field(
        default=None,
        ge=0,
        description="Known lesson length. Caps coverage when earlier viewing is credited.",
    )


class SegmentIn(BaseModel):
    """One contiguous watched range, as reported by the player."""

    model_config = ConfigDict(str_strip_whitespace=True)

    client_event_id: str = Field(min_length=1, max_length=100)
    start_second: int = Field(ge=0)
    end_second: int = Field(ge=0)
    speed: Decimal = Field(default=Decimal("1.0"), gt=0, max_digits=4, decimal_places=2)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> SegmentIn:
        if self.end_second < self.start_second:
            raise ValueError("end_second must be >= start_second")
        return self

    def to_data(self) -> SegmentData:
        return SegmentData(
            client_event_id=self.client_event_id,
            start_second=self.start_second,
            end_second=self.end_second,
            speed=self.speed,
        )


class SeekIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    from_second: int = Field(ge=0)
    to_second: int = Field(ge=0)
    allowed: bool = Field(default=False, description="Whether the UI permitted the jump.")
    reason: str = Field(default=SeekReason.USER_SEEK.value, max_length=100)
    client_event_id: str | None = Field(
        default=None,
        max_length=100,
        description="Only used for dedup when seek dedup is enabled.",
    )

    def to_data(self) -> SeekData:
        return SeekData(
            from_second=self.from_second,
            to_second=self.to_second,
            allowed=self.allowed,
            reason=self.reason,
            client_event_id=self.client_event_id,
        )


class ProgressBatchRequest(BaseModel):
    segments: list[SegmentIn] = Field(default_factory=list)
    seeks: list[SeekIn] = Field(default_factory=list)


class SessionBatch(ProgressBatchRequest):
    session_id: UUID


class BulkProgressRequest(BaseModel):
    sessions: list[SessionBatch] = Field(min_length=1)


class ReapRequest(BaseModel):
    stale_after_secs: int | None = Field(
        default=None, gt=0, description="Override the configured stale threshold.",
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class WatchSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: UUID
    user_id: UUID
    lesson_id: UUID
    lesson_attempt_id: UUID | None = None
    credited_attempt_id: UUID | None = None
    client_info: dict | None = None
    started_at: datetime
    last_heartbeat_at: datetime | None = None
    closed_at: datetime | None = None
    aggregated_at: datetime | None = None


class OpenSessionResponse(BaseModel):
    session: WatchSessionResponse
    attempt: LessonAttemptResponse
    attempt_created: bool
    credited_session_ids: list[UUID] = Field(default_factory=list)


class HeartbeatResponse(BaseModel):
    session_id: UUID
    last_heartbeat_at: datetime | None = None


class ProgressBatchResponse(BaseModel):
    session_id: UUID
    segments_recorded: int
    duplicates_ignored: int
    seeks_recorded: int
    skips_detected: int


class BulkProgressResult(BaseModel):
    session_id: UUID
    status: str = Field(description="'success' or 'error'.")
    error: str | None = None
    segments_recorded: int = 0
    duplicates_ignored: int = 0
    seeks_recorded: int = 0
    skips_detected: int = 0


class BulkProgressResponse(BaseModel):
    results: list[BulkProgressResult]


class CloseSessionResponse(BaseModel):
    session: WatchSessionResponse
    closed_now: bool = Field(description="False when the session was already closed.")
    aggregated_now: bool
    attempt: LessonAttemptResponse | None = None


class ReapResponse(BaseModel):
    closed_session_ids: list[UUID]
    count: int


class SkippedSegment(BaseModel):
    from_second: int
    to_second: int
    distance: int
    timestamp: datetime


class SkipAnalyticsResponse(BaseModel):
    session_id: UUID
    total_skips: int
    skipped_segments: list[SkippedSegment]
