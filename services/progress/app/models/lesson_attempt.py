import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Index, Integer, Numeric, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base, JSONType

from .enums import AttemptStatus, attempt_status_enum


class LessonAttempt(Base):
    """One user's pass at one lesson. Re-takes are new rows, never deletes."""

    __tablename__ = "lesson_attempts"

    attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    lesson_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    attempt_no: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[AttemptStatus] = mapped_column(
        attempt_status_enum,
        nullable=False,
        default=AttemptStatus.IN_PROGRESS,
    )
    is_assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_verified_second: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_effective_seconds: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("0")
    )
    coverage_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skip_event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Known lesson length; caps coverage once viewing has been credited in
    lesson_duration_secs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Audit trail, e.g. {"credits": [{"session_ids": [...], "at": "..."}]}
    flags: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    # Bumped on every aggregate write; guards the optimistic update
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "lesson_id", "attempt_no", name="uq_lesson_attempts_user_lesson_no"
        ),
        Index("ix_lesson_attempts_user_lesson", "user_id", "lesson_id"),
        # At most one open attempt per user and lesson
        Index(
            "uq_lesson_attempts_one_in_progress",
            "user_id",
            "lesson_id",
            unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
    )
