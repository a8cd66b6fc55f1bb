import uuid

from sqlalchemy import ForeignKey, Index, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class LessonCoverageInterval(Base):
    """Merged ``[start, end)`` coverage of an attempt, rewritten on each recompute."""

    __tablename__ = "lesson_coverage_intervals"

    interval_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lesson_attempt_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lesson_attempts.attempt_id", ondelete="CASCADE"),
        nullable=False,
    )
    start_second: Mapped[int] = mapped_column(Integer, nullable=False)
    end_second: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_lesson_coverage_intervals_attempt_start", "lesson_attempt_id", "start_second"),
    )
