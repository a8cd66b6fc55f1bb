import uuid
from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Index
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base, JSONType


class WatchSession(Base):
    """One player lifetime. ``closed_at`` is set once and triggers aggregation."""

    __tablename__ = "watch_sessions"

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    lesson_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    lesson_attempt_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lesson_attempts.attempt_id", ondelete="SET NULL"),
        nullable=True,
    )
    client_info: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    # Set when effective time and skips were added to the attempt
    aggregated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    # Attempt this (unassigned) viewing was credited into
    credited_attempt_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lesson_attempts.attempt_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_watch_sessions_attempt", "lesson_attempt_id"),
        Index("ix_watch_sessions_user_lesson_started", "user_id", "lesson_id", "started_at"),
        Index("ix_watch_sessions_credited_attempt", "credited_attempt_id"),
    )
