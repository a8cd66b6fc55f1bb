import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class SeekEvent(Base):
    __tablename__ = "seek_events"

    seek_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("watch_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Only populated when seek dedup is switched on; NULLs never collide
    client_event_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    from_second: Mapped[int] = mapped_column(Integer, nullable=False)
    to_second: Mapped[int] = mapped_column(Integer, nullable=False)
    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    is_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_distance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("session_id", "client_event_id", name="uq_seek_events_session_event"),
        Index("ix_seek_events_session_skip", "session_id", "is_skip"),
    )
