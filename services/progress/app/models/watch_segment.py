import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class WatchSegment(Base):
    __tablename__ = "watch_segments"

    segment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("watch_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Client-generated idempotency key
    client_event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    start_second: Mapped[int] = mapped_column(Integer, nullable=False)
    end_second: Mapped[int] = mapped_column(Integer, nullable=False)
    speed: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "session_id", "client_event_id", name="uq_watch_segments_session_event"
        ),
        Index("ix_watch_segments_session_id", "session_id"),
    )
