"""Segment recorder: idempotent inserts keyed by (session_id, client_event_id).

Ranges and speeds are stored exactly as given. Rejecting malformed input
is the request schemas' job; this module only guarantees that a retried
submission never produces a second row.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.watch_segment import WatchSegment
from shared.database.postgres import dialect_insert


@dataclass(frozen=True)
class SegmentData:
    client_event_id: str
    start_second: int
    end_second: int
    speed: Decimal = Decimal("1.0")


async def record_segment(db: AsyncSession, session_id: UUID, segment: SegmentData) -> bool:
    """Insert one segment. Returns ``False`` when the key was already recorded."""
    stmt = (
        dialect_insert(db, WatchSegment)
        .values(
            session_id=session_id,
            client_event_id=segment.client_event_id,
            start_second=segment.start_second,
            end_second=segment.end_second,
            speed=Decimal(str(segment.speed)),
        )
        .on_conflict_do_nothing(index_elements=["session_id", "client_event_id"])
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def record_segments(
    db: AsyncSession, session_id: UUID, segments: Iterable[SegmentData],
) -> tuple[int, int]:
    """Insert a batch. Returns ``(inserted, duplicates_ignored)``."""
    inserted = 0
    ignored = 0
    for segment in segments:
        if await record_segment(db, session_id, segment):
            inserted += 1
        else:
            ignored += 1
    return inserted, ignored


async def list_session_segments(db: AsyncSession, session_id: UUID) -> list[WatchSegment]:
    stmt = (
        select(WatchSegment)
        .where(WatchSegment.session_id == session_id)
        .order_by(WatchSegment.start_second, WatchSegment.created_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
