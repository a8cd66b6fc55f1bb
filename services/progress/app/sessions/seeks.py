"""Seek tracker: records seek events and flags skips.

A skip is an unverified forward jump: the UI did not allow it and it
moved further than the threshold. Backward seeks are stored but are never
skips. Whether the player blocks or merely flags such seeks is the
caller's policy.

Seeks are new facts on every call unless dedup is enabled and the client
sent an event id, in which case a retry is ignored like a segment retry.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import SeekReason
from app.models.seek_event import SeekEvent
from shared.database.postgres import dialect_insert

DEFAULT_SKIP_THRESHOLD_SECONDS = 5


@dataclass(frozen=True)
class SeekData:
    from_second: int
    to_second: int
    allowed: bool = False
    reason: str = SeekReason.USER_SEEK.value
    client_event_id: str | None = None


@dataclass(frozen=True)
class SeekClassification:
    skip_distance: int
    is_skip: bool


def classify_seek(
    seek: SeekData, threshold: int = DEFAULT_SKIP_THRESHOLD_SECONDS,
) -> SeekClassification:
    distance = abs(seek.to_second - seek.from_second)
    forward = seek.to_second > seek.from_second
    return SeekClassification(
        skip_distance=distance,
        is_skip=(not seek.allowed) and forward and distance > threshold,
    )


async def record_seek(
    db: AsyncSession,
    session_id: UUID,
    seek: SeekData,
    *,
    threshold: int = DEFAULT_SKIP_THRESHOLD_SECONDS,
    dedup: bool = False,
) -> SeekClassification | None:
    """Insert one seek event.

    Returns its classification, or ``None`` when dedup swallowed a retry.
    """
    classification = classify_seek(seek, threshold)
    values = {
        "session_id": session_id,
        "from_second": seek.from_second,
        "to_second": seek.to_second,
        "allowed": seek.allowed,
        "reason": seek.reason,
        "is_skip": classification.is_skip,
        "skip_distance": classification.skip_distance,
    }

    if dedup and seek.client_event_id:
        stmt = (
            dialect_insert(db, SeekEvent)
            .values(client_event_id=seek.client_event_id, **values)
            .on_conflict_do_nothing(index_elements=["session_id", "client_event_id"])
        )
        result = await db.execute(stmt)
        return classification if result.rowcount == 1 else None

    # Without dedup the client key is not stored, so repeats never collide
    db.add(SeekEvent(**values))
    await db.flush()
    return classification


async def record_seeks(
    db: AsyncSession,
    session_id: UUID,
    seeks: Iterable[SeekData],
    *,
    threshold: int = DEFAULT_SKIP_THRESHOLD_SECONDS,
    dedup: bool = False,
) -> tuple[int, int]:
    """Insert a batch. Returns ``(recorded, skips_detected)``."""
    recorded = 0
    skips = 0
    for seek in seeks:
        classification = await record_seek(
            db, session_id, seek, threshold=threshold, dedup=dedup,
        )
        if classification is None:
            continue
        recorded += 1
        if classification.is_skip:
            skips += 1
    return recorded, skips


async def count_skips(db: AsyncSession, session_id: UUID) -> int:
    stmt = select(func.count(SeekEvent.seek_id)).where(
        SeekEvent.session_id == session_id,
        SeekEvent.is_skip.is_(True),
    )
    result = await db.execute(stmt)
    return result.scalar() or 0


async def list_skips(db: AsyncSession, session_id: UUID) -> list[SeekEvent]:
    stmt = (
        select(SeekEvent)
        .where(SeekEvent.session_id == session_id, SeekEvent.is_skip.is_(True))
        .order_by(SeekEvent.created_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
