from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.watch_segment import WatchSegment
from app.sessions.segments import (
    SegmentData,
    list_session_segments,
    record_segment,
    record_segments,
)
from app.sessions.service import open_session


async def _segment_count(db, session_id) -> int:
    result = await db.execute(
        select(func.count(WatchSegment.segment_id)).where(WatchSegment.session_id == session_id)
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_record_segment_is_idempotent(db_session, user_id, lesson_id) -> None:
    session = await open_session(db_session, user_id, lesson_id)
    segment = SegmentData("evt-1", 0, 10, Decimal("1.5"))

    assert await record_segment(db_session, session.session_id, segment) is True
    assert await record_segment(db_session, session.session_id, segment) is False
    assert await _segment_count(db_session, session.session_id) == 1


@pytest.mark.asyncio
async def test_retry_with_different_payload_keeps_first_row(db_session, user_id, lesson_id) -> None:
    session = await open_session(db_session, user_id, lesson_id)
    await record_segment(db_session, session.session_id, SegmentData("evt-1", 0, 10))
    await record_segment(db_session, session.session_id, SegmentData("evt-1", 0, 99))

    rows = await list_session_segments(db_session, session.session_id)
    assert [(r.start_second, r.end_second) for r in rows] == [(0, 10)]


@pytest.mark.asyncio
async def test_same_event_id_in_other_session_is_a_new_row(db_session, user_id, lesson_id) -> None:
    first = await open_session(db_session, user_id, lesson_id)
    second = await open_session(db_session, user_id, lesson_id)
    segment = SegmentData("evt-1", 0, 10)

    assert await record_segment(db_session, first.session_id, segment) is True
    assert await record_segment(db_session, second.session_id, segment) is True


@pytest.mark.asyncio
async def test_record_segments_counts_duplicates(db_session, user_id, lesson_id) -> None:
    session = await open_session(db_session, user_id, lesson_id)
    batch = [
        SegmentData("a", 0, 10),
        SegmentData("b", 10, 20, Decimal("2")),
        SegmentData("a", 0, 10),
    ]

    assert await record_segments(db_session, session.session_id, batch) == (2, 1)
    assert await record_segments(db_session, session.session_id, batch) == (0, 3)

    rows = await list_session_segments(db_session, session.session_id)
    assert [r.client_event_id for r in rows] == ["a", "b"]
    assert rows[1].speed == Decimal("2")
