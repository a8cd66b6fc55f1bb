from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from app.exceptions import WatchSessionNotFoundError
from app.models.watch_segment import WatchSegment
from app.models.watch_session import WatchSession
from app.sessions import service
from app.sessions.seeks import SeekData
from app.sessions.segments import SegmentData


def _segments(*ranges) -> list[SegmentData]:
    return [
        SegmentData(f"evt-{start}-{end}", start, end, Decimal(str(speed)))
        for start, end, speed in ranges
    ]


async def _age_session(db, session_id, **values) -> None:
    await db.execute(
        update(WatchSession).where(WatchSession.session_id == session_id).values(**values)
    )


# ---------------------------------------------------------------------------
# Open / heartbeat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_open_session_sets_timestamps(db_session, user_id, lesson_id) -> None:
    session = await service.open_session(
        db_session, user_id, lesson_id, client_info={"player": "web"},
    )
    assert session.started_at is not None
    assert session.last_heartbeat_at is not None
    assert session.closed_at is None
    assert session.lesson_attempt_id is None
    assert session.client_info == {"player": "web"}


@pytest.mark.asyncio
async def test_start_watching_links_session_to_attempt(
    db_session, settings, user_id, lesson_id,
) -> None:
    started = await service.start_watching(db_session, user_id, lesson_id, settings)
    assert started.attempt_created is True
    assert started.session.lesson_attempt_id == started.attempt.attempt_id

    again = await service.start_watching(db_session, user_id, lesson_id, settings)
    assert again.attempt_created is False
    assert again.attempt.attempt_id == started.attempt.attempt_id
    assert again.session.session_id != started.session.session_id


@pytest.mark.asyncio
async def test_heartbeat_unknown_session(db_session) -> None:
    with pytest.raises(WatchSessionNotFoundError):
        await service.heartbeat(db_session, uuid4())


@pytest.mark.asyncio
async def test_record_progress_unknown_session_writes_nothing(db_session, settings) -> None:
    missing = uuid4()
    with pytest.raises(WatchSessionNotFoundError):
        await service.record_progress(
            db_session, missing, settings, segments=_segments((0, 10, 1)),
        )
    count = await db_session.execute(
        select(func.count(WatchSegment.segment_id)).where(WatchSegment.session_id == missing)
    )
    assert count.scalar() == 0


@pytest.mark.asyncio
async def test_record_progress_counts(db_session, settings, user_id, lesson_id) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    segments = _segments((0, 10, 1), (10, 20, 1))

    result = await service.record_progress(
        db_session,
        session.session_id,
        settings,
        segments=segments + segments[:1],
        seeks=[SeekData(20, 80), SeekData(80, 20)],
    )
    assert result.segments_recorded == 2
    assert result.duplicates_ignored == 1
    assert result.seeks_recorded == 2
    assert result.skips_detected == 1


# ---------------------------------------------------------------------------
# Close / aggregation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_close_aggregates_into_attempt(db_session, settings, user_id, lesson_id) -> None:
    started = await service.start_watching(db_session, user_id, lesson_id, settings)
    session_id = started.session.session_id
    await service.record_progress(
        db_session,
        session_id,
        settings,
        segments=_segments((0, 10, "1.0"), (10, 20, "1.5"), (30, 40, "0.5")),
        seeks=[SeekData(20, 30), SeekData(10, 50)],
    )

    result = await service.close_session(db_session, session_id, settings)

    assert result.closed_now is True
    assert result.aggregated_now is True
    assert result.session.closed_at is not None
    assert result.session.aggregated_at is not None
    attempt = result.attempt
    assert attempt.total_effective_seconds == Decimal("36.667")
    assert attempt.coverage_seconds == 30
    assert attempt.max_verified_second == 40
    assert attempt.skip_event_count == 2
    assert attempt.coverage_seconds <= attempt.max_verified_second


@pytest.mark.asyncio
async def test_close_twice_does_not_double_count(db_session, settings, user_id, lesson_id) -> None:
    started = await service.start_watching(db_session, user_id, lesson_id, settings)
    session_id = started.session.session_id
    await service.record_progress(
        db_session, session_id, settings,
        segments=_segments((0, 30, 1)), seeks=[SeekData(30, 90)],
    )

    first = await service.close_session(db_session, session_id, settings)
    first_closed_at = first.session.closed_at
    second = await service.close_session(db_session, session_id, settings)

    assert second.closed_now is False
    assert second.aggregated_now is False
    assert second.session.closed_at == first_closed_at
    assert second.attempt.total_effective_seconds == Decimal("30.000")
    assert second.attempt.skip_event_count == 1
    assert second.attempt.coverage_seconds == 30


@pytest.mark.asyncio
async def test_retried_segments_leave_aggregates_unchanged(
    db_session, settings, user_id, lesson_id,
) -> None:
    started = await service.start_watching(db_session, user_id, lesson_id, settings)
    session_id = started.session.session_id
    batch = _segments((0, 20, 1))
    await service.record_progress(db_session, session_id, settings, segments=batch)
    await service.record_progress(db_session, session_id, settings, segments=batch)

    result = await service.close_session(db_session, session_id, settings)
    assert result.attempt.total_effective_seconds == Decimal("20.000")
    assert result.attempt.coverage_seconds == 20


@pytest.mark.asyncio
async def test_segments_after_close_only_extend_coverage(
    db_session, settings, user_id, lesson_id,
) -> None:
    started = await service.start_watching(db_session, user_id, lesson_id, settings)
    session_id = started.session.session_id
    await service.record_progress(db_session, session_id, settings, segments=_segments((0, 10, 1)))
    await service.close_session(db_session, session_id, settings)

    # A late batch from a client that reconnected after the close
    await service.record_progress(db_session, session_id, settings, segments=_segments((10, 25, 1)))
    result = await service.close_session(db_session, session_id, settings)

    assert result.attempt.coverage_seconds == 25
    assert result.attempt.max_verified_second == 25
    assert result.attempt.total_effective_seconds == Decimal("10.000")


@pytest.mark.asyncio
async def test_two_sessions_fold_into_one_attempt(db_session, settings, user_id, lesson_id) -> None:
    first = await service.start_watching(db_session, user_id, lesson_id, settings)
    second = await service.start_watching(db_session, user_id, lesson_id, settings)
    await service.record_progress(
        db_session, first.session.session_id, settings, segments=_segments((0, 30, 1)),
    )
    await service.record_progress(
        db_session, second.session.session_id, settings, segments=_segments((20, 60, 1)),
    )

    await service.close_session(db_session, first.session.session_id, settings)
    await service.close_session(db_session, second.session.session_id, settings)
    result = await service.close_session(db_session, first.session.session_id, settings)

    attempt = result.attempt
    assert attempt.attempt_id == first.attempt.attempt_id
    assert attempt.total_effective_seconds == Decimal("70.000")
    assert attempt.coverage_seconds == 60
    assert attempt.max_verified_second == 60


@pytest.mark.asyncio
async def test_open_sibling_session_is_not_aggregated(
    db_session, settings, user_id, lesson_id,
) -> None:
    first = await service.start_watching(db_session, user_id, lesson_id, settings)
    second = await service.start_watching(db_session, user_id, lesson_id, settings)
    await service.record_progress(
        db_session, first.session.session_id, settings, segments=_segments((0, 10, 1)),
    )
    await service.record_progress(
        db_session, second.session.session_id, settings, segments=_segments((100, 200, 1)),
    )

    result = await service.close_session(db_session, first.session.session_id, settings)

    attempt = result.attempt
    assert attempt.total_effective_seconds == Decimal("10.000")
    assert attempt.coverage_seconds == 10
    assert attempt.max_verified_second == 10

    result = await service.close_session(db_session, second.session.session_id, settings)
    assert result.attempt.coverage_seconds == 110
    assert result.attempt.max_verified_second == 200


@pytest.mark.asyncio
async def test_close_session_without_attempt(db_session, settings, user_id, lesson_id) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    result = await service.close_session(db_session, session.session_id, settings)
    assert result.closed_now is True
    assert result.aggregated_now is False
    assert result.attempt is None


@pytest.mark.asyncio
async def test_close_unknown_session(db_session, settings) -> None:
    with pytest.raises(WatchSessionNotFoundError):
        await service.close_session(db_session, uuid4(), settings)


# ---------------------------------------------------------------------------
# Reaper
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_close_stale_sessions(db_session, settings, user_id, lesson_id) -> None:
    long_ago = datetime.now(timezone.utc) - timedelta(minutes=30)
    stale = await service.start_watching(db_session, user_id, lesson_id, settings)
    silent = await service.open_session(db_session, user_id, lesson_id)
    fresh = await service.open_session(db_session, user_id, lesson_id)
    await service.record_progress(
        db_session, stale.session.session_id, settings, segments=_segments((0, 15, 1)),
    )
    await _age_session(db_session, stale.session.session_id, last_heartbeat_at=long_ago)
    await _age_session(
        db_session, silent.session_id, last_heartbeat_at=None, started_at=long_ago,
    )

    closed = await service.close_stale_sessions(db_session, settings)

    assert set(closed) == {stale.session.session_id, silent.session_id}
    assert fresh.session_id not in closed
    assert await service.close_stale_sessions(db_session, settings) == []

    progress = await service.close_session(db_session, stale.session.session_id, settings)
    assert progress.attempt.total_effective_seconds == Decimal("15.000")


@pytest.mark.asyncio
async def test_close_stale_sessions_threshold_override(
    db_session, settings, user_id, lesson_id,
) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    await _age_session(
        db_session,
        session.session_id,
        last_heartbeat_at=datetime.now(timezone.utc) - timedelta(seconds=90),
    )
    assert await service.close_stale_sessions(db_session, settings) == []
    assert await service.close_stale_sessions(
        db_session, settings, stale_after_secs=60,
    ) == [session.session_id]


@pytest.mark.asyncio
async def test_close_stale_sessions_zero_threshold_closes_everything_open(
    db_session, settings, user_id, lesson_id,
) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    await _age_session(
        db_session,
        session.session_id,
        last_heartbeat_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
    assert await service.close_stale_sessions(
        db_session, settings, stale_after_secs=0,
    ) == [session.session_id]


# ---------------------------------------------------------------------------
# Bulk + analytics
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_progress_isolates_failures(db_session, settings, user_id, lesson_id) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    missing = uuid4()

    results = await service.record_bulk_progress(
        db_session,
        [
            (session.session_id, _segments((0, 10, 1)), [SeekData(10, 40)]),
            (missing, _segments((0, 10, 1)), []),
        ],
        settings,
    )

    assert results[0]["status"] == "success"
    assert results[0]["segments_recorded"] == 1
    assert results[0]["skips_detected"] == 1
    assert results[1]["session_id"] == missing
    assert results[1]["status"] == "error"
    assert str(missing) in results[1]["error"]


@pytest.mark.asyncio
async def test_skip_analytics(db_session, settings, user_id, lesson_id) -> None:
    session = await service.open_session(db_session, user_id, lesson_id)
    await service.record_progress(
        db_session,
        session.session_id,
        settings,
        seeks=[SeekData(10, 50), SeekData(60, 62), SeekData(70, 20), SeekData(100, 200)],
    )

    analytics = await service.get_skip_analytics(db_session, session.session_id)

    assert analytics["total_skips"] == 2
    assert sorted(
        (s["from_second"], s["to_second"], s["distance"]) for s in analytics["skipped_segments"]
    ) == [(10, 50, 40), (100, 200, 100)]


@pytest.mark.asyncio
async def test_skip_analytics_unknown_session(db_session) -> None:
    with pytest.raises(WatchSessionNotFoundError):
        await service.get_skip_analytics(db_session, uuid4())
