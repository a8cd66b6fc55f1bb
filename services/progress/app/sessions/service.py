"""Watch session service: open, heartbeat, record, close, reap.

Pure business logic, no FastAPI imports.
Redis is passed as ``Redis | None`` and all Redis ops are best-effort.

Closing a session is the only thing that moves data into the attempt
aggregates. A session that is never closed contributes nothing until the
stale-session reaper closes it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from redis.asyncio import Redis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.attempts import service as attempt_service
from app.config import Settings
from app.exceptions import WatchSessionNotFoundError
from app.models.lesson_attempt import LessonAttempt
from app.models.watch_session import WatchSession
from app.progress.aggregator import ProgressSummary, summarize_segments
from app.sessions import cache as session_cache
from app.sessions.seeks import SeekData, count_skips, list_skips, record_seeks
from app.sessions.segments import SegmentData, list_session_segments, record_segments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordResult:
    session_id: UUID
    segments_recorded: int = 0
    duplicates_ignored: int = 0
    seeks_recorded: int = 0
    skips_detected: int = 0


@dataclass(frozen=True)
class CloseResult:
    session: WatchSession
    # False when the session had already been closed before this call
    closed_now: bool
    # True when this call added the session's effective time and skips
    aggregated_now: bool
    attempt: LessonAttempt | None = None


@dataclass(frozen=True)
class StartResult:
    session: WatchSession
    attempt: LessonAttempt
    attempt_created: bool
    credited_session_ids: list[UUID] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Open / heartbeat
# ---------------------------------------------------------------------------


async def open_session(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    attempt_id: UUID | None = None,
    client_info: dict | None = None,
) -> WatchSession:
    """Create a watch session. Callers resolve the attempt first when they have one."""
    now = datetime.now(timezone.utc)
    session = WatchSession(
        user_id=user_id,
        lesson_id=lesson_id,
        lesson_attempt_id=attempt_id,
        client_info=client_info,
        started_at=now,
        last_heartbeat_at=now,
    )
    db.add(session)
    await db.flush()
    await db.refresh(session)
    logger.info(
        "Opened watch session %s for user %s lesson %s attempt %s",
        session.session_id, user_id, lesson_id, attempt_id,
    )
    return session


async def start_watching(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    settings: Settings,
    *,
    is_assigned: bool = False,
    client_info: dict | None = None,
    lesson_duration_secs: int | None = None,
) -> StartResult:
    """Resolve the attempt, credit earlier unassigned viewing if it just became
    assigned, then open the session against it."""
    resolution = await attempt_service.get_or_create_attempt(
        db, user_id, lesson_id, is_assigned,
    )
    attempt = resolution.attempt

    credited: list[UUID] = []
    if resolution.became_assigned and settings.auto_credit_unassigned:
        credit = await attempt_service.credit_unassigned_history(
            db,
            user_id,
            lesson_id,
            attempt.attempt_id,
            window_days=settings.credit_window_days,
            duration_cap_seconds=lesson_duration_secs,
            max_retries=settings.aggregation_max_retries,
        )
        attempt = credit.attempt
        credited = credit.credited_session_ids

    session = await open_session(
        db, user_id, lesson_id, attempt.attempt_id, client_info,
    )
    return StartResult(session, attempt, resolution.created, credited)


async def get_session(db: AsyncSession, session_id: UUID) -> WatchSession:
    session = await db.get(WatchSession, session_id)
    if session is None:
        raise WatchSessionNotFoundError(str(session_id))
    return session


async def heartbeat(
    db: AsyncSession,
    session_id: UUID,
    *,
    redis: Redis | None = None,
    ttl_secs: int = 300,
) -> WatchSession:
    """Bump ``last_heartbeat_at``. Raises before any other write if the session is unknown."""
    result = await db.execute(
        update(WatchSession)
        .where(WatchSession.session_id == session_id)
        .values(last_heartbeat_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise WatchSessionNotFoundError(str(session_id))

    session = await get_session(db, session_id)
    await db.refresh(session)

    if redis is not None:
        try:
            await session_cache.store_heartbeat(
                session_id, session.user_id, session.lesson_id, ttl_secs, redis,
            )
        except Exception:
            logger.warning("Heartbeat cache write failed for session %s", session_id, exc_info=True)
    return session


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


async def record_progress(
    db: AsyncSession,
    session_id: UUID,
    settings: Settings,
    *,
    segments: Sequence[SegmentData] = (),
    seeks: Sequence[SeekData] = (),
    redis: Redis | None = None,
) -> RecordResult:
    """Heartbeat, then store segments and seeks. Safe to retry for segments."""
    await heartbeat(db, session_id, redis=redis, ttl_secs=settings.stale_session_secs)

    inserted, ignored = await record_segments(db, session_id, segments)
    seeks_recorded, skips = await record_seeks(
        db,
        session_id,
        seeks,
        threshold=settings.skip_threshold_seconds,
        dedup=settings.seek_dedup_enabled,
    )
    return RecordResult(
        session_id=session_id,
        segments_recorded=inserted,
        duplicates_ignored=ignored,
        seeks_recorded=seeks_recorded,
        skips_detected=skips,
    )


async def record_bulk_progress(
    db: AsyncSession,
    batches: Iterable[tuple[UUID, Sequence[SegmentData], Sequence[SeekData]]],
    settings: Settings,
    *,
    redis: Redis | None = None,
) -> list[dict]:
    """Apply several sessions' batches; one failing session does not sink the rest."""
    results: list[dict] = []
    for session_id, segments, seeks in batches:
        try:
            async with db.begin_nested():
                recorded = await record_progress(
                    db, session_id, settings, segments=segments, seeks=seeks, redis=redis,
                )
        except WatchSessionNotFoundError as exc:
            results.append({"session_id": session_id, "status": "error", "error": str(exc)})
            continue
        results.append({
            "session_id": session_id,
            "status": "success",
            "error": None,
            "segments_recorded": recorded.segments_recorded,
            "duplicates_ignored": recorded.duplicates_ignored,
            "seeks_recorded": recorded.seeks_recorded,
            "skips_detected": recorded.skips_detected,
        })
    return results


# ---------------------------------------------------------------------------
# Close / aggregation
# ---------------------------------------------------------------------------


async def _claim_aggregation(db: AsyncSession, session_id: UUID) -> bool:
    """Compare-and-set ``aggregated_at``; only one caller ever wins per session."""
    result = await db.execute(
        update(WatchSession)
        .where(WatchSession.session_id == session_id, WatchSession.aggregated_at.is_(None))
        .values(aggregated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def aggregate_session(
    db: AsyncSession, session: WatchSession, settings: Settings,
) -> tuple[LessonAttempt | None, bool]:
    """Fold a session into its attempt. Returns ``(attempt, added_increments)``."""
    if session.lesson_attempt_id is None:
        return None, False

    summary = summarize_segments(await list_session_segments(db, session.session_id))
    first_time = await _claim_aggregation(db, session.session_id)
    if first_time:
        skip_delta = await count_skips(db, session.session_id)
    else:
        # Re-run: keep the recompute, drop the additive parts
        summary = ProgressSummary(max_verified_second=summary.max_verified_second)
        skip_delta = 0

    attempt = await attempt_service.apply_progress(
        db,
        session.lesson_attempt_id,
        summary,
        skip_delta,
        max_retries=settings.aggregation_max_retries,
    )
    return attempt, first_time


async def close_session(
    db: AsyncSession,
    session_id: UUID,
    settings: Settings,
    *,
    redis: Redis | None = None,
) -> CloseResult:
    """Close the session once and aggregate it. Repeated calls never double-count."""
    result = await db.execute(
        update(WatchSession)
        .where(WatchSession.session_id == session_id, WatchSession.closed_at.is_(None))
        .values(closed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    closed_now = result.rowcount == 1

    session = await get_session(db, session_id)
    await db.refresh(session)

    attempt, aggregated_now = await aggregate_session(db, session, settings)
    await db.refresh(session)

    if redis is not None:
        try:
            await session_cache.clear_heartbeat(session_id, redis)
        except Exception:
            logger.warning("Heartbeat cache clear failed for session %s", session_id, exc_info=True)

    if closed_now:
        logger.info(
            "Closed watch session %s (attempt %s, aggregated=%s)",
            session_id, session.lesson_attempt_id, aggregated_now,
        )
    return CloseResult(session, closed_now, aggregated_now, attempt)


async def close_stale_sessions(
    db: AsyncSession,
    settings: Settings,
    *,
    stale_after_secs: int | None = None,
    redis: Redis | None = None,
) -> list[UUID]:
    """Force-close open sessions whose last sign of life is older than the threshold."""
    threshold = settings.stale_session_secs if stale_after_secs is None else stale_after_secs
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=threshold)
    stmt = (
        select(WatchSession.session_id)
        .where(
            WatchSession.closed_at.is_(None),
            func.coalesce(WatchSession.last_heartbeat_at, WatchSession.started_at) < cutoff,
        )
        .order_by(WatchSession.started_at)
    )
    stale_ids = list((await db.execute(stmt)).scalars().all())

    closed: list[UUID] = []
    for session_id in stale_ids:
        outcome = await close_session(db, session_id, settings, redis=redis)
        if outcome.closed_now:
            closed.append(session_id)

    if closed:
        logger.info("Reaped %s stale watch session(s) older than %ss", len(closed), threshold)
    return closed


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


async def get_skip_analytics(db: AsyncSession, session_id: UUID) -> dict:
    await get_session(db, session_id)
    skips = await list_skips(db, session_id)
    return {
        "session_id": session_id,
        "total_skips": len(skips),
        "skipped_segments": [
            {
                "from_second": skip.from_second,
                "to_second": skip.to_second,
                "distance": skip.skip_distance,
                "timestamp": skip.created_at,
            }
            for skip in skips
        ],
    }
