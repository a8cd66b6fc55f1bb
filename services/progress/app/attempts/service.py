"""Lesson attempt service: lifecycle, aggregates, crediting, progress.

Pure business logic, no FastAPI imports.

Aggregate columns on ``lesson_attempts`` are the only write hot spot:
several sessions of one attempt may close at the same time. Every write
goes through ``_write_aggregates``, which locks the row, recomputes
coverage and max verified second from the source segments and applies
additive deltas with a versioned UPDATE, retrying a bounded number of
times when the version moved underneath it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, NamedTuple
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    AggregationConflictError,
    CreditTargetMismatchError,
    LessonAttemptNotFoundError,
    ProgressNotFoundError,
)
from app.models.coverage_interval import LessonCoverageInterval
from app.models.enums import AttemptStatus
from app.models.lesson_attempt import LessonAttempt
from app.models.watch_segment import WatchSegment
from app.models.watch_session import WatchSession
from app.progress.aggregator import (
    EFFECTIVE_SECONDS_QUANTUM,
    ProgressSummary,
    effective_seconds,
    summarize_segments,
    to_decimal_seconds,
)
from app.progress.intervals import clip_intervals, merge_intervals, total_length

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

EFFECTIVE_TIME_NOTE = (
    "Effective time counts every watched segment, re-watches included, "
    "adjusted for playback speed; it can exceed the lesson duration. "
    "Coverage counts each timeline second once."
)


class AttemptResolution(NamedTuple):
    attempt: LessonAttempt
    created: bool
    # True when the in-progress attempt switched from unassigned to assigned
    became_assigned: bool


@dataclass(frozen=True)
class CreditResult:
    attempt: LessonAttempt
    credited_session_ids: list[UUID]
    credited_effective_seconds: Decimal


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


async def get_attempt(db: AsyncSession, attempt_id: UUID) -> LessonAttempt:
    attempt = await db.get(LessonAttempt, attempt_id)
    if attempt is None:
        raise LessonAttemptNotFoundError(str(attempt_id))
    return attempt


async def _get_in_progress_attempt(
    db: AsyncSession, user_id: UUID, lesson_id: UUID,
) -> LessonAttempt | None:
    stmt = (
        select(LessonAttempt)
        .where(
            LessonAttempt.user_id == user_id,
            LessonAttempt.lesson_id == lesson_id,
            LessonAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .order_by(LessonAttempt.attempt_no.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def attempt_segments(db: AsyncSession, attempt_id: UUID) -> list[WatchSegment]:
    """Every segment of closed sessions linked to, or credited into, the attempt.

    Open sessions contribute nothing until they are closed.
    """
    stmt = (
        select(WatchSegment)
        .join(WatchSession, WatchSegment.session_id == WatchSession.session_id)
        .where(
            or_(
                and_(
                    WatchSession.lesson_attempt_id == attempt_id,
                    WatchSession.closed_at.is_not(None),
                ),
                WatchSession.credited_attempt_id == attempt_id,
            )
        )
        .order_by(WatchSegment.start_second)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _reuse_attempt(
    db: AsyncSession, attempt: LessonAttempt, is_assigned: bool,
) -> AttemptResolution:
    # The caller's assignment wins; flipping to assigned may trigger crediting
    became_assigned = is_assigned and not attempt.is_assigned
    if attempt.is_assigned != is_assigned:
        attempt.is_assigned = is_assigned
        await db.flush()
    return AttemptResolution(attempt, created=False, became_assigned=became_assigned)


async def get_or_create_attempt(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    is_assigned: bool = False,
) -> AttemptResolution:
    """Return the in-progress attempt, or start attempt ``max(attempt_no) + 1``.

    Re-takes fall out of this: once the current attempt is completed the
    next call opens a new numbered attempt and older rows stay untouched.
    """
    existing = await _get_in_progress_attempt(db, user_id, lesson_id)
    if existing is not None:
        return await _reuse_attempt(db, existing, is_assigned)

    max_stmt = select(func.coalesce(func.max(LessonAttempt.attempt_no), 0)).where(
        LessonAttempt.user_id == user_id,
        LessonAttempt.lesson_id == lesson_id,
    )
    next_no = ((await db.execute(max_stmt)).scalar() or 0) + 1

    attempt = LessonAttempt(
        user_id=user_id,
        lesson_id=lesson_id,
        attempt_no=next_no,
        status=AttemptStatus.IN_PROGRESS,
        is_assigned=is_assigned,
        flags={},
    )
    try:
        async with db.begin_nested():
            db.add(attempt)
    except IntegrityError:
        # A concurrent request opened an attempt first
        winner = await _get_in_progress_attempt(db, user_id, lesson_id)
        if winner is None:
            raise
        logger.info(
            "Attempt %s for user %s lesson %s created concurrently; reusing it",
            next_no, user_id, lesson_id,
        )
        return await _reuse_attempt(db, winner, is_assigned)

    await db.refresh(attempt)
    logger.info(
        "Created lesson attempt %s (no. %s) for user %s lesson %s assigned=%s",
        attempt.attempt_id, next_no, user_id, lesson_id, is_assigned,
    )
    return AttemptResolution(attempt, created=True, became_assigned=is_assigned)


async def mark_complete(db: AsyncSession, attempt_id: UUID) -> LessonAttempt:
    """Complete the attempt. Closed sessions stay writable; new sessions get a new attempt."""
    attempt = await get_attempt(db, attempt_id)
    if attempt.status != AttemptStatus.COMPLETED:
        attempt.status = AttemptStatus.COMPLETED
        attempt.completed_at = datetime.now(timezone.utc)
        await db.flush()
        await db.refresh(attempt)
    return attempt


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


async def _lock_attempt(db: AsyncSession, attempt_id: UUID) -> LessonAttempt:
    stmt = (
        select(LessonAttempt)
        .where(LessonAttempt.attempt_id == attempt_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    attempt = result.scalar_one_or_none()
    if attempt is None:
        raise LessonAttemptNotFoundError(str(attempt_id))
    return attempt


async def _replace_coverage_intervals(
    db: AsyncSession, attempt_id: UUID, merged: list[tuple[int, int]],
) -> None:
    await db.execute(
        delete(LessonCoverageInterval).where(
            LessonCoverageInterval.lesson_attempt_id == attempt_id
        )
    )
    db.add_all([
        LessonCoverageInterval(
            lesson_attempt_id=attempt_id, start_second=start, end_second=end,
        )
        for start, end in merged
    ])
    await db.flush()


async def _write_aggregates(
    db: AsyncSession,
    attempt_id: UUID,
    *,
    effective_delta: Decimal = Decimal("0"),
    skip_delta: int = 0,
    max_verified_floor: int = 0,
    extra: Callable[[LessonAttempt], dict[str, Any]] | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> LessonAttempt:
    for round_no in range(1, max_retries + 1):
        attempt = await _lock_attempt(db, attempt_id)
        changes = extra(attempt) if extra is not None else {}
        cap = changes.get("lesson_duration_secs", attempt.lesson_duration_secs)

        segments = await attempt_segments(db, attempt_id)
        merged = merge_intervals((s.start_second, s.end_second) for s in segments)
        max_verified = max(
            attempt.max_verified_second,
            max_verified_floor,
            max((s.end_second for s in segments), default=0),
        )
        if cap is not None:
            merged = clip_intervals(merged, cap)
            max_verified = min(max_verified, cap)

        values = {
            "max_verified_second": max_verified,
            "coverage_seconds": int(total_length(merged)),
            "total_effective_seconds": (
                Decimal(attempt.total_effective_seconds) + effective_delta
            ).quantize(EFFECTIVE_SECONDS_QUANTUM),
            "skip_event_count": attempt.skip_event_count + skip_delta,
            "version": attempt.version + 1,
            "updated_at": datetime.now(timezone.utc),
            **changes,
        }
        result = await db.execute(
            update(LessonAttempt)
            .where(
                LessonAttempt.attempt_id == attempt_id,
                LessonAttempt.version == attempt.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await _replace_coverage_intervals(db, attempt_id, merged)
            await db.refresh(attempt)
            return attempt

        logger.warning(
            "Lesson attempt %s changed during aggregation (round %s/%s); retrying",
            attempt_id, round_no, max_retries,
        )

    raise AggregationConflictError(str(attempt_id), max_retries)


async def apply_progress(
    db: AsyncSession,
    attempt_id: UUID,
    summary: ProgressSummary,
    skip_delta: int,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> LessonAttempt:
    """Fold one session's summary into its attempt.

    ``summary.total_effective_seconds`` and ``skip_delta`` are added as given,
    so callers pass them only once per session (see the session close
    guard). Coverage and max verified second are recomputed from every
    segment under the attempt and are safe to re-run.
    """
    return await _write_aggregates(
        db,
        attempt_id,
        effective_delta=summary.total_effective_seconds,
        skip_delta=skip_delta,
        max_verified_floor=summary.max_verified_second,
        max_retries=max_retries,
    )


# ---------------------------------------------------------------------------
# Crediting unassigned viewing
# ---------------------------------------------------------------------------


async def _creditable_sessions(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    target_attempt_id: UUID,
    since: datetime,
) -> list[WatchSession]:
    stmt = (
        select(WatchSession)
        .outerjoin(LessonAttempt, WatchSession.lesson_attempt_id == LessonAttempt.attempt_id)
        .where(
            WatchSession.user_id == user_id,
            WatchSession.lesson_id == lesson_id,
            WatchSession.closed_at.is_not(None),
            WatchSession.started_at >= since,
            WatchSession.credited_attempt_id.is_(None),
            or_(
                WatchSession.lesson_attempt_id.is_(None),
                and_(
                    LessonAttempt.is_assigned.is_(False),
                    WatchSession.lesson_attempt_id != target_attempt_id,
                ),
            ),
        )
        .order_by(WatchSession.started_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def credit_unassigned_history(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    new_attempt_id: UUID,
    *,
    window_days: int,
    duration_cap_seconds: int | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> CreditResult:
    """Fold recent unassigned viewing of a lesson into an assigned attempt.

    Closed sessions whose attempt is unassigned (or that never had one),
    started within ``window_days`` and not credited before are marked with
    ``credited_attempt_id``. Their effective time is added to the target and
    coverage is recomputed with them included, clipped to
    ``duration_cap_seconds`` when the lesson length is known. A session is
    credited at most once.
    """
    target = await get_attempt(db, new_attempt_id)
    if target.user_id != user_id or target.lesson_id != lesson_id:
        raise CreditTargetMismatchError(str(new_attempt_id))

    now = datetime.now(timezone.utc)
    candidates = await _creditable_sessions(
        db, user_id, lesson_id, new_attempt_id, now - timedelta(days=window_days),
    )

    claimed: list[UUID] = []
    for session in candidates:
        result = await db.execute(
            update(WatchSession)
            .where(
                WatchSession.session_id == session.session_id,
                WatchSession.credited_attempt_id.is_(None),
            )
            .values(credited_attempt_id=new_attempt_id)
        )
        if result.rowcount == 1:
            claimed.append(session.session_id)

    if not claimed:
        return CreditResult(target, [], Decimal("0.000"))

    seg_stmt = select(WatchSegment).where(WatchSegment.session_id.in_(claimed))
    credited_segments = list((await db.execute(seg_stmt)).scalars().all())
    credited_effective = to_decimal_seconds(effective_seconds(credited_segments))

    audit = {
        "session_ids": [str(sid) for sid in claimed],
        "effective_seconds": str(credited_effective),
        "window_days": window_days,
        "duration_cap_seconds": duration_cap_seconds,
        "at": now.isoformat(),
    }

    def _record_credit(locked: LessonAttempt) -> dict[str, Any]:
        flags = dict(locked.flags or {})
        flags["credits"] = [*flags.get("credits", []), audit]
        changes: dict[str, Any] = {"flags": flags}
        if duration_cap_seconds is not None:
            changes["lesson_duration_secs"] = duration_cap_seconds
        return changes

    attempt = await _write_aggregates(
        db,
        new_attempt_id,
        effective_delta=credited_effective,
        extra=_record_credit,
        max_retries=max_retries,
    )
    logger.info(
        "Credited %s unassigned session(s) (%ss effective) into attempt %s",
        len(claimed), credited_effective, new_attempt_id,
    )
    return CreditResult(attempt, claimed, credited_effective)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


async def get_lesson_progress(
    db: AsyncSession,
    user_id: UUID,
    lesson_id: UUID,
    *,
    recent_limit: int = 20,
) -> dict:
    """Latest attempt, its recent sessions and computed progress."""
    attempt_stmt = (
        select(LessonAttempt)
        .where(LessonAttempt.user_id == user_id, LessonAttempt.lesson_id == lesson_id)
        .order_by(LessonAttempt.attempt_no.desc())
        .limit(1)
    )
    attempt = (await db.execute(attempt_stmt)).scalar_one_or_none()
    if attempt is None:
        raise ProgressNotFoundError(str(user_id), str(lesson_id))

    session_stmt = (
        select(WatchSession)
        .where(
            or_(
                WatchSession.lesson_attempt_id == attempt.attempt_id,
                WatchSession.credited_attempt_id == attempt.attempt_id,
            )
        )
        .order_by(WatchSession.started_at.desc())
        .limit(recent_limit)
    )
    sessions = list((await db.execute(session_stmt)).scalars().all())

    interval_stmt = (
        select(LessonCoverageInterval)
        .where(LessonCoverageInterval.lesson_attempt_id == attempt.attempt_id)
        .order_by(LessonCoverageInterval.start_second)
    )
    intervals = list((await db.execute(interval_stmt)).scalars().all())

    breakdown = summarize_segments(await attempt_segments(db, attempt.attempt_id)).speed_breakdown

    coverage_pct = None
    if attempt.lesson_duration_secs:
        coverage_pct = (
            Decimal(attempt.coverage_seconds) / Decimal(attempt.lesson_duration_secs) * 100
        ).quantize(Decimal("0.01"))

    return {
        "attempt": attempt,
        "sessions": sessions,
        "progress": {
            "max_verified_second": attempt.max_verified_second,
            "total_effective_seconds": attempt.total_effective_seconds,
            "coverage_seconds": attempt.coverage_seconds,
            "skip_event_count": attempt.skip_event_count,
            "is_assigned": attempt.is_assigned,
            "coverage_pct": coverage_pct,
            "speed_breakdown": breakdown,
            "effective_time_note": EFFECTIVE_TIME_NOTE,
        },
        "coverage_intervals": [
            {"start_second": iv.start_second, "end_second": iv.end_second}
            for iv in intervals
        ],
    }


async def get_unassigned_history(db: AsyncSession, user_id: UUID) -> list[LessonAttempt]:
    stmt = (
        select(LessonAttempt)
        .where(LessonAttempt.user_id == user_id, LessonAttempt.is_assigned.is_(False))
        .order_by(LessonAttempt.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
