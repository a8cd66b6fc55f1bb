"""Session-level progress aggregation over watch segments.

Effective time and coverage answer different questions and are computed
differently on purpose:

- effective time is time spent watching: every reported segment counts,
  divided by its playback speed, even when it re-covers seen positions;
- coverage is timeline positions seen: overlapping segments collapse.

Effective time can therefore exceed the lesson duration.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Protocol

from app.progress.intervals import covered_length

EFFECTIVE_SECONDS_QUANTUM = Decimal("0.001")


class SegmentLike(Protocol):
    start_second: int
    end_second: int
    speed: Decimal


@dataclass(frozen=True)
class ProgressSummary:
    total_effective_seconds: Decimal = Decimal("0.000")
    coverage_seconds: int = 0
    max_verified_second: int = 0
    # Raw (not speed-adjusted) seconds per distinct speed, keyed "1", "1.5", ...
    speed_breakdown: dict[str, int] = field(default_factory=dict)
    merged_intervals: list[tuple[int, int]] = field(default_factory=list)


def speed_key(speed: Decimal | float | str) -> str:
    """Normalized string form of a speed: ``Decimal("1.50")`` -> ``"1.5"``."""
    value = Decimal(str(speed)).normalize()
    return format(value, "f")


def to_decimal_seconds(value: Fraction) -> Decimal:
    return (Decimal(value.numerator) / Decimal(value.denominator)).quantize(
        EFFECTIVE_SECONDS_QUANTUM
    )


def effective_seconds(segments: Iterable[SegmentLike]) -> Fraction:
    """Exact sum of ``(end - start) / speed``.

    Rows with a non-positive speed only get here if the boundary let them
    through; they add no effective time.
    """
    total = Fraction(0)
    for segment in segments:
        speed = Fraction(Decimal(str(segment.speed)))
        if speed <= 0:
            continue
        total += Fraction(segment.end_second - segment.start_second) / speed
    return total


def summarize_segments(segments: Iterable[SegmentLike]) -> ProgressSummary:
    """Compute the progress summary for one session's segments.

    Arrival order does not matter; never raises on empty, overlapping or
    out-of-order input.
    """
    ordered = sorted(
        segments, key=lambda s: (s.start_second, s.end_second, Decimal(str(s.speed)))
    )
    if not ordered:
        return ProgressSummary()

    breakdown: dict[str, int] = {}
    for segment in ordered:
        key = speed_key(segment.speed)
        breakdown[key] = breakdown.get(key, 0) + (segment.end_second - segment.start_second)

    merged, coverage = covered_length((s.start_second, s.end_second) for s in ordered)
    return ProgressSummary(
        total_effective_seconds=to_decimal_seconds(effective_seconds(ordered)),
        coverage_seconds=int(coverage),
        max_verified_second=max(s.end_second for s in ordered),
        speed_breakdown=breakdown,
        merged_intervals=merged,
    )
