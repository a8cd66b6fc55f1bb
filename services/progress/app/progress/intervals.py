"""Interval merging for watch coverage.

Intervals are half-open ``[start, end)`` pairs on the lesson timeline.
Touching intervals merge: ``[0, 10)`` and ``[10, 20)`` become ``[0, 20)``,
so a sub-second gap between two reports is never counted as a gap.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

N = TypeVar("N")


def merge_intervals(intervals: Iterable[tuple[N, N]]) -> list[tuple[N, N]]:
    """Return the minimal sorted list of disjoint intervals covering the input.

    Degenerate intervals (``start == end``) take part in merging but add no
    length. The input is not mutated. O(n log n).
    """
    ordered = sorted(intervals, key=lambda iv: iv[0])
    if not ordered:
        return []

    merged: list[tuple[N, N]] = []
    run_start, run_end = ordered[0]
    for start, end in ordered[1:]:
        if start <= run_end:
            if end > run_end:
                run_end = end
        else:
            merged.append((run_start, run_end))
            run_start, run_end = start, end
    merged.append((run_start, run_end))
    return merged


def total_length(merged: Iterable[tuple[N, N]]) -> N | int:
    return sum((end - start for start, end in merged), 0)


def covered_length(intervals: Iterable[tuple[N, N]]) -> tuple[list[tuple[N, N]], N | int]:
    """Merge ``intervals`` and return ``(merged, total covered length)``."""
    merged = merge_intervals(intervals)
    return merged, total_length(merged)


def clip_intervals(merged: Iterable[tuple[N, N]], upper: N | int) -> list[tuple[N, N]]:
    """Cut sorted disjoint intervals at ``upper``; intervals past it are dropped."""
    clipped: list[tuple[N, N]] = []
    for start, end in merged:
        if start >= upper:
            break
        clipped.append((start, min(end, upper)))
    return clipped
