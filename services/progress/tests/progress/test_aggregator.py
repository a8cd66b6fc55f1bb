from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction

from app.progress.aggregator import (
    ProgressSummary,
    effective_seconds,
    speed_key,
    summarize_segments,
    to_decimal_seconds,
)


@dataclass
class Seg:
    start_second: int
    end_second: int
    speed: Decimal = Decimal("1.0")


def test_linear_viewing_with_a_speed_change() -> None:
    segments = [
        Seg(0, 30),
        Seg(30, 60, Decimal("1.5")),
        Seg(60, 90, Decimal("1.5")),
    ]
    summary = summarize_segments(segments)

    # 30 + 30/1.5 + 30/1.5 = 70
    assert summary.total_effective_seconds == Decimal("70.000")
    assert summary.coverage_seconds == 90
    assert summary.max_verified_second == 90
    assert summary.speed_breakdown == {"1": 30, "1.5": 60}


def test_rewatch_counts_effective_time_but_not_coverage() -> None:
    summary = summarize_segments([Seg(0, 60), Seg(30, 60), Seg(0, 30)])

    assert summary.total_effective_seconds == Decimal("120.000")
    assert summary.coverage_seconds == 60
    assert summary.max_verified_second == 60
    assert summary.merged_intervals == [(0, 60)]


def test_effective_time_is_exact_until_quantized() -> None:
    # 10/1.5 + 10/1.5 + 10/0.75 = 6.666.. + 6.666.. + 13.333.. = 26.666..
    segments = [
        Seg(0, 10, Decimal("1.5")),
        Seg(10, 20, Decimal("1.5")),
        Seg(20, 30, Decimal("0.75")),
    ]
    assert effective_seconds(segments) == Fraction(80, 3)
    assert summarize_segments(segments).total_effective_seconds == Decimal("26.667")


def test_empty_input_yields_zero_summary() -> None:
    summary = summarize_segments([])
    assert summary == ProgressSummary()
    assert summary.total_effective_seconds == Decimal("0.000")
    assert summary.coverage_seconds == 0
    assert summary.max_verified_second == 0


def test_order_independence() -> None:
    segments = [Seg(40, 50), Seg(0, 10, Decimal("2")), Seg(5, 20), Seg(45, 60)]
    forward = summarize_segments(segments)
    backward = summarize_segments(list(reversed(segments)))
    assert forward == backward


def test_gaps_are_not_covered() -> None:
    summary = summarize_segments([Seg(0, 10), Seg(50, 60)])
    assert summary.coverage_seconds == 20
    assert summary.max_verified_second == 60
    assert summary.coverage_seconds <= summary.max_verified_second


def test_non_positive_speed_adds_no_effective_time() -> None:
    summary = summarize_segments([Seg(0, 10, Decimal("0")), Seg(10, 20)])
    assert summary.total_effective_seconds == Decimal("10.000")
    assert summary.coverage_seconds == 20


def test_speed_key_normalizes() -> None:
    assert speed_key(Decimal("1.00")) == "1"
    assert speed_key(Decimal("1.50")) == "1.5"
    assert speed_key("0.75") == "0.75"
    assert speed_key(2) == "2"


def test_to_decimal_seconds_rounds_to_millis() -> None:
    assert to_decimal_seconds(Fraction(110, 3)) == Decimal("36.667")


def test_mixed_speeds_with_a_gap() -> None:
    summary = summarize_segments([
        Seg(0, 10, Decimal("1.0")),
        Seg(10, 20, Decimal("1.5")),
        Seg(30, 40, Decimal("0.5")),
    ])
    # 10 + 6.667 + 20
    assert summary.total_effective_seconds == Decimal("36.667")
    assert summary.coverage_seconds == 30
    assert summary.max_verified_second == 40


def test_overlapping_segments_cover_continuously() -> None:
    summary = summarize_segments([
        Seg(0, 15),
        Seg(10, 25),
        Seg(20, 30, Decimal("2.0")),
    ])
    assert summary.coverage_seconds == 30
    assert summary.max_verified_second == 30
    assert summary.merged_intervals == [(0, 30)]


def test_thousand_spaced_segments() -> None:
    segments = [Seg(i * 10, i * 10 + 5) for i in range(1000)]
    summary = summarize_segments(segments)
    assert summary.total_effective_seconds == Decimal("5000.000")
    assert summary.coverage_seconds == 5000
    assert summary.max_verified_second == 9995
