"""Unit tests for duration <-> credit conversion."""

from decimal import Decimal

import pytest

from src.ic_credits.domain.converter import (
    available_credits,
    credits_for_duration,
    credits_from_elapsed_seconds,
    format_credits_as_time,
    format_elapsed,
    max_duration_minutes,
    suggest_durations,
    validate_for_duration,
)


class TestCreditsForDuration:
    def test_ten_credits_per_minute(self) -> None:
        assert credits_for_duration(5) == Decimal("50.00")
        assert credits_for_duration(8) == Decimal("80.00")

    def test_one_minute(self) -> None:
        assert credits_for_duration(1) == Decimal("10.00")


class TestCreditsFromElapsedSeconds:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0.00"),
            (1, "2.50"),
            (15, "2.50"),
            (16, "5.00"),
            (125, "22.50"),
            (150, "25.00"),
            (305, "52.50"),
            (300, "50.00"),
        ],
    )
    def test_rounds_up_to_fifteen_seconds(self, seconds: int, expected: str) -> None:
        assert credits_from_elapsed_seconds(seconds) == Decimal(expected)

    def test_negative_raises(self) -> None:
        with pytest.raises(ValueError):
            credits_from_elapsed_seconds(-1)


class TestMaxDuration:
    def test_whole_minutes_only(self) -> None:
        assert max_duration_minutes(Decimal("35")) == 3
        assert max_duration_minutes(Decimal("85")) == 8
        assert max_duration_minutes(Decimal("9.99")) == 0

    def test_non_positive_is_zero(self) -> None:
        assert max_duration_minutes(Decimal("0")) == 0
        assert max_duration_minutes(Decimal("-10")) == 0


class TestSuggestDurations:
    def test_standard_durations_that_fit(self) -> None:
        assert suggest_durations(Decimal("100")) == [3, 5, 8, 10]
        assert suggest_durations(Decimal("60")) == [3, 5]
        assert suggest_durations(Decimal("35")) == [3]

    def test_falls_back_to_max_whole_minute(self) -> None:
        assert suggest_durations(Decimal("25")) == [2]

    def test_nothing_below_one_minute(self) -> None:
        assert suggest_durations(Decimal("5")) == []
        assert suggest_durations(Decimal("0")) == []


class TestValidateForDuration:
    def test_enough_credits(self) -> None:
        check = validate_for_duration(Decimal("50"), 5)
        assert check.valid is True
        assert check.credits_needed == Decimal("50.00")
        assert check.suggested_durations is None
        assert check.max_duration is None

    def test_short_credits_suggests_alternatives(self) -> None:
        check = validate_for_duration(Decimal("35"), 5)
        assert check.valid is False
        assert check.credits_needed == Decimal("50.00")
        assert check.credits_available == Decimal("35.00")
        assert check.suggested_durations == [3]
        assert check.max_duration == 3


def test_available_credits_never_negative() -> None:
    assert available_credits(Decimal("100"), Decimal("30")) == Decimal("70.00")
    assert available_credits(Decimal("10"), Decimal("30")) == Decimal("0.00")


class TestFormatting:
    def test_credits_as_time(self) -> None:
        assert format_credits_as_time(Decimal("50")) == "5 minutes"
        assert format_credits_as_time(Decimal("10")) == "1 minute"
        assert format_credits_as_time(Decimal("85")) == "8.5 minutes"

    def test_elapsed(self) -> None:
        assert format_elapsed(125) == "02:05"
        assert format_elapsed(0) == "00:00"
        assert format_elapsed(600) == "10:00"
