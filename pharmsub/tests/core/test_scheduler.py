"""Tests for fulfillment schedule generation and calendar month arithmetic."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from pharmsub.core.errors import ValidationError
from pharmsub.core.scheduler import add_months, generate_schedule


# ============================================================================
# add_months tests
# ============================================================================


def test_add_months_keeps_day_of_month() -> None:
    """Days that exist in the target month are kept as-is."""
    start = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)
    assert add_months(start, 1) == datetime(2024, 4, 15, 10, 30, tzinfo=UTC)
    assert add_months(start, 5) == datetime(2024, 8, 15, 10, 30, tzinfo=UTC)


def test_add_months_zero_is_identity() -> None:
    start = datetime(2024, 1, 31, 9, 0, tzinfo=UTC)
    assert add_months(start, 0) == start


def test_add_months_crosses_year_boundary() -> None:
    start = datetime(2024, 11, 20, tzinfo=UTC)
    assert add_months(start, 3) == datetime(2025, 2, 20, tzinfo=UTC)


def test_add_months_rolls_overflow_into_next_month_leap_year() -> None:
    """January 31 plus one month rolls past February 29 to March 2."""
    start = datetime(2024, 1, 31, tzinfo=UTC)
    assert add_months(start, 1) == datetime(2024, 3, 2, tzinfo=UTC)


def test_add_months_rolls_overflow_into_next_month_common_year() -> None:
    """January 31 plus one month rolls past February 28 to March 3."""
    start = datetime(2023, 1, 31, tzinfo=UTC)
    assert add_months(start, 1) == datetime(2023, 3, 3, tzinfo=UTC)


def test_add_months_preserves_time_and_tzinfo() -> None:
    tz = timezone(timedelta(hours=-5))
    start = datetime(2024, 5, 31, 23, 45, 12, tzinfo=tz)
    result = add_months(start, 1)
    assert result == datetime(2024, 7, 1, 23, 45, 12, tzinfo=tz)
    assert result.tzinfo is tz


# ============================================================================
# generate_schedule tests
# ============================================================================


@pytest.mark.parametrize("duration", [1, 3, 6])
def test_generate_schedule_shape(duration: int) -> None:
    """Schedule has one unshipped, untracked fulfillment per month."""
    start = datetime(2024, 3, 15, 8, 0, tzinfo=UTC)

    schedule = generate_schedule(start, duration)

    assert len(schedule) == duration
    assert [f.slot for f in schedule] == list(range(duration))
    assert all(f.shipped is False for f in schedule)
    assert all(f.tracking is None for f in schedule)
    assert schedule[0].fulfillment_date == start


@pytest.mark.parametrize("duration", [3, 6])
def test_generate_schedule_dates_strictly_increase_by_one_month(duration: int) -> None:
    start = datetime(2024, 3, 15, 8, 0, tzinfo=UTC)

    schedule = generate_schedule(start, duration)
    dates = [f.fulfillment_date for f in schedule]

    assert dates == sorted(dates)
    assert len(set(dates)) == duration
    for index, date in enumerate(dates):
        assert date == add_months(start, index)
        assert date.day == 15
    assert [d.month for d in dates] == [3 + i for i in range(duration)]


def test_generate_schedule_six_months_from_january_31() -> None:
    """Month-end start dates roll over into the following month."""
    start = datetime(2024, 1, 31, 9, 0, tzinfo=UTC)

    schedule = generate_schedule(start, 6)

    assert [f.fulfillment_date for f in schedule] == [
        datetime(2024, 1, 31, 9, 0, tzinfo=UTC),
        datetime(2024, 3, 2, 9, 0, tzinfo=UTC),
        datetime(2024, 3, 31, 9, 0, tzinfo=UTC),
        datetime(2024, 5, 1, 9, 0, tzinfo=UTC),
        datetime(2024, 5, 31, 9, 0, tzinfo=UTC),
        datetime(2024, 7, 1, 9, 0, tzinfo=UTC),
    ]


def test_generate_schedule_is_deterministic() -> None:
    start = datetime(2024, 8, 31, tzinfo=UTC)
    assert generate_schedule(start, 6) == generate_schedule(start, 6)


@pytest.mark.parametrize("duration", [0, 2, 12, -1])
def test_generate_schedule_rejects_unsupported_duration(duration: int) -> None:
    with pytest.raises(ValidationError, match="duration must be one of"):
        generate_schedule(datetime(2024, 1, 1, tzinfo=UTC), duration)
