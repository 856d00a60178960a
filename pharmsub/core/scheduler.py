"""Fulfillment scheduling for new subscriptions.

A subscription of N months gets N fulfillments, one per calendar month,
starting in the month the subscription was created. The schedule is built
once at creation and never recomputed, since duration is immutable.
"""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from .errors import ValidationError
from .models import DURATIONS, Fulfillment


def add_months(moment: datetime, months: int) -> datetime:
    """Advance ``moment`` by whole calendar months.

    The day of month is kept when the target month has it. When it does not,
    the overflow rolls into the following month rather than clamping to the
    last day: January 31 plus one month is March 2 in a leap year and
    March 3 otherwise. Time of day and tzinfo are preserved.
    """
    first_of_target = moment + relativedelta(months=months, day=1)
    return first_of_target + timedelta(days=moment.day - 1)


def generate_schedule(start_date: datetime, duration: int) -> tuple[Fulfillment, ...]:
    """Build the ordered, unshipped fulfillment schedule for a new subscription.

    Args:
        start_date: Creation timestamp; the first fulfillment falls on it.
        duration: Number of monthly fulfillments, one of 1, 3 or 6.

    Returns:
        Tuple of ``duration`` fulfillments in chronological order.

    Raises:
        ValidationError: If duration is not an allowed length.
    """
    if duration not in DURATIONS:
        raise ValidationError(
            f"duration must be one of {sorted(DURATIONS)}, got {duration}"
        )
    return tuple(
        Fulfillment(slot=index, fulfillment_date=add_months(start_date, index))
        for index in range(duration)
    )
