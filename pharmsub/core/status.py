"""Status derivation rules for subscriptions.

The stored status of a subscription is what staff last set. The status shown
to everyone else is derived from it and from the shipped state of the
fulfillments. Derivation is a read-time projection: nothing here writes
back to the repository.
"""

from collections.abc import Sequence
from dataclasses import replace

from .models import (
    FULFILLED,
    RENEWAL_NEEDED,
    Fulfillment,
    OnHoldStatus,
    Subscription,
    SubscriptionStatus,
)


def _next_unshipped_index(fulfillments: Sequence[Fulfillment]) -> int | None:
    for index, fulfillment in enumerate(fulfillments):
        if not fulfillment.shipped:
            return index
    return None


def next_unshipped(fulfillments: Sequence[Fulfillment]) -> Fulfillment | None:
    """First fulfillment in schedule order that has not shipped yet."""
    index = _next_unshipped_index(fulfillments)
    return None if index is None else fulfillments[index]


def derive_status(
    stored_status: SubscriptionStatus, fulfillments: Sequence[Fulfillment]
) -> SubscriptionStatus:
    """Compute the display status of a subscription.

    Rules, in order:
    - On hold is sticky and wins over everything else.
    - Every fulfillment shipped means Fulfilled.
    - Only the last fulfillment of a multi-month plan left means Renewal Needed.
    - Otherwise the stored status stands.

    Single-fulfillment subscriptions never need renewal, so they go
    straight from their stored status to Fulfilled.
    """
    if isinstance(stored_status, OnHoldStatus):
        return stored_status

    pending_index = _next_unshipped_index(fulfillments)
    if pending_index is None:
        return FULFILLED

    last_index = len(fulfillments) - 1
    if last_index > 0 and pending_index == last_index:
        return RENEWAL_NEEDED

    return stored_status


def project(subscription: Subscription) -> Subscription:
    """Return a copy of the subscription carrying its derived status."""
    derived = derive_status(subscription.status, subscription.fulfillments)
    if derived == subscription.status:
        return subscription
    return replace(subscription, status=derived)
