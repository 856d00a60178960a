"""Subscription service: implements SubscriptionManagementPort.

This is the core service behind every staff action. It keeps the last
snapshot published by the repository, applies the pure transforms defined
on the Subscription model, and writes back only the fields each operation
changes. Local state is never updated optimistically: the cached snapshot
changes only when the repository publishes a new one.
"""

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from .errors import RepositoryWriteFailure
from .models import (
    COMMUNICATION_LOG,
    EDITABLE_FIELDS,
    FULFILLMENTS,
    RENEWAL_NEEDED,
    LogEntry,
    Subscription,
    SubscriptionStats,
    SubscriptionStatus,
    encode_fields,
    parse_physician_status,
    parse_status,
)
from .ports import SubscriptionManagementPort, SubscriptionRepositoryPort, Unsubscribe
from .scheduler import generate_schedule
from .status import project

logger = logging.getLogger(__name__)

CREATED_MESSAGE = "Subscription created."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_subscription(
    patient_name: str,
    duration: int,
    status: str | SubscriptionStatus,
    physician_status: str,
    new_rx_call: bool,
    *,
    now: datetime,
    actor: str,
) -> Subscription:
    """Assemble a complete new subscription record from form fields.

    The start date is ``now``, the schedule is generated from it, and the
    log is seeded with a single creation entry.

    Raises:
        ValidationError: If any field is invalid.
    """
    return Subscription(
        patient_name=patient_name.strip() if patient_name else patient_name,
        duration=duration,
        start_date=now,
        status=parse_status(status),
        physician_status=parse_physician_status(physician_status),
        fulfillments=generate_schedule(now, duration),
        communication_log=(LogEntry(date=now, message=CREATED_MESSAGE, actor=actor),),
        new_rx_call=new_rx_call,
    )


class SubscriptionService(SubscriptionManagementPort):
    """Core implementation of SubscriptionManagementPort.

    Must be started before use so it receives repository snapshots.
    Operations against ids missing from the last snapshot are logged
    no-ops; the caller is expected to refresh.

    Concurrent writers are not coordinated: each operation replaces whole
    fields computed from this service's last snapshot, so the last write
    to a record wins.
    """

    def __init__(
        self,
        repository: SubscriptionRepositoryPort,
        staff_actor: str = "Pharmacy Staff",
        system_actor: str = "System",
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the subscription service.

        Args:
            repository: SubscriptionRepositoryPort implementation for persistence.
            staff_actor: Actor recorded on staff log entries.
            system_actor: Actor recorded on the creation log entry.
            clock: Source of "now" for start dates and log entries.
        """
        self.repository = repository
        self.staff_actor = staff_actor
        self.system_actor = system_actor
        self.clock = clock
        self._records: dict[str, Subscription] = {}
        self._unsubscribe: Unsubscribe | None = None

    async def start(self) -> None:
        """Subscribe to the repository's snapshot feed."""
        if self._unsubscribe is None:
            self._unsubscribe = await self.repository.subscribe(self._on_snapshot)

    async def stop(self) -> None:
        """Stop receiving snapshots."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_snapshot(self, records: list[Subscription]) -> None:
        # Each snapshot replaces everything known before it
        self._records = {record.id: record for record in records}
        logger.debug(
            "Received subscription snapshot",
            extra={"count": len(records)},
        )

    def _current(self, subscription_id: str, operation: str) -> Subscription | None:
        record = self._records.get(subscription_id)
        if record is None:
            logger.warning(
                f"Cannot {operation}: subscription {subscription_id} not found",
                extra={"subscription_id": subscription_id, "operation": operation},
            )
        return record

    async def _write(
        self, subscription_id: str, fields: dict[str, Any], operation: str
    ) -> bool:
        try:
            updated = await self.repository.update(subscription_id, fields)
        except RepositoryWriteFailure:
            logger.error(
                f"Failed to {operation} subscription {subscription_id}",
                exc_info=True,
                extra={"subscription_id": subscription_id, "fields": sorted(fields)},
            )
            raise

        if not updated:
            logger.warning(
                f"Subscription {subscription_id} disappeared before {operation}",
                extra={"subscription_id": subscription_id},
            )
        return updated

    async def create_subscription(
        self,
        patient_name: str,
        duration: int,
        status: str | SubscriptionStatus = "Pending",
        physician_status: str = "Pending",
        new_rx_call: bool = False,
    ) -> str:
        """Create a subscription with its full fulfillment schedule.

        Args:
            patient_name: Patient display name, required.
            duration: Number of monthly fulfillments (1, 3 or 6).
            status: Initial pharmacy status label.
            physician_status: Initial physician approval label.
            new_rx_call: Whether staff must call the patient about a new Rx.

        Returns:
            The repository-assigned id.

        Raises:
            ValidationError: If the form fields are invalid. Nothing is written.
            RepositoryWriteFailure: If the store rejects the record.
        """
        subscription = build_subscription(
            patient_name,
            duration,
            status,
            physician_status,
            new_rx_call,
            now=self.clock(),
            actor=self.system_actor,
        )

        try:
            subscription_id = await self.repository.create(subscription)
        except RepositoryWriteFailure:
            logger.error(
                f"Failed to create subscription for {subscription.patient_name}",
                exc_info=True,
                extra={"duration": duration},
            )
            raise

        logger.info(
            f"Subscription {subscription_id} created",
            extra={"subscription_id": subscription_id, "duration": duration},
        )
        return subscription_id

    async def update_subscription(
        self,
        subscription_id: str,
        patient_name: str | None = None,
        status: str | SubscriptionStatus | None = None,
        physician_status: str | None = None,
        new_rx_call: bool | None = None,
    ) -> Subscription | None:
        """Edit the editable fields of a subscription.

        Id, start date, duration, fulfillments and log always carry over
        from the last known record. Only fields whose value changed are
        written.

        Returns:
            The edited record, or None if the id is unknown.

        Raises:
            ValidationError: If an edited value is invalid.
            RepositoryWriteFailure: If the store rejects the write.
        """
        current = self._current(subscription_id, "update")
        if current is None:
            return None

        edited = current.with_edits(
            patient_name=patient_name,
            status=status,
            physician_status=physician_status,
            new_rx_call=new_rx_call,
        )

        before = encode_fields(current, EDITABLE_FIELDS)
        after = encode_fields(edited, EDITABLE_FIELDS)
        changes = {name: value for name, value in after.items() if before[name] != value}
        if not changes:
            logger.debug(
                f"No changes to subscription {subscription_id}",
                extra={"subscription_id": subscription_id},
            )
            return current

        if not await self._write(subscription_id, changes, "update"):
            return None

        logger.info(
            f"Subscription {subscription_id} updated",
            extra={"subscription_id": subscription_id, "fields": sorted(changes)},
        )
        return edited

    async def mark_fulfillment_shipped(
        self,
        subscription_id: str,
        fulfillment_date: datetime,
        tracking: str | None = None,
        slot: int | None = None,
    ) -> Subscription | None:
        """Record the shipment of the fulfillment scheduled on ``fulfillment_date``.

        The fulfillment is found by date equality, narrowed by ``slot`` when
        given. Fulfillments and log are written together.

        If no fulfillment matches, the schedule is written back unchanged
        and the shipment is still logged. A fulfillment that already shipped
        is left alone and nothing is written.

        Returns:
            The record as written, or None if nothing was written.

        Raises:
            RepositoryWriteFailure: If the store rejects the write.
        """
        current = self._current(subscription_id, "mark shipped")
        if current is None:
            return None

        target = current.find_fulfillment(fulfillment_date, slot)
        if target is None:
            logger.warning(
                f"No fulfillment of subscription {subscription_id} "
                f"scheduled on {fulfillment_date.isoformat()}",
                extra={"subscription_id": subscription_id, "slot": slot},
            )
        elif target.shipped:
            logger.warning(
                f"Fulfillment {target.slot} of subscription {subscription_id} "
                f"already shipped",
                extra={"subscription_id": subscription_id, "tracking": target.tracking},
            )
            return None

        updated = current.with_shipment(
            fulfillment_date,
            tracking,
            actor=self.staff_actor,
            at=self.clock(),
            slot=slot,
        )
        fields = encode_fields(updated, {FULFILLMENTS, COMMUNICATION_LOG})
        if not await self._write(subscription_id, fields, "mark shipped"):
            return None

        logger.info(
            f"Fulfillment shipped for subscription {subscription_id}",
            extra={
                "subscription_id": subscription_id,
                "fulfillment_date": fulfillment_date.isoformat(),
                "tracking": tracking,
            },
        )
        return updated

    async def append_communication_log(
        self, subscription_id: str, message: str
    ) -> Subscription | None:
        """Append a staff entry to the communication log.

        Empty or whitespace-only messages are ignored.

        Returns:
            The record as written, or None if nothing was written.

        Raises:
            RepositoryWriteFailure: If the store rejects the write.
        """
        if not message or not message.strip():
            logger.debug(
                f"Ignoring empty log message for subscription {subscription_id}",
                extra={"subscription_id": subscription_id},
            )
            return None

        current = self._current(subscription_id, "append log entry")
        if current is None:
            return None

        updated = current.with_log_entry(
            message.strip(), actor=self.staff_actor, at=self.clock()
        )
        fields = encode_fields(updated, {COMMUNICATION_LOG})
        if not await self._write(subscription_id, fields, "append log entry"):
            return None

        logger.info(
            f"Log entry appended to subscription {subscription_id}",
            extra={
                "subscription_id": subscription_id,
                "entries": len(updated.communication_log),
            },
        )
        return updated

    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription permanently.

        Irreversible. Callers are responsible for confirming first.

        Returns:
            True if the record was removed, False if the id was unknown.

        Raises:
            RepositoryWriteFailure: If the store rejects the delete.
        """
        try:
            removed = await self.repository.delete(subscription_id)
        except RepositoryWriteFailure:
            logger.error(
                f"Failed to delete subscription {subscription_id}",
                exc_info=True,
                extra={"subscription_id": subscription_id},
            )
            raise

        if removed:
            logger.info(
                f"Subscription {subscription_id} deleted",
                extra={"subscription_id": subscription_id},
            )
        else:
            logger.warning(
                f"Cannot delete: subscription {subscription_id} not found",
                extra={"subscription_id": subscription_id},
            )
        return removed

    async def list_subscriptions(
        self, status: str | SubscriptionStatus | None = None
    ) -> Sequence[Subscription]:
        """List subscriptions from the last snapshot with derived status.

        Args:
            status: Keep only subscriptions whose derived status matches.

        Returns:
            Subscriptions in repository (creation) order.
        """
        derived = [project(record) for record in self._records.values()]
        if status is None:
            return derived

        wanted = parse_status(status)
        return [record for record in derived if record.status == wanted]

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        """Return one subscription with derived status, or None if unknown."""
        record = self._records.get(subscription_id)
        return project(record) if record is not None else None

    async def get_stats(self) -> SubscriptionStats:
        """Summarize the last snapshot by derived status and approval track."""
        derived = [project(record) for record in self._records.values()]
        by_status = Counter(record.status.label for record in derived)
        by_physician = Counter(record.physician_status.value for record in derived)

        return SubscriptionStats(
            total_subscriptions=len(derived),
            by_status=dict(by_status),
            by_physician_status=dict(by_physician),
            new_rx_calls=sum(1 for record in derived if record.new_rx_call),
            renewals_needed=sum(1 for record in derived if record.status == RENEWAL_NEEDED),
            unshipped_fulfillments=sum(
                1
                for record in derived
                for fulfillment in record.fulfillments
                if not fulfillment.shipped
            ),
        )
