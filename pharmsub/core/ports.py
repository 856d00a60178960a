"""Port interfaces for the Pharmsub subscription tracker.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - SubscriptionRepositoryPort: Persist subscriptions and publish snapshots

2. **Driving Ports** (adapters/external systems call into core)
   - SubscriptionManagementPort: Staff-initiated actions (create, edit,
     ship, log, delete) and read access to derived records
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeAlias

from .models import Subscription, SubscriptionStats, SubscriptionStatus

# Receives the full collection after every committed write.
SnapshotCallback: TypeAlias = Callable[[list[Subscription]], None]
Unsubscribe: TypeAlias = Callable[[], None]


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class SubscriptionRepositoryPort(ABC):
    """Port for durable subscription storage with change notification.

    The repository is the single source of truth. Writes are confirmed to
    the core only through the snapshot feed: after every committed create,
    update or delete, each subscriber receives the whole collection again.

    Implementations must handle:
    - Session setup and teardown (open/close)
    - Id assignment on create
    - Field-level updates of a single record
    - Publishing full snapshots in creation order
    """

    @abstractmethod
    async def open(self) -> None:
        """Establish the storage session.

        Raises:
            AuthenticationFailure: If the session cannot be established.
        """

    @abstractmethod
    async def close(self) -> None:
        """Tear down the storage session and drop all subscribers."""

    @abstractmethod
    async def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register for collection snapshots.

        The callback is invoked once immediately with the current collection
        and again after every committed write.

        Args:
            on_snapshot: Called with the full list of stored subscriptions.

        Returns:
            A callable that removes the subscription when invoked.

        Raises:
            RepositoryReadFailure: If the initial snapshot cannot be loaded.
        """

    @abstractmethod
    async def create(self, subscription: Subscription) -> str:
        """Persist a new subscription.

        Args:
            subscription: Fully assembled record. Its id is ignored.

        Returns:
            The id assigned by the store.

        Raises:
            RepositoryWriteFailure: If the store rejects the write.
        """

    @abstractmethod
    async def update(self, subscription_id: str, fields: Mapping[str, Any]) -> bool:
        """Replace the given document fields of one subscription.

        Args:
            subscription_id: Id of the record to update.
            fields: Document keys (see ``models.MUTABLE_FIELDS``) mapped to
                their new JSON-compatible values.

        Returns:
            True if the record existed and was updated, False otherwise.

        Raises:
            ValidationError: If a field is unknown or immutable.
            RepositoryWriteFailure: If the store rejects the write.
        """

    @abstractmethod
    async def delete(self, subscription_id: str) -> bool:
        """Remove a subscription permanently.

        Returns:
            True if a record was removed, False if the id was unknown.

        Raises:
            RepositoryWriteFailure: If the store rejects the delete.
        """


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class SubscriptionManagementPort(ABC):
    """Port for staff-initiated subscription operations.

    Driving port: the CLI invokes these methods. Implementations live in
    the core (subscription_service.py).
    """

    @abstractmethod
    async def create_subscription(
        self,
        patient_name: str,
        duration: int,
        status: str | SubscriptionStatus = "Pending",
        physician_status: str = "Pending",
        new_rx_call: bool = False,
    ) -> str:
        """Create a subscription with its full fulfillment schedule.

        Returns:
            The repository-assigned id.

        Raises:
            ValidationError: If the form fields are invalid.
            RepositoryWriteFailure: If the store rejects the record.
        """

    @abstractmethod
    async def update_subscription(
        self,
        subscription_id: str,
        patient_name: str | None = None,
        status: str | SubscriptionStatus | None = None,
        physician_status: str | None = None,
        new_rx_call: bool | None = None,
    ) -> Subscription | None:
        """Edit the editable fields of a subscription.

        Returns:
            The edited record as written, or None if the id is unknown.
        """

    @abstractmethod
    async def mark_fulfillment_shipped(
        self,
        subscription_id: str,
        fulfillment_date: datetime,
        tracking: str | None = None,
        slot: int | None = None,
    ) -> Subscription | None:
        """Record the shipment of one fulfillment and log it.

        Returns:
            The record as written, or None if nothing was written.
        """

    @abstractmethod
    async def append_communication_log(
        self, subscription_id: str, message: str
    ) -> Subscription | None:
        """Append a staff entry to the communication log.

        Returns:
            The record as written, or None if nothing was written.
        """

    @abstractmethod
    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription permanently.

        Returns:
            True if the record was removed.
        """

    @abstractmethod
    async def list_subscriptions(
        self, status: str | SubscriptionStatus | None = None
    ) -> Sequence[Subscription]:
        """List subscriptions with derived status, optionally filtered by it."""

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        """Return one subscription with derived status, or None."""

    @abstractmethod
    async def get_stats(self) -> SubscriptionStats:
        """Summarize the current snapshot."""
