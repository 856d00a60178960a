"""Fake SubscriptionRepositoryPort implementation for testing."""

from collections.abc import Mapping
from typing import Any

from pharmsub.core.errors import (
    AuthenticationFailure,
    RepositoryReadFailure,
    RepositoryWriteFailure,
    ValidationError,
)
from pharmsub.core.models import MUTABLE_FIELDS, Subscription
from pharmsub.core.ports import SnapshotCallback, SubscriptionRepositoryPort, Unsubscribe


class FakeSubscriptionRepository(SubscriptionRepositoryPort):
    """In-memory subscription repository for testing.

    Stores documents the way a real store would, assigns sequential ids,
    publishes a snapshot synchronously after every write, and records every
    call for test assertions. Failures can be switched on per operation.
    """

    def __init__(self):
        """Initialize with an empty store."""
        self.documents: dict[str, dict[str, Any]] = {}
        self.subscribers: list[SnapshotCallback] = []
        self.created: list[Subscription] = []
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        self.delete_calls: list[str] = []
        self.snapshots_published = 0
        self.is_open = False
        self.fail_open = False
        self.fail_reads = False
        self.fail_writes = False
        self._next_id = 1

    async def open(self) -> None:
        if self.fail_open:
            raise AuthenticationFailure("Simulated session failure")
        self.is_open = True

    async def close(self) -> None:
        self.subscribers.clear()
        self.is_open = False

    async def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register a callback and deliver the current collection at once."""
        if self.fail_reads:
            raise RepositoryReadFailure("Simulated read failure")
        self.subscribers.append(on_snapshot)
        on_snapshot(self.snapshot())

        def unsubscribe() -> None:
            if on_snapshot in self.subscribers:
                self.subscribers.remove(on_snapshot)

        return unsubscribe

    async def create(self, subscription: Subscription) -> str:
        if self.fail_writes:
            raise RepositoryWriteFailure("Simulated create failure")
        subscription_id = f"sub-{self._next_id:03d}"
        self._next_id += 1
        self.documents[subscription_id] = subscription.to_document()
        self.created.append(subscription.with_id(subscription_id))
        self.publish()
        return subscription_id

    async def update(self, subscription_id: str, fields: Mapping[str, Any]) -> bool:
        self.update_calls.append((subscription_id, dict(fields)))
        rejected = set(fields) - MUTABLE_FIELDS
        if rejected:
            raise ValidationError(f"Fields cannot be updated: {sorted(rejected)}")
        if self.fail_writes:
            raise RepositoryWriteFailure("Simulated update failure")
        if subscription_id not in self.documents:
            return False
        self.documents[subscription_id].update(fields)
        self.publish()
        return True

    async def delete(self, subscription_id: str) -> bool:
        self.delete_calls.append(subscription_id)
        if self.fail_writes:
            raise RepositoryWriteFailure("Simulated delete failure")
        if self.documents.pop(subscription_id, None) is None:
            return False
        self.publish()
        return True

    def snapshot(self) -> list[Subscription]:
        """Current collection as domain records, in creation order."""
        return [
            Subscription.from_document(document, subscription_id)
            for subscription_id, document in self.documents.items()
        ]

    def publish(self) -> None:
        """Push the current collection to every subscriber."""
        self.snapshots_published += 1
        snapshot = self.snapshot()
        for callback in list(self.subscribers):
            callback(list(snapshot))

    def put(self, subscription: Subscription) -> str:
        """Seed a record directly, without publishing. Returns its id."""
        subscription_id = subscription.id or f"sub-{self._next_id:03d}"
        self._next_id += 1
        self.documents[subscription_id] = subscription.to_document()
        return subscription_id

    def get(self, subscription_id: str) -> Subscription | None:
        """Stored record by id, as the store currently holds it."""
        document = self.documents.get(subscription_id)
        if document is None:
            return None
        return Subscription.from_document(document, subscription_id)
