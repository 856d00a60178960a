"""SQLite subscription repository adapter.

Implements SubscriptionRepositoryPort using SQLite with aiosqlite for async
access. Fulfillments and the communication log are stored as JSON columns
so each write replaces them whole. The change feed is in-process: every
committed write republishes the full collection to local subscribers.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import aiosqlite

from pharmsub.core.errors import (
    AuthenticationFailure,
    RepositoryReadFailure,
    RepositoryWriteFailure,
    ValidationError,
)
from pharmsub.core.models import (
    COMMUNICATION_LOG,
    DURATION,
    FULFILLMENTS,
    MUTABLE_FIELDS,
    NEW_RX_CALL,
    PATIENT_NAME,
    PHYSICIAN_STATUS,
    START_DATE,
    STATUS,
    Subscription,
)
from pharmsub.core.ports import SnapshotCallback, SubscriptionRepositoryPort, Unsubscribe

logger = logging.getLogger(__name__)

# Document key -> column name for every field ``update`` may touch.
_COLUMNS = {
    PATIENT_NAME: "patient_name",
    NEW_RX_CALL: "new_rx_call",
    STATUS: "status",
    PHYSICIAN_STATUS: "physician_status",
    FULFILLMENTS: "fulfillments_json",
    COMMUNICATION_LOG: "communication_log_json",
}

_SELECT = """
    SELECT id, patient_name, new_rx_call, duration, start_date, status,
           physician_status, fulfillments_json, communication_log_json
    FROM subscriptions
"""


def _encode(name: str, value: Any) -> Any:
    if name in (FULFILLMENTS, COMMUNICATION_LOG):
        return json.dumps(value)
    if name == NEW_RX_CALL:
        return int(bool(value))
    return value


class SQLiteSubscriptionRepository(SubscriptionRepositoryPort):
    """SQLite-backed subscription repository with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        """Initialize SQLite repository with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False
        self._subscribers: list[SnapshotCallback] = []

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        return await aiosqlite.connect(str(self.db_path))

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    async def close_pool(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return

        async with self._schema_lock:
            # Check again after acquiring lock to prevent race
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS subscriptions (
                        id TEXT PRIMARY KEY,
                        patient_name TEXT NOT NULL,
                        new_rx_call INTEGER NOT NULL DEFAULT 0,
                        duration INTEGER NOT NULL CHECK (duration IN (1, 3, 6)),
                        start_date TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'Pending',
                        physician_status TEXT NOT NULL DEFAULT 'Pending',
                        fulfillments_json TEXT NOT NULL DEFAULT '[]',
                        communication_log_json TEXT NOT NULL DEFAULT '[]'
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_status ON subscriptions(status)"
                )
                await conn.commit()
                self._schema_initialized = True
            finally:
                await self._return_connection(conn)

    async def open(self) -> None:
        """Open the database file and make sure the schema exists."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await self._get_connection()
            await self._return_connection(conn)
            await self._init_schema()
        except (aiosqlite.Error, OSError) as e:
            raise AuthenticationFailure(
                f"Cannot open SQLite database at {self.db_path}: {e}"
            ) from e

        logger.info(f"SQLite subscription repository opened: {self.db_path}")

    async def close(self) -> None:
        """Drop subscribers and close pooled connections."""
        self._subscribers.clear()
        await self.close_pool()

    async def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register a snapshot callback and deliver the current collection."""
        try:
            snapshot = await self._load_all()
        except (aiosqlite.Error, ValidationError) as e:
            raise RepositoryReadFailure(f"Failed to load subscriptions: {e}") from e

        self._subscribers.append(on_snapshot)
        self._deliver(on_snapshot, snapshot)

        def unsubscribe() -> None:
            if on_snapshot in self._subscribers:
                self._subscribers.remove(on_snapshot)

        return unsubscribe

    async def create(self, subscription: Subscription) -> str:
        """Insert a new subscription under a freshly generated id."""
        await self._init_schema()

        subscription_id = uuid.uuid4().hex
        document = subscription.to_document()

        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                INSERT INTO subscriptions
                (id, patient_name, new_rx_call, duration, start_date, status,
                 physician_status, fulfillments_json, communication_log_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subscription_id,
                    document[PATIENT_NAME],
                    _encode(NEW_RX_CALL, document[NEW_RX_CALL]),
                    document[DURATION],
                    document[START_DATE],
                    document[STATUS],
                    document[PHYSICIAN_STATUS],
                    _encode(FULFILLMENTS, document[FULFILLMENTS]),
                    _encode(COMMUNICATION_LOG, document[COMMUNICATION_LOG]),
                ),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise RepositoryWriteFailure(f"Failed to create subscription: {e}") from e
        finally:
            await self._return_connection(conn)

        await self._publish()
        return subscription_id

    async def update(self, subscription_id: str, fields: Mapping[str, Any]) -> bool:
        """Replace the given document fields of one subscription."""
        if not fields:
            raise ValidationError("No fields to update")
        rejected = set(fields) - MUTABLE_FIELDS
        if rejected:
            raise ValidationError(f"Fields cannot be updated: {sorted(rejected)}")

        await self._init_schema()

        names = list(fields)
        assignments = ", ".join(f"{_COLUMNS[name]} = ?" for name in names)
        values = [_encode(name, fields[name]) for name in names]

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"UPDATE subscriptions SET {assignments} WHERE id = ?",
                (*values, subscription_id),
            )
            await conn.commit()
            updated = cursor.rowcount > 0
        except aiosqlite.Error as e:
            raise RepositoryWriteFailure(
                f"Failed to update subscription {subscription_id}: {e}"
            ) from e
        finally:
            await self._return_connection(conn)

        if updated:
            await self._publish()
        return updated

    async def delete(self, subscription_id: str) -> bool:
        """Delete a subscription row."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "DELETE FROM subscriptions WHERE id = ?", (subscription_id,)
            )
            await conn.commit()
            removed = cursor.rowcount > 0
        except aiosqlite.Error as e:
            raise RepositoryWriteFailure(
                f"Failed to delete subscription {subscription_id}: {e}"
            ) from e
        finally:
            await self._return_connection(conn)

        if removed:
            await self._publish()
        return removed

    async def _load_all(self) -> list[Subscription]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(_SELECT + " ORDER BY rowid")
            rows = await cursor.fetchall()
        finally:
            await self._return_connection(conn)
        return [self._row_to_subscription(row) for row in rows]

    async def _publish(self) -> None:
        if not self._subscribers:
            return
        try:
            snapshot = await self._load_all()
        except (aiosqlite.Error, ValidationError) as e:
            # The write is already committed; subscribers catch up on the next one
            logger.error(f"Failed to publish subscription snapshot: {e}", exc_info=True)
            return
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)

    @staticmethod
    def _deliver(callback: SnapshotCallback, snapshot: list[Subscription]) -> None:
        try:
            callback(list(snapshot))
        except Exception as e:
            logger.error(f"Snapshot subscriber failed: {e}", exc_info=True)

    def _row_to_subscription(self, row: tuple[Any, ...]) -> Subscription:
        """Convert a database row to a Subscription object.

        Raises:
            ValidationError: If row is malformed or contains invalid data.
        """
        try:
            if not row or len(row) != 9:
                raise ValidationError(
                    f"Invalid row length: expected 9, got {len(row) if row else 0}"
                )

            (
                subscription_id,
                patient_name,
                new_rx_call,
                duration,
                start_date,
                status,
                physician_status,
                fulfillments_json,
                communication_log_json,
            ) = row

            document = {
                PATIENT_NAME: patient_name,
                NEW_RX_CALL: bool(new_rx_call),
                DURATION: duration,
                START_DATE: start_date,
                STATUS: status,
                PHYSICIAN_STATUS: physician_status,
                FULFILLMENTS: json.loads(fulfillments_json),
                COMMUNICATION_LOG: json.loads(communication_log_json),
            }
            return Subscription.from_document(document, subscription_id)

        except ValidationError as e:
            logger.error(f"Failed to parse database row: {e}")
            raise
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.error(f"Unexpected error parsing database row: {e}")
            raise ValidationError(f"Row parsing failed: {e}") from e
