"""PostgreSQL subscription repository adapter.

Implements SubscriptionRepositoryPort using PostgreSQL with asyncpg for async
access. Every committed write republishes the collection to local
subscribers before it returns, and also sends a NOTIFY on the
``subscriptions_changed`` channel inside its transaction. A dedicated
listener connection turns those notifications into snapshots, so writes made
by other processes against the same database reach local subscribers too.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

import asyncpg

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

CHANGE_CHANNEL = "subscriptions_changed"

_COLUMNS = {
    PATIENT_NAME: "patient_name",
    NEW_RX_CALL: "new_rx_call",
    STATUS: "status",
    PHYSICIAN_STATUS: "physician_status",
    FULFILLMENTS: "fulfillments",
    COMMUNICATION_LOG: "communication_log",
}
_JSON_FIELDS = frozenset({FULFILLMENTS, COMMUNICATION_LOG})


class PostgreSQLSubscriptionRepository(SubscriptionRepositoryPort):
    """PostgreSQL-backed subscription repository with LISTEN/NOTIFY change feed."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "pharmsub",
        user: str = "pharmsub",
        password: str = "",
        pool_size: int = 10,
    ):
        """Initialize PostgreSQL repository settings.

        Args:
            host: PostgreSQL server hostname.
            port: PostgreSQL server port.
            database: Database name.
            user: Database user.
            password: Database password.
            pool_size: Maximum number of pooled connections.
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self._pool: asyncpg.Pool | None = None
        self._listener: asyncpg.Connection | None = None
        self._pool_size = pool_size
        self._subscribers: list[SnapshotCallback] = []
        self._publish_tasks: set[asyncio.Task[None]] = set()

    def _connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }

    async def open(self) -> None:
        """Create the pool, the schema and the notification listener."""
        try:
            self._pool = await asyncpg.create_pool(
                **self._connect_kwargs(), min_size=1, max_size=self._pool_size
            )
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS subscriptions (
                        id TEXT PRIMARY KEY,
                        seq BIGSERIAL,
                        patient_name TEXT NOT NULL,
                        new_rx_call BOOLEAN NOT NULL DEFAULT FALSE,
                        duration INTEGER NOT NULL CHECK (duration IN (1, 3, 6)),
                        start_date TIMESTAMPTZ NOT NULL,
                        status TEXT NOT NULL DEFAULT 'Pending',
                        physician_status TEXT NOT NULL DEFAULT 'Pending',
                        fulfillments JSONB NOT NULL DEFAULT '[]'::jsonb,
                        communication_log JSONB NOT NULL DEFAULT '[]'::jsonb
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_subscriptions_status "
                    "ON subscriptions(status)"
                )
            self._listener = await asyncpg.connect(**self._connect_kwargs())
            await self._listener.add_listener(CHANGE_CHANNEL, self._on_notify)
        except (asyncpg.PostgresError, OSError) as e:
            await self.close()
            raise AuthenticationFailure(
                f"Cannot connect to PostgreSQL at {self.host}:{self.port}: {e}"
            ) from e

        logger.info(
            f"PostgreSQL subscription repository opened: {self.host}:{self.port}/{self.database}"
        )

    async def close(self) -> None:
        """Stop listening, drop subscribers and close the pool."""
        self._subscribers.clear()
        if self._listener is not None:
            await self._listener.close()
            self._listener = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RepositoryWriteFailure("PostgreSQL repository is not open")
        return self._pool

    async def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register a snapshot callback and deliver the current collection."""
        try:
            snapshot = await self._load_all()
        except (asyncpg.PostgresError, RepositoryWriteFailure, ValidationError) as e:
            raise RepositoryReadFailure(f"Failed to load subscriptions: {e}") from e

        self._subscribers.append(on_snapshot)
        self._deliver(on_snapshot, snapshot)

        def unsubscribe() -> None:
            if on_snapshot in self._subscribers:
                self._subscribers.remove(on_snapshot)

        return unsubscribe

    async def create(self, subscription: Subscription) -> str:
        """Insert a new subscription and notify listeners in one transaction."""
        pool = self._require_pool()
        subscription_id = uuid.uuid4().hex
        document = subscription.to_document()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO subscriptions
                        (id, patient_name, new_rx_call, duration, start_date, status,
                         physician_status, fulfillments, communication_log)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb)
                        """,
                        subscription_id,
                        document[PATIENT_NAME],
                        document[NEW_RX_CALL],
                        document[DURATION],
                        subscription.start_date,
                        document[STATUS],
                        document[PHYSICIAN_STATUS],
                        json.dumps(document[FULFILLMENTS]),
                        json.dumps(document[COMMUNICATION_LOG]),
                    )
                    await conn.execute(
                        "SELECT pg_notify($1, $2)", CHANGE_CHANNEL, subscription_id
                    )
        except asyncpg.PostgresError as e:
            raise RepositoryWriteFailure(f"Failed to create subscription: {e}") from e

        # Local subscribers must see the write before the next read-modify-write
        await self._publish()
        return subscription_id

    async def update(self, subscription_id: str, fields: Mapping[str, Any]) -> bool:
        """Replace the given document fields of one subscription."""
        if not fields:
            raise ValidationError("No fields to update")
        rejected = set(fields) - MUTABLE_FIELDS
        if rejected:
            raise ValidationError(f"Fields cannot be updated: {sorted(rejected)}")

        pool = self._require_pool()
        names = list(fields)
        assignments = ", ".join(
            f"{_COLUMNS[name]} = ${index}{'::jsonb' if name in _JSON_FIELDS else ''}"
            for index, name in enumerate(names, start=2)
        )
        values = [
            json.dumps(fields[name]) if name in _JSON_FIELDS else fields[name]
            for name in names
        ]

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    result = await conn.execute(
                        f"UPDATE subscriptions SET {assignments} WHERE id = $1",
                        subscription_id,
                        *values,
                    )
                    updated = result.endswith(" 1")
                    if updated:
                        await conn.execute(
                            "SELECT pg_notify($1, $2)", CHANGE_CHANNEL, subscription_id
                        )
        except asyncpg.PostgresError as e:
            raise RepositoryWriteFailure(
                f"Failed to update subscription {subscription_id}: {e}"
            ) from e

        if updated:
            await self._publish()
        return updated

    async def delete(self, subscription_id: str) -> bool:
        """Delete a subscription row and notify listeners."""
        pool = self._require_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    result = await conn.execute(
                        "DELETE FROM subscriptions WHERE id = $1", subscription_id
                    )
                    removed = result.endswith(" 1")
                    if removed:
                        await conn.execute(
                            "SELECT pg_notify($1, $2)", CHANGE_CHANNEL, subscription_id
                        )
        except asyncpg.PostgresError as e:
            raise RepositoryWriteFailure(
                f"Failed to delete subscription {subscription_id}: {e}"
            ) from e

        if removed:
            await self._publish()
        return removed

    def _on_notify(
        self, connection: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        logger.debug(
            f"Change notification for subscription {payload}",
            extra={"channel": channel, "pid": pid},
        )
        task = asyncio.get_running_loop().create_task(self._publish())
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    async def _load_all(self) -> list[Subscription]:
        pool = self._require_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, patient_name, new_rx_call, duration, start_date, status,
                       physician_status, fulfillments, communication_log
                FROM subscriptions
                ORDER BY seq
                """
            )
        return [self._row_to_subscription(row) for row in rows]

    async def _publish(self) -> None:
        if not self._subscribers:
            return
        try:
            snapshot = await self._load_all()
        except (asyncpg.PostgresError, RepositoryWriteFailure, ValidationError) as e:
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

    @staticmethod
    def _decode_json(value: Any) -> Any:
        # asyncpg returns JSONB as text unless a codec is registered
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    def _row_to_subscription(self, row: Mapping[str, Any]) -> Subscription:
        """Convert a database record to a Subscription object.

        Raises:
            ValidationError: If the record is malformed.
        """
        try:
            document = {
                PATIENT_NAME: row["patient_name"],
                NEW_RX_CALL: row["new_rx_call"],
                DURATION: row["duration"],
                START_DATE: row["start_date"],
                STATUS: row["status"],
                PHYSICIAN_STATUS: row["physician_status"],
                FULFILLMENTS: self._decode_json(row["fulfillments"]),
                COMMUNICATION_LOG: self._decode_json(row["communication_log"]),
            }
            return Subscription.from_document(document, row["id"])
        except ValidationError as e:
            logger.error(f"Failed to parse database row: {e}")
            raise
        except (KeyError, json.JSONDecodeError, TypeError) as e:
            logger.error(f"Unexpected error parsing database row: {e}")
            raise ValidationError(f"Row parsing failed: {e}") from e
