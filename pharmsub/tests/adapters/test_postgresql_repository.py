"""Tests for the PostgreSQL subscription repository adapter.

NOTE: Tests that need a live PostgreSQL instance are skipped. The rest
exercise configuration, validation and row parsing with mocks.
"""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pharmsub.adapters.store.postgresql import (
    CHANGE_CHANNEL,
    PostgreSQLSubscriptionRepository,
)
from pharmsub.core.errors import (
    AuthenticationFailure,
    RepositoryWriteFailure,
    ValidationError,
)
from pharmsub.core.models import ON_HOLD
from pharmsub.core.subscription_service import SubscriptionService, build_subscription

START = datetime(2024, 1, 31, 9, 0, tzinfo=UTC)


@pytest.fixture
def postgres_config():
    """PostgreSQL connection configuration."""
    return {
        "host": "localhost",
        "port": 5432,
        "database": "pharmsub_test",
        "user": "pharmsub_test",
        "password": "pharmsub_test",
        "pool_size": 5,
    }


@pytest.fixture
def repository(postgres_config) -> PostgreSQLSubscriptionRepository:
    """Create a PostgreSQL repository adapter."""
    return PostgreSQLSubscriptionRepository(**postgres_config)


def make_row(**overrides):
    document = build_subscription(
        "Ada Lovelace", 3, "On Hold", "Approved", True, now=START, actor="System"
    ).to_document()
    row = {
        "id": "abc123",
        "patient_name": document["patientName"],
        "new_rx_call": document["newRxCall"],
        "duration": document["duration"],
        "start_date": START,
        "status": document["status"],
        "physician_status": document["physicianStatus"],
        "fulfillments": json.dumps(document["fulfillments"]),
        "communication_log": json.dumps(document["communicationLog"]),
    }
    row.update(overrides)
    return row


class TestPostgreSQLRepositoryInitialization:
    """Tests for PostgreSQL repository initialization."""

    def test_repository_initialization(self, postgres_config):
        """Test PostgreSQL repository initialization with configuration."""
        repository = PostgreSQLSubscriptionRepository(**postgres_config)

        assert repository.host == postgres_config["host"]
        assert repository.port == postgres_config["port"]
        assert repository.database == postgres_config["database"]
        assert repository.user == postgres_config["user"]
        assert repository.password == postgres_config["password"]

    def test_repository_default_configuration(self):
        """Test PostgreSQL repository with default configuration."""
        repository = PostgreSQLSubscriptionRepository()

        assert repository.host == "localhost"
        assert repository.port == 5432
        assert repository.database == "pharmsub"
        assert repository.user == "pharmsub"

    def test_change_channel_name(self):
        assert CHANGE_CHANNEL == "subscriptions_changed"


class TestSessionSetup:
    """Tests for opening the repository session."""

    @pytest.mark.asyncio
    async def test_unreachable_server_is_authentication_failure(self, repository):
        with patch(
            "pharmsub.adapters.store.postgresql.asyncpg.create_pool",
            new=AsyncMock(side_effect=OSError("connection refused")),
        ):
            with pytest.raises(AuthenticationFailure, match="localhost:5432"):
                await repository.open()

        assert repository._pool is None

    @pytest.mark.asyncio
    async def test_writes_before_open_fail(self, repository):
        subscription = build_subscription(
            "Ada Lovelace", 1, "Pending", "Pending", False, now=START, actor="System"
        )

        with pytest.raises(RepositoryWriteFailure, match="not open"):
            await repository.create(subscription)
        with pytest.raises(RepositoryWriteFailure, match="not open"):
            await repository.delete("abc123")


class TestUpdateValidation:
    """Field validation happens before any database access."""

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, repository):
        with pytest.raises(ValidationError, match="No fields"):
            await repository.update("abc123", {})

    @pytest.mark.asyncio
    async def test_immutable_fields_rejected(self, repository):
        with pytest.raises(ValidationError, match="duration"):
            await repository.update("abc123", {"duration": 6, "status": "Approved"})

    @pytest.mark.asyncio
    async def test_update_builds_jsonb_assignments(self, repository):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="UPDATE 1")
        conn.transaction = MagicMock(return_value=AsyncContextManager())
        pool = MagicMock()
        pool.acquire = MagicMock(return_value=AsyncContextManager(conn))
        repository._pool = pool

        updated = await repository.update(
            "abc123", {"status": "Approved", "fulfillments": [{"slot": 0}]}
        )

        assert updated is True
        query, *args = conn.execute.await_args_list[0].args
        assert "status = $2" in query
        assert "fulfillments = $3::jsonb" in query
        assert args == ["abc123", "Approved", json.dumps([{"slot": 0}])]
        notify = conn.execute.await_args_list[1].args
        assert notify == ("SELECT pg_notify($1, $2)", CHANGE_CHANNEL, "abc123")


class TestLocalSnapshots:
    """Committed writes reach local subscribers before the write returns."""

    @staticmethod
    def attach_pool(repository, conn):
        conn.transaction = MagicMock(return_value=AsyncContextManager())
        pool = MagicMock()
        pool.acquire = MagicMock(return_value=AsyncContextManager(conn))
        repository._pool = pool

    @pytest.mark.asyncio
    async def test_update_delivers_snapshot_before_returning(self, repository):
        snapshots = []
        logged = make_row()
        log = json.loads(logged["communication_log"])
        log.append(
            {"date": START.isoformat(), "message": "Left voicemail", "actor": "Pharmacy Staff"}
        )
        logged["communication_log"] = json.dumps(log)

        conn = MagicMock()
        conn.execute = AsyncMock(return_value="UPDATE 1")
        conn.fetch = AsyncMock(return_value=[logged])
        self.attach_pool(repository, conn)
        repository._subscribers.append(snapshots.append)

        updated = await repository.update("abc123", {"communicationLog": log})

        assert updated is True
        assert len(snapshots) == 1
        (record,) = snapshots[0]
        assert [e.message for e in record.communication_log] == [
            "Subscription created.",
            "Left voicemail",
        ]

    @pytest.mark.asyncio
    async def test_back_to_back_appends_keep_both_entries(self, repository):
        """A second append builds on the first one's snapshot."""
        row = make_row()
        writes = []

        async def execute(query, *args):
            if query.startswith("UPDATE"):
                row["communication_log"] = args[-1]
                writes.append(json.loads(args[-1]))
                return "UPDATE 1"
            return "SELECT 1"

        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=execute)
        conn.fetch = AsyncMock(side_effect=lambda query: [dict(row)])
        self.attach_pool(repository, conn)
        service = SubscriptionService(repository)
        await service.start()

        await service.append_communication_log("abc123", "a")
        await service.append_communication_log("abc123", "b")

        assert [e["message"] for e in writes[-1]] == ["Subscription created.", "a", "b"]

    @pytest.mark.asyncio
    async def test_delete_of_missing_row_publishes_nothing(self, repository):
        snapshots = []
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 0")
        conn.fetch = AsyncMock(return_value=[])
        self.attach_pool(repository, conn)
        repository._subscribers.append(snapshots.append)

        assert await repository.delete("abc123") is False
        assert snapshots == []


class AsyncContextManager:
    """Minimal async context manager yielding a fixed value."""

    def __init__(self, value=None):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, *exc_info):
        return False


class TestRowParsing:
    """Tests for converting database records to subscriptions."""

    def test_row_with_text_json_columns(self, repository):
        subscription = repository._row_to_subscription(make_row())

        assert subscription.id == "abc123"
        assert subscription.status == ON_HOLD
        assert subscription.new_rx_call is True
        assert len(subscription.fulfillments) == 3
        assert subscription.communication_log[0].actor == "System"

    def test_row_with_decoded_json_columns(self, repository):
        row = make_row()
        row["fulfillments"] = json.loads(row["fulfillments"])
        row["communication_log"] = json.loads(row["communication_log"])

        subscription = repository._row_to_subscription(row)

        assert len(subscription.fulfillments) == 3

    def test_row_missing_column(self, repository):
        row = make_row()
        del row["status"]

        with pytest.raises(ValidationError, match="Row parsing failed"):
            repository._row_to_subscription(row)

    def test_row_breaking_invariant(self, repository):
        with pytest.raises(ValidationError):
            repository._row_to_subscription(make_row(duration=6))


@pytest.mark.asyncio
@pytest.mark.skipif(True, reason="PostgreSQL not available in test environment")
async def test_create_and_receive_snapshot(repository) -> None:
    """Test creating a subscription and receiving it through the feed."""
    received = []
    await repository.open()
    try:
        await repository.subscribe(received.append)
        subscription_id = await repository.create(
            build_subscription(
                "Ada Lovelace", 3, "Pending", "Pending", False, now=START, actor="System"
            )
        )
        assert subscription_id
    finally:
        await repository.close()
