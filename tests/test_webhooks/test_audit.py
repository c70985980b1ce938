"""Tests for delivery statistics and audit trail."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from oee_monitor.webhooks.audit import (
    AuditRecord,
    DeliveryOutcome,
    DeliveryRecorder,
    InMemoryAuditLog,
    SQLiteAuditLog,
)
from oee_monitor.webhooks.store import InMemorySubscriptionStore
from oee_monitor.webhooks.subscription import Subscription, SubscriptionStatus

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store():
    """Create test subscription store."""
    return InMemorySubscriptionStore()


@pytest.fixture
def audit_log():
    """Create test audit log."""
    return InMemoryAuditLog()


@pytest.fixture
def recorder(store, audit_log):
    """Create test delivery recorder."""
    return DeliveryRecorder(store, audit_log)


@pytest.fixture
def subscription():
    """Create a sample subscription (not yet stored)."""
    return Subscription(
        name="MES bridge",
        url="https://hooks.example.com/oee",
        events=["production.completed"],
    )


@pytest.fixture
def temp_db():
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield Path(f.name)


def _record(subscription_id: str, outcome: DeliveryOutcome, **fields) -> AuditRecord:
    return AuditRecord(
        subscription_id=subscription_id,
        event="production.completed",
        outcome=outcome,
        attempt=fields.pop("attempt", 1),
        max_attempts=fields.pop("max_attempts", 4),
        **fields,
    )


# ============================================================================
# Audit Record Tests
# ============================================================================


class TestAuditRecord:
    """Tests for audit records."""

    def test_action_names(self):
        """Test action names follow the outcome."""
        assert _record("wh_1", DeliveryOutcome.SUCCESS).action == "webhook_success"
        assert _record("wh_1", DeliveryOutcome.RETRY).action == "webhook_retry"
        assert _record("wh_1", DeliveryOutcome.FAILED).action == "webhook_failed"

    def test_terminal_outcomes(self):
        """Test only success and failed end a job."""
        assert DeliveryOutcome.SUCCESS.is_terminal
        assert DeliveryOutcome.FAILED.is_terminal
        assert not DeliveryOutcome.RETRY.is_terminal

    def test_frozen(self):
        """Test records are immutable."""
        record = _record("wh_1", DeliveryOutcome.SUCCESS)

        with pytest.raises(ValidationError):
            record.outcome = DeliveryOutcome.FAILED


# ============================================================================
# Audit Log Tests
# ============================================================================


class TestInMemoryAuditLog:
    """Tests for the in-memory audit log."""

    @pytest.mark.asyncio
    async def test_newest_first(self, audit_log):
        """Test records are listed newest first."""
        await audit_log.record(_record("wh_1", DeliveryOutcome.RETRY, attempt=1))
        await audit_log.record(_record("wh_1", DeliveryOutcome.SUCCESS, attempt=2))

        records = await audit_log.list_records()

        assert [r.attempt for r in records] == [2, 1]

    @pytest.mark.asyncio
    async def test_filters(self, audit_log):
        """Test filtering by subscription and outcome."""
        await audit_log.record(_record("wh_1", DeliveryOutcome.RETRY))
        await audit_log.record(_record("wh_1", DeliveryOutcome.FAILED))
        await audit_log.record(_record("wh_2", DeliveryOutcome.FAILED))

        assert len(await audit_log.list_records(subscription_id="wh_1")) == 2
        assert len(await audit_log.list_records(outcome=DeliveryOutcome.FAILED)) == 2
        assert len(await audit_log.list_records(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_bounded(self):
        """Test the oldest records are discarded at capacity."""
        audit_log = InMemoryAuditLog(max_records=2)
        for attempt in range(1, 4):
            await audit_log.record(_record("wh_1", DeliveryOutcome.RETRY, attempt=attempt))

        assert len(audit_log) == 2
        assert [r.attempt for r in await audit_log.list_records()] == [3, 2]


class TestSQLiteAuditLog:
    """Tests for the SQLite audit log."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, temp_db):
        """Test records persist and round-trip."""
        audit_log = SQLiteAuditLog(db_path=temp_db)
        await audit_log.record(
            _record("wh_1", DeliveryOutcome.RETRY, status_code=503, error="HTTP 503")
        )
        await audit_log.record(_record("wh_1", DeliveryOutcome.SUCCESS, attempt=2))
        await audit_log.record(_record("wh_2", DeliveryOutcome.FAILED))

        records = await audit_log.list_records(subscription_id="wh_1")

        assert [r.outcome for r in records] == [DeliveryOutcome.SUCCESS, DeliveryOutcome.RETRY]
        assert records[1].status_code == 503
        assert records[1].error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_filter_by_outcome(self, temp_db):
        """Test filtering by outcome."""
        audit_log = SQLiteAuditLog(db_path=temp_db)
        await audit_log.record(_record("wh_1", DeliveryOutcome.RETRY))
        await audit_log.record(_record("wh_1", DeliveryOutcome.FAILED))

        records = await audit_log.list_records(outcome=DeliveryOutcome.FAILED)

        assert len(records) == 1
        assert records[0].outcome == DeliveryOutcome.FAILED


# ============================================================================
# Recorder Tests
# ============================================================================


class TestDeliveryRecorder:
    """Tests for delivery outcome recording."""

    @pytest.mark.asyncio
    async def test_success_updates_statistics(self, recorder, store, audit_log, subscription):
        """Test a success updates statistics and is audited."""
        await store.add(subscription)

        await recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.SUCCESS,
            event="production.completed",
            attempt=1,
            max_attempts=4,
            status_code=200,
        )

        assert subscription.statistics.total_success == 1
        records = await audit_log.list_records()
        assert len(records) == 1
        assert records[0].status_code == 200
        assert records[0].action == "webhook_success"

    @pytest.mark.asyncio
    async def test_retry_does_not_count(self, recorder, store, audit_log, subscription):
        """Test retries are audited but not counted."""
        await store.add(subscription)

        await recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.RETRY,
            event="production.completed",
            attempt=1,
            max_attempts=4,
            error="HTTP 503",
        )

        assert subscription.statistics.total_sent == 0
        assert len(await audit_log.list_records()) == 1

    @pytest.mark.asyncio
    async def test_failed_updates_statistics(self, recorder, store, subscription):
        """Test a permanent failure is counted with its error."""
        await store.add(subscription)

        await recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.FAILED,
            event="production.completed",
            attempt=4,
            max_attempts=4,
            error="Connection error: refused",
        )

        assert subscription.statistics.total_failed == 1
        assert subscription.statistics.last_error == "Connection error: refused"

    @pytest.mark.asyncio
    async def test_test_ping_skips_statistics(self, recorder, store, audit_log, subscription):
        """Test test pings are audited without statistics."""
        await store.add(subscription)

        await recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.FAILED,
            event="webhook.test",
            attempt=1,
            max_attempts=1,
            error="HTTP 404",
            test=True,
        )

        assert subscription.statistics.total_sent == 0
        records = await audit_log.list_records()
        assert records[0].test is True

    @pytest.mark.asyncio
    async def test_auto_deactivation(self, recorder, store, subscription):
        """Test persistent failure deactivates the subscription."""
        await store.add(subscription)

        for outcome in [DeliveryOutcome.SUCCESS] * 2 + [DeliveryOutcome.FAILED] * 8:
            await recorder.record_delivery_outcome(
                subscription.id, outcome, event="production.completed", attempt=1, max_attempts=1
            )

        # 10 sent, 8 failed: still active
        assert subscription.status == SubscriptionStatus.ACTIVE

        await recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.FAILED,
            event="production.completed",
            attempt=1,
            max_attempts=1,
        )

        # 11 sent, 9 failed: rate 0.818
        assert subscription.status == SubscriptionStatus.FAILED
        assert await store.find_by_subscribed_event("production.completed") == []

    @pytest.mark.asyncio
    async def test_no_deactivation_at_threshold(self, recorder, store, subscription):
        """Test ten straight failures do not deactivate."""
        await store.add(subscription)

        for _ in range(10):
            await recorder.record_delivery_outcome(
                subscription.id,
                DeliveryOutcome.FAILED,
                event="production.completed",
                attempt=1,
                max_attempts=1,
            )

        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_subscription_still_audited(self, recorder, audit_log):
        """Test outcomes for deleted subscriptions are still audited."""
        await recorder.record_delivery_outcome(
            "wh_gone",
            DeliveryOutcome.SUCCESS,
            event="production.completed",
            attempt=1,
            max_attempts=1,
        )

        assert len(await audit_log.list_records(subscription_id="wh_gone")) == 1

    @pytest.mark.asyncio
    async def test_store_errors_swallowed(self, audit_log):
        """Test statistics and audit failures never raise."""
        store = MagicMock()
        store.update_statistics = AsyncMock(side_effect=RuntimeError("db down"))
        failing_log = MagicMock()
        failing_log.record = AsyncMock(side_effect=RuntimeError("disk full"))
        recorder = DeliveryRecorder(store, failing_log)

        # Should not raise
        await recorder.record_delivery_outcome(
            "wh_1",
            DeliveryOutcome.FAILED,
            event="production.completed",
            attempt=1,
            max_attempts=1,
        )

        store.update_statistics.assert_awaited_once()
        failing_log.record.assert_awaited_once()
