"""Delivery statistics and audit trail.

Every delivery attempt ends in one of three outcomes (success, retry,
failed). The DeliveryRecorder turns each outcome into subscription
statistics and an immutable audit record, and escalates subscriptions
that fail persistently.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel, ConfigDict, Field

from oee_monitor.config import settings
from oee_monitor.webhooks.store import SubscriptionStore

logger = structlog.get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """Outcome of a single delivery attempt."""

    SUCCESS = "success"
    RETRY = "retry"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the outcome ends the delivery job."""
        return self is not DeliveryOutcome.RETRY


class AuditRecord(BaseModel):
    """Immutable record of one delivery attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: f"aud_{uuid.uuid4().hex[:12]}",
        description="Unique audit record identifier",
    )
    subscription_id: str = Field(..., description="Target subscription")
    subscription_name: str | None = Field(default=None, description="Subscription name")
    url: str | None = Field(default=None, description="Target URL")
    event: str = Field(..., description="Event name delivered")
    outcome: DeliveryOutcome = Field(..., description="Attempt outcome")
    attempt: int = Field(..., description="Attempt number, 1-based", ge=1)
    max_attempts: int = Field(..., description="Attempts allowed for the job", ge=1)
    status_code: int | None = Field(default=None, description="HTTP status if any")
    error: str | None = Field(default=None, description="Error message for failures")
    duration_ms: float | None = Field(default=None, description="Attempt duration")
    job_id: str | None = Field(default=None, description="Delivery job identifier")
    test: bool = Field(default=False, description="Whether this was a test ping")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the attempt finished",
    )

    @property
    def action(self) -> str:
        """Audit action name, e.g. ``webhook_retry``."""
        return f"webhook_{self.outcome.value}"


class AuditLog(ABC):
    """Append-only store of delivery audit records."""

    @abstractmethod
    async def record(self, record: AuditRecord) -> None:
        """Append a record."""

    @abstractmethod
    async def list_records(
        self,
        *,
        subscription_id: str | None = None,
        outcome: DeliveryOutcome | None = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        """List records, newest first."""


class InMemoryAuditLog(AuditLog):
    """Bounded in-memory audit log.

    The oldest records are discarded once ``max_records`` is reached.
    """

    def __init__(self, max_records: int | None = None) -> None:
        """Initialize the log.

        Args:
            max_records: Capacity. Uses settings if not provided.
        """
        self._records: deque[AuditRecord] = deque(
            maxlen=max_records or settings.WEBHOOK_AUDIT_HISTORY_SIZE
        )

    def __len__(self) -> int:
        return len(self._records)

    async def record(self, record: AuditRecord) -> None:
        self._records.append(record)

    async def list_records(
        self,
        *,
        subscription_id: str | None = None,
        outcome: DeliveryOutcome | None = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        records = [
            r for r in reversed(self._records)
            if (subscription_id is None or r.subscription_id == subscription_id)
            and (outcome is None or r.outcome == outcome)
        ]
        return records[:limit]


class SQLiteAuditLog(AuditLog):
    """SQLite-backed audit log."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the log.

        Args:
            db_path: Path to SQLite database. Uses settings if not provided.
        """
        self.db_path = Path(db_path) if db_path else Path(settings.WEBHOOK_DB_PATH)
        self._initialized = False
        self._logger = logger.bind(component="sqlite_audit_log")

    async def _ensure_initialized(self) -> None:
        """Ensure database tables exist."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS webhook_audit_log (
                    id TEXT PRIMARY KEY,
                    subscription_id TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_subscription
                ON webhook_audit_log(subscription_id, created_at)
            """)
            await db.commit()

        self._initialized = True
        self._logger.info("storage_initialized", db_path=str(self.db_path))

    async def record(self, record: AuditRecord) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO webhook_audit_log (
                    id, subscription_id, outcome, record_json, created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.subscription_id,
                    record.outcome.value,
                    record.model_dump_json(),
                    record.created_at.isoformat(),
                ),
            )
            await db.commit()

    async def list_records(
        self,
        *,
        subscription_id: str | None = None,
        outcome: DeliveryOutcome | None = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        await self._ensure_initialized()

        conditions = []
        params: list[Any] = []
        if subscription_id is not None:
            conditions.append("subscription_id = ?")
            params.append(subscription_id)
        if outcome is not None:
            conditions.append("outcome = ?")
            params.append(outcome.value)

        query = "SELECT record_json FROM webhook_audit_log"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [AuditRecord.model_validate_json(row[0]) for row in rows]


class DeliveryRecorder:
    """Statistics and audit sink for the dispatcher.

    ``record_delivery_outcome`` never raises; failures are logged so the
    dispatcher keeps running whatever happens to the stores.
    """

    def __init__(self, store: SubscriptionStore, audit_log: AuditLog) -> None:
        """Initialize the recorder.

        Args:
            store: Subscription store receiving statistics.
            audit_log: Audit log receiving records.
        """
        self._store = store
        self._audit_log = audit_log
        self._logger = logger.bind(component="delivery_recorder")

    @property
    def audit_log(self) -> AuditLog:
        """Audit log receiving records."""
        return self._audit_log

    async def record_delivery_outcome(
        self,
        subscription_id: str,
        outcome: DeliveryOutcome,
        *,
        event: str,
        attempt: int,
        max_attempts: int,
        status_code: int | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
        subscription_name: str | None = None,
        url: str | None = None,
        job_id: str | None = None,
        test: bool = False,
    ) -> None:
        """Record the outcome of a delivery attempt.

        Terminal outcomes of real deliveries update subscription
        statistics and may deactivate the subscription. Every outcome
        produces an audit record.

        Args:
            subscription_id: Target subscription.
            outcome: Attempt outcome.
            event: Event name delivered.
            attempt: Attempt number, 1-based.
            max_attempts: Attempts allowed for the job.
            status_code: HTTP status if a response arrived.
            error: Error message for failures.
            duration_ms: Attempt duration.
            subscription_name: Subscription name for the audit trail.
            url: Target URL for the audit trail.
            job_id: Delivery job identifier.
            test: Whether this was a test ping (no statistics).
        """
        if outcome.is_terminal and not test:
            await self._update_statistics(
                subscription_id,
                success=outcome is DeliveryOutcome.SUCCESS,
                error=error,
            )

        try:
            await self._audit_log.record(
                AuditRecord(
                    subscription_id=subscription_id,
                    subscription_name=subscription_name,
                    url=url,
                    event=event,
                    outcome=outcome,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    status_code=status_code,
                    error=error,
                    duration_ms=duration_ms,
                    job_id=job_id,
                    test=test,
                )
            )
        except Exception as e:
            self._logger.error(
                "audit_record_failed",
                subscription_id=subscription_id,
                outcome=outcome.value,
                error=str(e),
            )

    async def _update_statistics(
        self,
        subscription_id: str,
        *,
        success: bool,
        error: str | None,
    ) -> None:
        try:
            statistics = await self._store.update_statistics(
                subscription_id, success=success, error=error
            )
            if statistics is None:
                self._logger.warning(
                    "statistics_subscription_missing",
                    subscription_id=subscription_id,
                )
                return

            if statistics.exceeds_failure_threshold():
                subscription = await self._store.get(subscription_id)
                if subscription is not None and subscription.is_active:
                    await self._store.deactivate(subscription_id)
                    self._logger.warning(
                        "subscription_auto_deactivated",
                        subscription_id=subscription_id,
                        total_sent=statistics.total_sent,
                        total_failed=statistics.total_failed,
                        failure_rate=round(statistics.failure_rate, 3),
                    )
        except Exception as e:
            self._logger.error(
                "statistics_update_failed",
                subscription_id=subscription_id,
                error=str(e),
            )


# Global audit log instance
_audit_log: AuditLog | None = None


def get_audit_log() -> AuditLog:
    """Get the global audit log.

    Returns:
        Singleton log, SQLite-backed when WEBHOOK_USE_SQLITE is set.
    """
    global _audit_log
    if _audit_log is None:
        if settings.WEBHOOK_USE_SQLITE:
            _audit_log = SQLiteAuditLog(settings.WEBHOOK_DB_PATH)
        else:
            _audit_log = InMemoryAuditLog()
    return _audit_log


def set_audit_log(audit_log: AuditLog | None) -> None:
    """Set the global audit log.

    Useful for testing.

    Args:
        audit_log: AuditLog instance, or None to reset.
    """
    global _audit_log
    _audit_log = audit_log
