"""Subscription storage.

The delivery engine reads subscriptions through the SubscriptionStore
interface and writes statistics back through it. Two backends are
provided: an in-memory store and an SQLite store.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import ValidationError

from oee_monitor.config import settings
from oee_monitor.errors import SubscriptionConfigError, SubscriptionNotFoundError
from oee_monitor.webhooks.events import WebhookEventType
from oee_monitor.webhooks.subscription import (
    RetryPolicy,
    Subscription,
    SubscriptionFilters,
    SubscriptionStatistics,
    SubscriptionStatus,
)

logger = structlog.get_logger(__name__)


class SubscriptionStore(ABC):
    """Interface the delivery engine uses to read and update subscriptions."""

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        """Persist a validated subscription."""

    @abstractmethod
    async def get(self, subscription_id: str) -> Subscription | None:
        """Get a subscription by ID."""

    @abstractmethod
    async def list_all(
        self,
        *,
        status: SubscriptionStatus | None = None,
        event_type: WebhookEventType | str | None = None,
    ) -> list[Subscription]:
        """List subscriptions, optionally filtered by status or event."""

    @abstractmethod
    async def update_statistics(
        self,
        subscription_id: str,
        *,
        success: bool,
        error: str | None = None,
    ) -> SubscriptionStatistics | None:
        """Record a terminal delivery outcome.

        Returns:
            Updated statistics, or None if the subscription is gone.
        """

    @abstractmethod
    async def set_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
    ) -> Subscription | None:
        """Change a subscription's status."""

    @abstractmethod
    async def delete(self, subscription_id: str) -> bool:
        """Delete a subscription."""

    async def find_by_subscribed_event(
        self, event_name: WebhookEventType | str
    ) -> list[Subscription]:
        """Get active subscriptions that declare interest in an event.

        Args:
            event_name: Event name.

        Returns:
            Active subscriptions subscribed to the event.
        """
        return await self.list_all(status=SubscriptionStatus.ACTIVE, event_type=event_name)

    async def register(
        self,
        *,
        name: str,
        url: str,
        events: list[WebhookEventType | str],
        secret: str | None = None,
        description: str = "",
        filters: SubscriptionFilters | dict[str, Any] | None = None,
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
        timeout_ms: int = 30000,
        headers: dict[str, str] | None = None,
        created_by: str | None = None,
    ) -> Subscription:
        """Validate and register a new subscription.

        A secret is generated when none is supplied. The returned object
        carries the secret; afterwards it is only available through
        ``reveal_secret``.

        Raises:
            SubscriptionConfigError: If the subscription is invalid.
        """
        fields: dict[str, Any] = {
            "name": name,
            "url": url,
            "events": events,
            "description": description,
            "timeout_ms": timeout_ms,
            "headers": headers or {},
            "created_by": created_by,
        }
        if secret is not None:
            fields["secret"] = secret
        if filters is not None:
            fields["filters"] = filters
        if retry_policy is not None:
            fields["retry_policy"] = retry_policy

        try:
            subscription = Subscription(**fields)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise SubscriptionConfigError(
                f"Invalid subscription: {errors[0]['field']}: {errors[0]['message']}",
                errors=errors,
            ) from e

        await self.add(subscription)

        logger.info(
            "subscription_registered",
            subscription_id=subscription.id,
            url=str(subscription.url),
            event_count=len(subscription.events),
        )

        return subscription

    async def deactivate(self, subscription_id: str) -> bool:
        """Mark a subscription as failed.

        Returns:
            True if the subscription exists.
        """
        updated = await self.set_status(subscription_id, SubscriptionStatus.FAILED)
        return updated is not None

    async def reactivate(self, subscription_id: str) -> Subscription:
        """Manually return a subscription to active.

        Statistics are kept.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist.
        """
        updated = await self.set_status(subscription_id, SubscriptionStatus.ACTIVE)
        if updated is None:
            raise SubscriptionNotFoundError(subscription_id)
        logger.info("subscription_reactivated", subscription_id=subscription_id)
        return updated

    async def reveal_secret(self, subscription_id: str) -> str:
        """Explicitly reveal a subscription's signing secret.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist.
        """
        subscription = await self.get(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        logger.info("subscription_secret_revealed", subscription_id=subscription_id)
        return subscription.secret


def _matches(
    subscription: Subscription,
    status: SubscriptionStatus | None,
    event_type: WebhookEventType | str | None,
) -> bool:
    if status is not None and subscription.status != status:
        return False
    if event_type is not None:
        name = event_type.value if isinstance(event_type, WebhookEventType) else event_type
        if not subscription.is_subscribed_to(name):
            return False
    return True


class InMemorySubscriptionStore(SubscriptionStore):
    """Process-local subscription store.

    Returned subscriptions are the stored objects, so statistics updates
    are visible to every holder.
    """

    def __init__(self) -> None:
        """Initialize the store."""
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="subscription_store")

    async def add(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    async def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    async def list_all(
        self,
        *,
        status: SubscriptionStatus | None = None,
        event_type: WebhookEventType | str | None = None,
    ) -> list[Subscription]:
        return [
            subscription
            for subscription in self._subscriptions.values()
            if _matches(subscription, status, event_type)
        ]

    async def update_statistics(
        self,
        subscription_id: str,
        *,
        success: bool,
        error: str | None = None,
    ) -> SubscriptionStatistics | None:
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return None
            subscription.record_delivery(success, error)
            return subscription.statistics.model_copy()

    async def set_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
    ) -> Subscription | None:
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return None
            subscription.status = status
            subscription.updated_at = datetime.now(UTC)

        self._logger.info(
            "subscription_status_changed",
            subscription_id=subscription_id,
            status=status.value,
        )
        return subscription

    async def delete(self, subscription_id: str) -> bool:
        async with self._lock:
            if subscription_id not in self._subscriptions:
                return False
            del self._subscriptions[subscription_id]

        self._logger.info("subscription_deleted", subscription_id=subscription_id)
        return True


class SQLiteSubscriptionStore(SubscriptionStore):
    """SQLite-backed subscription store.

    The subscription document is stored as JSON next to its secret, which
    the default serialization excludes.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database. Uses settings if not provided.
        """
        self.db_path = Path(db_path) if db_path else Path(settings.WEBHOOK_DB_PATH)
        self._lock = asyncio.Lock()
        self._initialized = False
        self._logger = logger.bind(component="sqlite_subscription_store")

    async def _ensure_initialized(self) -> None:
        """Ensure database tables exist."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS webhook_subscriptions (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    secret TEXT NOT NULL,
                    document_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_status
                ON webhook_subscriptions(status)
            """)
            await db.commit()

        self._initialized = True
        self._logger.info("storage_initialized", db_path=str(self.db_path))

    async def _save(self, subscription: Subscription) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO webhook_subscriptions (
                    id, status, secret, document_json, created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    subscription.id,
                    subscription.status.value,
                    subscription.secret,
                    subscription.model_dump_json(),
                    subscription.created_at.isoformat(),
                ),
            )
            await db.commit()

    @staticmethod
    def _row_to_subscription(row: dict[str, Any]) -> Subscription:
        document = json.loads(row["document_json"])
        document["secret"] = row["secret"]
        return Subscription.model_validate(document)

    async def add(self, subscription: Subscription) -> Subscription:
        await self._ensure_initialized()
        async with self._lock:
            await self._save(subscription)
        return subscription

    async def get(self, subscription_id: str) -> Subscription | None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM webhook_subscriptions WHERE id = ?",
                (subscription_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None

        return self._row_to_subscription(dict(row))

    async def list_all(
        self,
        *,
        status: SubscriptionStatus | None = None,
        event_type: WebhookEventType | str | None = None,
    ) -> list[Subscription]:
        await self._ensure_initialized()

        query = "SELECT * FROM webhook_subscriptions"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY created_at"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        subscriptions = [self._row_to_subscription(dict(row)) for row in rows]
        return [s for s in subscriptions if _matches(s, None, event_type)]

    async def update_statistics(
        self,
        subscription_id: str,
        *,
        success: bool,
        error: str | None = None,
    ) -> SubscriptionStatistics | None:
        async with self._lock:
            subscription = await self.get(subscription_id)
            if subscription is None:
                return None
            subscription.record_delivery(success, error)
            await self._save(subscription)

        return subscription.statistics

    async def set_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
    ) -> Subscription | None:
        async with self._lock:
            subscription = await self.get(subscription_id)
            if subscription is None:
                return None
            subscription.status = status
            subscription.updated_at = datetime.now(UTC)
            await self._save(subscription)

        self._logger.info(
            "subscription_status_changed",
            subscription_id=subscription_id,
            status=status.value,
        )
        return subscription

    async def delete(self, subscription_id: str) -> bool:
        await self._ensure_initialized()

        async with self._lock, aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM webhook_subscriptions WHERE id = ?",
                (subscription_id,),
            )
            await db.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            self._logger.info("subscription_deleted", subscription_id=subscription_id)
        return deleted


# Global subscription store instance
_store: SubscriptionStore | None = None


def get_subscription_store() -> SubscriptionStore:
    """Get the global subscription store.

    Returns:
        Singleton store, SQLite-backed when WEBHOOK_USE_SQLITE is set.
    """
    global _store
    if _store is None:
        if settings.WEBHOOK_USE_SQLITE:
            _store = SQLiteSubscriptionStore(settings.WEBHOOK_DB_PATH)
        else:
            _store = InMemorySubscriptionStore()
    return _store


def set_subscription_store(store: SubscriptionStore | None) -> None:
    """Set the global subscription store.

    Useful for testing.

    Args:
        store: Store instance, or None to reset.
    """
    global _store
    _store = store
