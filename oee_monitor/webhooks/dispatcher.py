"""Webhook delivery dispatcher.

Drains the delivery queue with a bounded pool of concurrent asyncio
tasks, sends signed HTTP requests and re-enqueues failed jobs after an
exponential backoff delay.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from oee_monitor.config import settings
from oee_monitor.errors import DeliveryError
from oee_monitor.webhooks.audit import DeliveryOutcome, DeliveryRecorder, get_audit_log
from oee_monitor.webhooks.events import TEST_EVENT, build_envelope
from oee_monitor.webhooks.queue import DeliveryJob, DeliveryQueue
from oee_monitor.webhooks.signing import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    SOURCE_HEADER,
    TIMESTAMP_HEADER,
    format_signature,
    serialize_payload,
    sign_payload,
)
from oee_monitor.webhooks.store import SubscriptionStore, get_subscription_store
from oee_monitor.webhooks.subscription import Subscription

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    """Result of a single HTTP delivery attempt."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    duration_ms: float = 0.0


class QueueSnapshot(BaseModel):
    """Read-only view of the dispatcher for monitoring."""

    queue_length: int = Field(..., description="Jobs waiting for a worker")
    in_flight: int = Field(..., description="Deliveries currently being sent")
    max_concurrent: int = Field(..., description="Concurrency cap")
    pending_retries: int = Field(..., description="Jobs waiting on a retry timer")
    processing: bool = Field(..., description="Whether the drain loop is running")


class WebhookTestResult(BaseModel):
    """Result of a test ping."""

    subscription_id: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    duration_ms: float = 0.0


class WebhookDispatcher:
    """Delivers queued jobs to subscriber endpoints.

    Features:
    - System-wide cap on in-flight HTTP deliveries
    - Drain loop that starts on enqueue and stops when the queue empties
    - HMAC signature over the exact transmitted bytes
    - Exponential backoff retries on timers that hold no worker slot
    - Statistics and audit recorded after every attempt
    """

    def __init__(
        self,
        store: SubscriptionStore | None = None,
        recorder: DeliveryRecorder | None = None,
        *,
        max_concurrent: int | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Subscription store (uses global if not provided).
            recorder: Statistics and audit sink (built from the store and the
                global audit log if not provided).
            max_concurrent: Max in-flight deliveries (uses settings if not
                provided).
        """
        self._store = store or get_subscription_store()
        self._recorder = recorder or DeliveryRecorder(self._store, get_audit_log())
        self._max_concurrent = (
            max_concurrent if max_concurrent is not None else settings.WEBHOOK_MAX_CONCURRENT
        )
        if self._max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._queue = DeliveryQueue()
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._in_flight = 0
        self._drain_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._retry_handles: set[asyncio.TimerHandle] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._logger = logger.bind(component="webhook_dispatcher")

    @property
    def store(self) -> SubscriptionStore:
        """Subscription store the dispatcher reads from."""
        return self._store

    @property
    def max_concurrent(self) -> int:
        """Concurrency cap."""
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        """Deliveries currently being sent."""
        return self._in_flight

    def enqueue(self, job: DeliveryJob) -> None:
        """Add a job to the queue and make sure the drain loop runs.

        Must be called from the event loop that owns the dispatcher.

        Args:
            job: Job to deliver.
        """
        self._queue.push(job)
        self._idle.clear()
        self._logger.debug(
            "delivery_enqueued",
            job_id=job.job_id,
            subscription_id=job.subscription_id,
            attempt=job.attempt + 1,
            queue_length=len(self._queue),
        )
        self._ensure_draining()

    def _ensure_draining(self) -> None:
        """Start the drain loop unless it is already running."""
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        """Hand queued jobs to workers while capacity allows."""
        while len(self._queue) > 0:
            await self._semaphore.acquire()

            job = self._queue.pop()
            if job is None:
                # Queue was cleared while waiting for a slot
                self._semaphore.release()
                break

            self._in_flight += 1
            task = asyncio.create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job: DeliveryJob) -> None:
        """Process one job inside a worker slot."""
        try:
            await self._process(job)
        except Exception as e:
            self._logger.error(
                "delivery_job_crashed",
                job_id=job.job_id,
                subscription_id=job.subscription_id,
                error=str(e),
                exc_info=True,
            )
        finally:
            self._in_flight -= 1
            self._semaphore.release()
            self._check_idle()

    async def _process(self, job: DeliveryJob) -> None:
        """Attempt a job and apply the retry policy to its outcome.

        Args:
            job: Job to attempt.
        """
        subscription = await self._store.get(job.subscription_id)
        if subscription is None:
            self._logger.warning(
                "delivery_abandoned_subscription_missing",
                job_id=job.job_id,
                subscription_id=job.subscription_id,
            )
            return

        policy = subscription.retry_policy
        result = await self._attempt_delivery(subscription, job.payload)

        common: dict[str, Any] = {
            "event": job.event_name,
            "attempt": job.attempt + 1,
            "max_attempts": policy.max_attempts,
            "status_code": result.status_code,
            "duration_ms": result.duration_ms,
            "subscription_name": subscription.name,
            "url": str(subscription.url),
            "job_id": job.job_id,
        }

        if result.success:
            await self._recorder.record_delivery_outcome(
                subscription.id, DeliveryOutcome.SUCCESS, **common
            )
            return

        if job.attempt < policy.max_retries:
            delay_ms = policy.delay_ms(job.attempt)
            await self._recorder.record_delivery_outcome(
                subscription.id, DeliveryOutcome.RETRY, error=result.error, **common
            )
            self._logger.info(
                "scheduling_retry",
                job_id=job.job_id,
                subscription_id=subscription.id,
                delay_ms=delay_ms,
                next_attempt=job.attempt + 2,
                max_attempts=policy.max_attempts,
            )
            self._schedule_retry(job.next_attempt(), delay_ms / 1000)
            return

        await self._recorder.record_delivery_outcome(
            subscription.id, DeliveryOutcome.FAILED, error=result.error, **common
        )
        self._logger.error(
            "delivery_failed_permanently",
            job_id=job.job_id,
            subscription_id=subscription.id,
            attempts=policy.max_attempts,
            error=result.error,
        )

    def _schedule_retry(self, job: DeliveryJob, delay_seconds: float) -> None:
        """Re-enqueue a job after a delay without holding a worker slot.

        Args:
            job: Job for the next attempt.
            delay_seconds: Delay before it is queued again.
        """
        loop = asyncio.get_running_loop()

        def _requeue() -> None:
            self._retry_handles.discard(handle)
            self.enqueue(job)

        handle = loop.call_later(delay_seconds, _requeue)
        self._retry_handles.add(handle)
        self._idle.clear()

    def _build_headers(
        self,
        subscription: Subscription,
        payload: dict[str, Any],
        body: bytes,
    ) -> dict[str, str]:
        """Build request headers for a delivery.

        Custom subscription headers go first so they cannot replace the
        signature or routing headers.
        """
        return {
            **subscription.headers,
            "Content-Type": "application/json",
            "User-Agent": settings.WEBHOOK_USER_AGENT,
            SIGNATURE_HEADER: format_signature(sign_payload(subscription.secret, body)),
            EVENT_HEADER: str(payload.get("event", "")),
            TIMESTAMP_HEADER: str(payload.get("timestamp", "")),
            SOURCE_HEADER: settings.WEBHOOK_SOURCE,
        }

    async def _attempt_delivery(
        self,
        subscription: Subscription,
        payload: dict[str, Any],
    ) -> DeliveryResult:
        """Make a single delivery attempt.

        The payload is serialized once and the same bytes are signed and
        sent.

        Args:
            subscription: Target subscription.
            payload: Envelope to deliver.

        Returns:
            Attempt result; any non-2xx response or transport error is a
            failure.
        """
        body = serialize_payload(payload)
        headers = self._build_headers(subscription, payload, body)
        url = str(subscription.url)
        start = time.monotonic()

        self._logger.debug(
            "attempting_delivery",
            subscription_id=subscription.id,
            url=url,
            payload_length=len(body),
        )

        try:
            async with httpx.AsyncClient(timeout=subscription.timeout_seconds) as client:
                response = await client.post(url, content=body, headers=headers)

            if not response.is_success:
                raise DeliveryError(
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                )

        except DeliveryError as e:
            self._logger.warning(
                "delivery_non_success_response",
                subscription_id=subscription.id,
                status_code=e.status_code,
            )
            return DeliveryResult(
                success=False,
                status_code=e.status_code,
                error=e.message,
                duration_ms=_elapsed_ms(start),
            )

        except httpx.TimeoutException:
            self._logger.warning(
                "delivery_timeout",
                subscription_id=subscription.id,
                timeout_ms=subscription.timeout_ms,
            )
            return DeliveryResult(
                success=False,
                error=f"Request timeout after {subscription.timeout_ms}ms",
                duration_ms=_elapsed_ms(start),
            )

        except httpx.ConnectError as e:
            self._logger.warning(
                "delivery_connection_error",
                subscription_id=subscription.id,
                error=str(e),
            )
            return DeliveryResult(
                success=False,
                error=f"Connection error: {e}",
                duration_ms=_elapsed_ms(start),
            )

        except Exception as e:
            self._logger.warning(
                "delivery_unexpected_error",
                subscription_id=subscription.id,
                error=str(e),
            )
            return DeliveryResult(
                success=False,
                error=str(e) or e.__class__.__name__,
                duration_ms=_elapsed_ms(start),
            )

        self._logger.info(
            "delivery_success",
            subscription_id=subscription.id,
            status_code=response.status_code,
        )
        return DeliveryResult(
            success=True,
            status_code=response.status_code,
            duration_ms=_elapsed_ms(start),
        )

    async def send_test_event(self, subscription_id: str) -> WebhookTestResult | None:
        """Send a test ping to a subscription, bypassing the queue.

        A single attempt is made, within the concurrency cap. The attempt
        is audited but does not touch subscription statistics.

        Args:
            subscription_id: Subscription to test.

        Returns:
            Result if the subscription exists, None otherwise.
        """
        subscription = await self._store.get(subscription_id)
        if subscription is None:
            return None

        payload = build_envelope(
            TEST_EVENT,
            {
                "message": "This is a test webhook from the OEE Monitor system",
                "webhookId": subscription.id,
                "webhookName": subscription.name,
            },
            test=True,
        )

        async with self._semaphore:
            self._in_flight += 1
            self._idle.clear()
            try:
                result = await self._attempt_delivery(subscription, payload)
            finally:
                self._in_flight -= 1
                self._check_idle()

        await self._recorder.record_delivery_outcome(
            subscription.id,
            DeliveryOutcome.SUCCESS if result.success else DeliveryOutcome.FAILED,
            event=TEST_EVENT,
            attempt=1,
            max_attempts=1,
            status_code=result.status_code,
            error=result.error,
            duration_ms=result.duration_ms,
            subscription_name=subscription.name,
            url=str(subscription.url),
            test=True,
        )

        self._logger.info(
            "test_event_sent",
            subscription_id=subscription.id,
            success=result.success,
            status_code=result.status_code,
        )

        return WebhookTestResult(
            subscription_id=subscription.id,
            success=result.success,
            status_code=result.status_code,
            error=result.error,
            duration_ms=result.duration_ms,
        )

    def queue_stats(self) -> QueueSnapshot:
        """Snapshot of queue and pool state for monitoring."""
        return QueueSnapshot(
            queue_length=len(self._queue),
            in_flight=self._in_flight,
            max_concurrent=self._max_concurrent,
            pending_retries=len(self._retry_handles),
            processing=self._drain_task is not None and not self._drain_task.done(),
        )

    def clear_queue(self) -> int:
        """Drop queued jobs and cancel pending retries.

        In-flight deliveries complete normally.

        Returns:
            Number of jobs dropped.
        """
        dropped = self._queue.clear() + len(self._retry_handles)
        for handle in self._retry_handles:
            handle.cancel()
        self._retry_handles.clear()

        self._logger.info("delivery_queue_cleared", dropped=dropped)
        self._check_idle()
        return dropped

    def _check_idle(self) -> None:
        """Signal waiters once nothing is queued, in flight or waiting to retry."""
        if len(self._queue) == 0 and self._in_flight == 0 and not self._retry_handles:
            self._idle.set()

    async def wait_until_idle(self, timeout: float | None = None) -> None:
        """Wait until no job is queued, in flight or waiting to retry.

        Args:
            timeout: Maximum seconds to wait.

        Raises:
            TimeoutError: If the dispatcher is still busy after ``timeout``.
        """
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def shutdown(self) -> None:
        """Stop dispatching and wait for in-flight deliveries.

        Pending retries are cancelled and queued jobs are not started.
        """
        for handle in self._retry_handles:
            handle.cancel()
        self._retry_handles.clear()
        self._check_idle()

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            await asyncio.gather(self._drain_task, return_exceptions=True)

        if self._tasks:
            self._logger.info(
                "waiting_for_pending_deliveries",
                count=len(self._tasks),
                queued=len(self._queue),
            )
            await asyncio.gather(*self._tasks, return_exceptions=True)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)


# Global dispatcher instance
_dispatcher: WebhookDispatcher | None = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get the global webhook dispatcher.

    Returns:
        Singleton WebhookDispatcher.
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher


def set_webhook_dispatcher(dispatcher: WebhookDispatcher | None) -> None:
    """Set the global webhook dispatcher.

    Useful for testing.

    Args:
        dispatcher: WebhookDispatcher instance, or None to reset.
    """
    global _dispatcher
    _dispatcher = dispatcher
