"""Trigger evaluation.

Entry point for the rest of the application: ``trigger`` evaluates a
domain event against the active subscriptions and enqueues one delivery
job per match. It never raises into the business operation that raised
the event.
"""

import asyncio
import copy
from typing import Any

import structlog

from oee_monitor.webhooks.dispatcher import WebhookDispatcher, get_webhook_dispatcher
from oee_monitor.webhooks.events import (
    WebhookEvent,
    WebhookEventType,
    build_envelope,
    is_known_event,
)
from oee_monitor.webhooks.queue import DeliveryJob
from oee_monitor.webhooks.store import SubscriptionStore

logger = structlog.get_logger(__name__)


class TriggerEvaluator:
    """Matches domain events to subscriptions and enqueues deliveries."""

    def __init__(
        self,
        dispatcher: WebhookDispatcher | None = None,
        store: SubscriptionStore | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            dispatcher: Dispatcher receiving jobs (uses global if not provided).
            store: Subscription store (defaults to the dispatcher's store).
        """
        self._dispatcher = dispatcher or get_webhook_dispatcher()
        self._store = store or self._dispatcher.store
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="trigger_evaluator")

    async def evaluate(
        self,
        event_name: WebhookEventType | str,
        event_data: dict[str, Any],
        /,
        **options: Any,
    ) -> list[DeliveryJob]:
        """Build delivery jobs for every subscription matching an event.

        A subscription whose filter cannot be evaluated is skipped and
        logged; the other subscriptions are still considered.

        Args:
            event_name: Event name.
            event_data: Event payload.
            **options: Extra top-level envelope keys.

        Returns:
            One job per matching subscription.
        """
        name = event_name.value if isinstance(event_name, WebhookEventType) else event_name

        if not is_known_event(name):
            self._logger.warning("unknown_event_type", event_type=name)
            return []

        subscriptions = await self._store.find_by_subscribed_event(name)
        if not subscriptions:
            self._logger.debug("no_subscriptions_for_event", event_type=name)
            return []

        matched = []
        for subscription in subscriptions:
            try:
                if subscription.should_trigger(name, event_data):
                    matched.append(subscription)
            except Exception as e:
                self._logger.warning(
                    "filter_evaluation_failed",
                    subscription_id=subscription.id,
                    event_type=name,
                    error=str(e),
                )

        if not matched:
            self._logger.debug("no_subscriptions_passed_filters", event_type=name)
            return []

        # Snapshot so later changes by the caller never reach subscribers
        payload = build_envelope(name, copy.deepcopy(event_data), **options)

        return [
            DeliveryJob(subscription_id=subscription.id, payload=payload)
            for subscription in matched
        ]

    async def trigger(
        self,
        event_name: WebhookEventType | str,
        event_data: dict[str, Any],
        /,
        **options: Any,
    ) -> None:
        """Evaluate an event and enqueue matching deliveries.

        Never raises; evaluation errors are logged and the event is
        dropped for delivery purposes.

        Args:
            event_name: Event name.
            event_data: Event payload.
            **options: Extra top-level envelope keys.
        """
        try:
            jobs = await self.evaluate(event_name, event_data, **options)
            for job in jobs:
                self._dispatcher.enqueue(job)
        except Exception as e:
            self._logger.error(
                "trigger_failed",
                event_type=str(getattr(event_name, "value", event_name)),
                error=str(e),
                exc_info=True,
            )
            return

        if jobs:
            self._logger.info(
                "event_triggered",
                event_type=jobs[0].event_name,
                delivery_count=len(jobs),
            )

    async def trigger_event(self, event: WebhookEvent, **options: Any) -> None:
        """Trigger a prebuilt event, keeping its timestamp.

        Args:
            event: Event to deliver.
            **options: Extra top-level envelope keys.
        """
        await self.trigger(event.name, event.data, **{"timestamp": event.timestamp, **options})

    def trigger_nowait(
        self,
        event_name: WebhookEventType | str,
        event_data: dict[str, Any],
        /,
        **options: Any,
    ) -> asyncio.Task[None]:
        """Schedule ``trigger`` in the background and return immediately.

        Args:
            event_name: Event name.
            event_data: Event payload.
            **options: Extra top-level envelope keys.

        Returns:
            The background task.
        """
        task = asyncio.get_running_loop().create_task(
            self.trigger(event_name, event_data, **options)
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Wait for background trigger evaluations to finish."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


# Global evaluator instance
_evaluator: TriggerEvaluator | None = None


def get_webhook_trigger() -> TriggerEvaluator:
    """Get the global trigger evaluator.

    Returns:
        Singleton TriggerEvaluator.
    """
    global _evaluator
    if _evaluator is None:
        _evaluator = TriggerEvaluator()
    return _evaluator


def set_webhook_trigger(evaluator: TriggerEvaluator | None) -> None:
    """Set the global trigger evaluator.

    Useful for testing.

    Args:
        evaluator: TriggerEvaluator instance, or None to reset.
    """
    global _evaluator
    _evaluator = evaluator


async def trigger(
    event_name: WebhookEventType | str,
    event_data: dict[str, Any],
    /,
    **options: Any,
) -> None:
    """Trigger an event through the global evaluator.

    Example:
        await trigger(
            WebhookEventType.PRODUCTION_COMPLETED,
            {"machineId": "m-42", "goodParts": 980},
        )
    """
    await get_webhook_trigger().trigger(event_name, event_data, **options)
