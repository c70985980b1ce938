"""Outbound webhook delivery for domain events.

This module provides:
- WebhookEventType: Catalogue of deliverable domain events
- Subscription: Subscriber endpoint, filters and retry policy
- SubscriptionStore: Where subscriptions are read and statistics written
- TriggerEvaluator / trigger: Matching events to subscriptions
- WebhookDispatcher: Bounded-concurrency delivery with retry and backoff
- DeliveryRecorder: Delivery statistics and audit trail
- HMAC signatures over the transmitted payload bytes
"""

from oee_monitor.webhooks.audit import (
    AuditLog,
    AuditRecord,
    DeliveryOutcome,
    DeliveryRecorder,
    InMemoryAuditLog,
    SQLiteAuditLog,
    get_audit_log,
    set_audit_log,
)
from oee_monitor.webhooks.dispatcher import (
    QueueSnapshot,
    WebhookDispatcher,
    WebhookTestResult,
    get_webhook_dispatcher,
    set_webhook_dispatcher,
)
from oee_monitor.webhooks.events import (
    TEST_EVENT,
    EventTypeInfo,
    WebhookEvent,
    WebhookEventType,
    build_envelope,
    list_event_types,
)
from oee_monitor.webhooks.queue import DeliveryJob, DeliveryQueue
from oee_monitor.webhooks.signing import (
    format_signature,
    serialize_payload,
    sign_payload,
    verify_from_headers,
    verify_signature,
)
from oee_monitor.webhooks.store import (
    InMemorySubscriptionStore,
    SQLiteSubscriptionStore,
    SubscriptionStore,
    get_subscription_store,
    set_subscription_store,
)
from oee_monitor.webhooks.subscription import (
    RetryPolicy,
    Subscription,
    SubscriptionFilters,
    SubscriptionStatistics,
    SubscriptionStatus,
)
from oee_monitor.webhooks.trigger import (
    TriggerEvaluator,
    get_webhook_trigger,
    set_webhook_trigger,
    trigger,
)

__all__ = [
    # Events
    "TEST_EVENT",
    "EventTypeInfo",
    "WebhookEvent",
    "WebhookEventType",
    "build_envelope",
    "list_event_types",
    # Subscriptions
    "RetryPolicy",
    "Subscription",
    "SubscriptionFilters",
    "SubscriptionStatistics",
    "SubscriptionStatus",
    # Stores
    "InMemorySubscriptionStore",
    "SQLiteSubscriptionStore",
    "SubscriptionStore",
    "get_subscription_store",
    "set_subscription_store",
    # Audit
    "AuditLog",
    "AuditRecord",
    "DeliveryOutcome",
    "DeliveryRecorder",
    "InMemoryAuditLog",
    "SQLiteAuditLog",
    "get_audit_log",
    "set_audit_log",
    # Queue and dispatcher
    "DeliveryJob",
    "DeliveryQueue",
    "QueueSnapshot",
    "WebhookDispatcher",
    "WebhookTestResult",
    "get_webhook_dispatcher",
    "set_webhook_dispatcher",
    # Trigger
    "TriggerEvaluator",
    "get_webhook_trigger",
    "set_webhook_trigger",
    "trigger",
    # Signing
    "format_signature",
    "serialize_payload",
    "sign_payload",
    "verify_from_headers",
    "verify_signature",
]
