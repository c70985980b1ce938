"""Webhook monitoring API endpoints.

Read-only introspection of the delivery engine plus test pings.
Subscription management is handled by the surrounding application.
"""

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from oee_monitor.webhooks.audit import AuditRecord, DeliveryOutcome, get_audit_log
from oee_monitor.webhooks.dispatcher import (
    QueueSnapshot,
    WebhookTestResult,
    get_webhook_dispatcher,
)
from oee_monitor.webhooks.events import EventTypeInfo, list_event_types

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ============================================================================
# Response Models
# ============================================================================


class AuditRecordResponse(BaseModel):
    """Audit record as exposed to operators."""

    id: str
    subscription_id: str
    action: str
    event: str
    outcome: DeliveryOutcome
    attempt: int
    max_attempts: int
    status_code: int | None
    error: str | None
    test: bool
    created_at: str

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        """Create response from AuditRecord model."""
        return cls(
            id=record.id,
            subscription_id=record.subscription_id,
            action=record.action,
            event=record.event,
            outcome=record.outcome,
            attempt=record.attempt,
            max_attempts=record.max_attempts,
            status_code=record.status_code,
            error=record.error,
            test=record.test,
            created_at=record.created_at.isoformat(),
        )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/events",
    response_model=list[EventTypeInfo],
)
async def list_webhook_events() -> list[EventTypeInfo]:
    """List the event types subscribers may register for."""
    return list_event_types()


@router.get(
    "/queue",
    response_model=QueueSnapshot,
)
async def get_queue_stats() -> QueueSnapshot:
    """Snapshot of the delivery queue and worker pool."""
    return get_webhook_dispatcher().queue_stats()


@router.post(
    "/{subscription_id}/test",
    response_model=WebhookTestResult,
    responses={
        404: {"description": "Subscription not found"},
    },
)
async def test_webhook(subscription_id: str) -> WebhookTestResult:
    """Send a test event to a subscription.

    Delivers a single ``webhook.test`` payload immediately, without
    retries, so the receiver can check connectivity and signatures.
    """
    result = await get_webhook_dispatcher().send_test_event(subscription_id)

    if result is None:
        raise HTTPException(status_code=404, detail=f"Subscription {subscription_id} not found")

    logger.info(
        "webhook_tested",
        subscription_id=subscription_id,
        success=result.success,
    )

    return result


@router.get(
    "/{subscription_id}/audit",
    response_model=list[AuditRecordResponse],
)
async def list_webhook_audit(
    subscription_id: str,
    limit: int = 50,
    outcome: DeliveryOutcome | None = None,
) -> list[AuditRecordResponse]:
    """List recent delivery attempts for a subscription, newest first."""
    records = await get_audit_log().list_records(
        subscription_id=subscription_id,
        outcome=outcome,
        limit=limit,
    )
    return [AuditRecordResponse.from_record(r) for r in records]
