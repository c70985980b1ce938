"""Webhook event types and payload envelope.

This module defines the domain events the OEE monitor publishes to
external subscribers and the envelope every delivery is wrapped in.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from oee_monitor.config import settings


class WebhookEventType(str, Enum):
    """Supported webhook event types.

    Events are organized by category:
    - machine.*: Machine registry and status events
    - production.*: Production run lifecycle events
    - alert.*: Alert lifecycle events
    - oee.*: OEE threshold events
    - maintenance.*: Maintenance planning events
    - user.*, system.*: Administrative events
    """

    # Machine events
    MACHINE_STATUS_CHANGED = "machine.status_changed"
    MACHINE_CREATED = "machine.created"
    MACHINE_UPDATED = "machine.updated"
    MACHINE_DELETED = "machine.deleted"

    # Production events
    PRODUCTION_STARTED = "production.started"
    PRODUCTION_COMPLETED = "production.completed"
    PRODUCTION_STOPPED = "production.stopped"
    PRODUCTION_PAUSED = "production.paused"
    PRODUCTION_RESUMED = "production.resumed"

    # Alert events
    ALERT_CREATED = "alert.created"
    ALERT_RESOLVED = "alert.resolved"

    # OEE events
    OEE_THRESHOLD_EXCEEDED = "oee.threshold_exceeded"
    OEE_THRESHOLD_RECOVERED = "oee.threshold_recovered"

    # Maintenance events
    MAINTENANCE_SCHEDULED = "maintenance.scheduled"
    MAINTENANCE_COMPLETED = "maintenance.completed"

    # Administrative events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    SYSTEM_BACKUP_COMPLETED = "system.backup_completed"
    SYSTEM_ERROR = "system.error"


# Reserved for test pings; subscriptions cannot subscribe to it
TEST_EVENT = "webhook.test"

_EVENT_CATALOG: dict[WebhookEventType, tuple[str, str]] = {
    WebhookEventType.MACHINE_STATUS_CHANGED: ("Machine status changed", "Machines"),
    WebhookEventType.MACHINE_CREATED: ("Machine created", "Machines"),
    WebhookEventType.MACHINE_UPDATED: ("Machine updated", "Machines"),
    WebhookEventType.MACHINE_DELETED: ("Machine deleted", "Machines"),
    WebhookEventType.PRODUCTION_STARTED: ("Production started", "Production"),
    WebhookEventType.PRODUCTION_COMPLETED: ("Production completed", "Production"),
    WebhookEventType.PRODUCTION_STOPPED: ("Production stopped", "Production"),
    WebhookEventType.PRODUCTION_PAUSED: ("Production paused", "Production"),
    WebhookEventType.PRODUCTION_RESUMED: ("Production resumed", "Production"),
    WebhookEventType.ALERT_CREATED: ("Alert created", "Alerts"),
    WebhookEventType.ALERT_RESOLVED: ("Alert resolved", "Alerts"),
    WebhookEventType.OEE_THRESHOLD_EXCEEDED: ("OEE threshold exceeded", "OEE"),
    WebhookEventType.OEE_THRESHOLD_RECOVERED: ("OEE recovered", "OEE"),
    WebhookEventType.MAINTENANCE_SCHEDULED: ("Maintenance scheduled", "Maintenance"),
    WebhookEventType.MAINTENANCE_COMPLETED: ("Maintenance completed", "Maintenance"),
    WebhookEventType.USER_CREATED: ("User created", "System"),
    WebhookEventType.USER_UPDATED: ("User updated", "System"),
    WebhookEventType.SYSTEM_BACKUP_COMPLETED: ("Backup completed", "System"),
    WebhookEventType.SYSTEM_ERROR: ("System error", "System"),
}


class EventTypeInfo(BaseModel):
    """Catalogue entry describing an event type."""

    value: str = Field(..., description="Event name used in subscriptions")
    label: str = Field(..., description="Human-readable label")
    category: str = Field(..., description="Grouping for UIs")


def list_event_types() -> list[EventTypeInfo]:
    """List every event type subscribers may register for.

    Returns:
        Catalogue entries in declaration order.
    """
    return [
        EventTypeInfo(value=event_type.value, label=label, category=category)
        for event_type, (label, category) in _EVENT_CATALOG.items()
    ]


def is_known_event(name: str) -> bool:
    """Check whether an event name belongs to the catalogue."""
    try:
        WebhookEventType(name)
    except ValueError:
        return False
    return True


class WebhookEvent(BaseModel):
    """A domain event raised by the rest of the system.

    The engine treats ``data`` opaquely except for filter-path lookups.
    """

    name: str = Field(..., description="Event name")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the event occurred",
    )

    def to_envelope(self, **options: Any) -> dict[str, Any]:
        """Wrap the event in the standard delivery envelope.

        Args:
            **options: Extra top-level keys, merged last.

        Returns:
            JSON-serializable envelope dictionary.
        """
        return build_envelope(self.name, self.data, **{"timestamp": self.timestamp, **options})


def build_envelope(
    event_name: str,
    data: dict[str, Any],
    /,
    *,
    timestamp: Any = None,
    **options: Any,
) -> dict[str, Any]:
    """Build the payload envelope sent to subscribers.

    All deliveries use this format so receivers can route on ``event``
    and verify the signature over the raw body.

    Args:
        event_name: Event name.
        data: Event-specific data.
        timestamp: When the event occurred (defaults to now). Datetimes are
            rendered as ISO-8601, any other value is used verbatim.
        **options: Extra top-level keys, merged last.

    Returns:
        Envelope with ``event``, ``timestamp``, ``data``, ``source`` and
        ``version`` keys plus any options.
    """
    if timestamp is None:
        timestamp = datetime.now(UTC)
    return {
        "event": event_name,
        "timestamp": timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
        "data": data,
        "source": settings.WEBHOOK_SOURCE,
        "version": settings.WEBHOOK_VERSION,
        **options,
    }


# Event data builders for common events


def build_machine_status_changed_event(
    machine_id: str,
    previous_status: str,
    current_status: str,
    *,
    machine_name: str | None = None,
    department: str | None = None,
    location: str | None = None,
    reason: str | None = None,
) -> WebhookEvent:
    """Build a machine.status_changed event.

    Args:
        machine_id: Machine identifier.
        previous_status: Status before the change.
        current_status: Status after the change.
        machine_name: Optional display name.
        department: Department the machine belongs to.
        location: Plant location of the machine.
        reason: Optional reason for the change.

    Returns:
        Event ready to trigger.
    """
    return WebhookEvent(
        name=WebhookEventType.MACHINE_STATUS_CHANGED.value,
        data={
            "machineId": machine_id,
            "machine": {
                "_id": machine_id,
                "name": machine_name,
                "department": department,
                "location": location,
            },
            "previousStatus": previous_status,
            "currentStatus": current_status,
            "reason": reason,
        },
    )


def build_production_completed_event(
    record_id: str,
    machine_id: str,
    *,
    good_parts: int = 0,
    rejected_parts: int = 0,
    oee: float | None = None,
    availability: float | None = None,
    performance: float | None = None,
    quality: float | None = None,
    shift: str | None = None,
) -> WebhookEvent:
    """Build a production.completed event.

    Args:
        record_id: Production record identifier.
        machine_id: Machine that ran the production.
        good_parts: Parts produced within tolerance.
        rejected_parts: Parts scrapped or reworked.
        oee: Overall equipment effectiveness, percent.
        availability: Availability factor, percent.
        performance: Performance factor, percent.
        quality: Quality factor, percent.
        shift: Shift identifier.

    Returns:
        Event ready to trigger.
    """
    return WebhookEvent(
        name=WebhookEventType.PRODUCTION_COMPLETED.value,
        data={
            "recordId": record_id,
            "machineId": machine_id,
            "goodParts": good_parts,
            "rejectedParts": rejected_parts,
            "shift": shift,
            "oee": {
                "value": oee,
                "availability": availability,
                "performance": performance,
                "quality": quality,
            },
        },
    )


def build_oee_threshold_event(
    machine_id: str,
    current_oee: float,
    threshold: float,
    *,
    recovered: bool = False,
    department: str | None = None,
    location: str | None = None,
) -> WebhookEvent:
    """Build an oee.threshold_exceeded or oee.threshold_recovered event.

    Args:
        machine_id: Machine whose OEE crossed the threshold.
        current_oee: Current OEE value, percent.
        threshold: Configured threshold, percent.
        recovered: Build the recovery event instead.
        department: Department the machine belongs to.
        location: Plant location of the machine.

    Returns:
        Event ready to trigger.
    """
    event_type = (
        WebhookEventType.OEE_THRESHOLD_RECOVERED
        if recovered
        else WebhookEventType.OEE_THRESHOLD_EXCEEDED
    )
    return WebhookEvent(
        name=event_type.value,
        data={
            "machineId": machine_id,
            "department": department,
            "location": location,
            "currentOEE": current_oee,
            "threshold": threshold,
        },
    )
