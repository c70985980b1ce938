"""Webhook subscription model.

A subscription is an external HTTPS endpoint interested in a subset of
domain events, narrowed further by machine, department, location and
payload conditions.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, HttpUrl, field_validator

from oee_monitor.webhooks.events import WebhookEventType
from oee_monitor.webhooks.filters import (
    DEPARTMENT_PATHS,
    LOCATION_PATHS,
    MACHINE_ID_PATHS,
    MISSING,
    first_present,
    matches_allow_list,
    resolve_path,
)

# Auto-deactivation thresholds
AUTO_DISABLE_MIN_SENT = 10
AUTO_DISABLE_FAILURE_RATE = 0.8

ERROR_SUMMARY_MAX_LENGTH = 500


def generate_secret() -> str:
    """Generate a signing secret (32 random bytes, hex-encoded)."""
    return secrets.token_hex(32)


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a subscription."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"  # Set automatically, never by users


class RetryPolicy(BaseModel):
    """Retry configuration for failed deliveries."""

    max_retries: int = Field(
        default=3,
        description="Retries after the first attempt",
        ge=0,
        le=10,
    )
    initial_delay_ms: int = Field(
        default=1000,
        description="Delay before the first retry in milliseconds",
        ge=100,
        le=60000,
    )
    backoff_multiplier: float = Field(
        default=2.0,
        description="Factor applied to the delay for each further retry",
        ge=1,
        le=5,
    )

    @property
    def max_attempts(self) -> int:
        """Total tries allowed for a single job."""
        return self.max_retries + 1

    def delay_ms(self, attempt: int) -> float:
        """Delay before re-sending a job whose zero-based ``attempt`` failed.

        Args:
            attempt: Zero-based attempt that just failed.

        Returns:
            Delay in milliseconds.
        """
        return self.initial_delay_ms * self.backoff_multiplier**attempt


class SubscriptionFilters(BaseModel):
    """Allow-lists and payload conditions narrowing a subscription.

    An empty dimension matches everything.
    """

    machine_ids: list[str] = Field(
        default_factory=list,
        description="Machines whose events are delivered",
    )
    departments: list[str] = Field(
        default_factory=list,
        description="Departments whose events are delivered",
    )
    locations: list[str] = Field(
        default_factory=list,
        description="Locations whose events are delivered",
    )
    conditions: dict[str, Any] = Field(
        default_factory=dict,
        description="Dotted payload path -> expected value",
    )

    def matches(self, data: dict[str, Any]) -> bool:
        """Check whether an event payload passes every filter dimension.

        Args:
            data: Event payload.

        Returns:
            True if the payload passes.
        """
        if self.machine_ids and not matches_allow_list(
            first_present(data, MACHINE_ID_PATHS), self.machine_ids
        ):
            return False

        if self.departments and not matches_allow_list(
            first_present(data, DEPARTMENT_PATHS), self.departments
        ):
            return False

        if self.locations and not matches_allow_list(
            first_present(data, LOCATION_PATHS), self.locations
        ):
            return False

        for path, expected in self.conditions.items():
            actual = resolve_path(data, path)
            if actual is MISSING or actual != expected:
                return False

        return True


class SubscriptionStatistics(BaseModel):
    """Running delivery counters for a subscription.

    Only terminal outcomes are counted; retries are not.
    """

    total_sent: int = Field(default=0, description="Terminal outcomes recorded")
    total_success: int = Field(default=0, description="Successful deliveries")
    total_failed: int = Field(default=0, description="Deliveries abandoned after retries")
    last_success_at: datetime | None = Field(
        default=None,
        description="Last successful delivery",
    )
    last_failure_at: datetime | None = Field(
        default=None,
        description="Last abandoned delivery",
    )
    last_error: str | None = Field(
        default=None,
        description="Error of the last abandoned delivery (truncated)",
    )

    @property
    def failure_rate(self) -> float:
        """Fraction of terminal outcomes that failed."""
        if self.total_sent == 0:
            return 0.0
        return self.total_failed / self.total_sent

    def record(self, success: bool, error: str | None = None) -> None:
        """Record a terminal delivery outcome.

        Args:
            success: Whether delivery succeeded.
            error: Error description for failures.
        """
        self.total_sent += 1

        if success:
            self.total_success += 1
            self.last_success_at = datetime.now(UTC)
        else:
            self.total_failed += 1
            self.last_failure_at = datetime.now(UTC)
            if error:
                self.last_error = error[:ERROR_SUMMARY_MAX_LENGTH]

    def exceeds_failure_threshold(self) -> bool:
        """Whether the auto-deactivation thresholds are crossed."""
        return (
            self.total_sent > AUTO_DISABLE_MIN_SENT
            and self.failure_rate > AUTO_DISABLE_FAILURE_RATE
        )


class Subscription(BaseModel):
    """A registered webhook subscriber."""

    id: str = Field(
        default_factory=lambda: f"wh_{uuid.uuid4().hex[:12]}",
        description="Unique subscription identifier",
    )
    name: str = Field(
        ...,
        description="Human-readable name",
        min_length=1,
        max_length=100,
    )
    description: str = Field(
        default="",
        description="Free-text description",
        max_length=500,
    )
    url: HttpUrl = Field(
        ..., description="HTTPS endpoint receiving deliveries"
    )
    secret: str = Field(
        default_factory=generate_secret,
        description="Shared secret for HMAC signatures",
        exclude=True,
        repr=False,
        min_length=1,
    )
    events: list[WebhookEventType] = Field(
        ...,
        description="Subscribed event types",
        min_length=1,
    )
    filters: SubscriptionFilters = Field(
        default_factory=SubscriptionFilters,
        description="Payload filters",
    )
    status: SubscriptionStatus = Field(
        default=SubscriptionStatus.ACTIVE,
        description="Lifecycle status",
    )
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Retry configuration",
    )
    timeout_ms: int = Field(
        default=30000,
        description="Per-request timeout in milliseconds",
        ge=1000,
        le=120000,
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Static headers added to every delivery",
    )
    statistics: SubscriptionStatistics = Field(
        default_factory=SubscriptionStatistics,
        description="Delivery counters",
    )
    created_by: str | None = Field(
        default=None,
        description="User who registered the subscription",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the subscription was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the subscription was last updated",
    )

    @field_validator("url")
    @classmethod
    def _require_https(cls, value: HttpUrl) -> HttpUrl:
        if value.scheme != "https":
            raise ValueError("Webhook URL must be a valid HTTPS URL")
        return value

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, value: list[WebhookEventType]) -> list[WebhookEventType]:
        return list(dict.fromkeys(value))

    @field_validator("headers")
    @classmethod
    def _unique_header_names(cls, value: dict[str, str]) -> dict[str, str]:
        seen: set[str] = set()
        for name in value:
            key = name.strip().lower()
            if not key:
                raise ValueError("Header names must not be empty")
            if key in seen:
                raise ValueError(f"Duplicate header: {name}")
            seen.add(key)
        return value

    @property
    def timeout_seconds(self) -> float:
        """Per-request timeout in seconds."""
        return self.timeout_ms / 1000

    @property
    def is_active(self) -> bool:
        """Whether the subscription takes part in trigger evaluation."""
        return self.status == SubscriptionStatus.ACTIVE

    def is_subscribed_to(self, event_name: str) -> bool:
        """Check if the subscription declares interest in an event."""
        return any(event.value == event_name for event in self.events)

    def should_trigger(self, event_name: str, data: dict[str, Any]) -> bool:
        """Check if an event should be delivered to this subscription.

        Args:
            event_name: Event name.
            data: Event payload.

        Returns:
            True if subscribed to the event and every filter passes.
        """
        if not self.is_subscribed_to(event_name):
            return False
        return self.filters.matches(data)

    def record_delivery(self, success: bool, error: str | None = None) -> None:
        """Record a terminal delivery outcome.

        Args:
            success: Whether delivery was successful.
            error: Error description for failures.
        """
        self.statistics.record(success, error)
        self.updated_at = datetime.now(UTC)
