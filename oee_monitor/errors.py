"""Exception hierarchy for the webhook delivery engine.

Exception Hierarchy:
    OEEMonitorError (base)
    ├── SubscriptionConfigError - Invalid subscription at registration
    ├── SubscriptionNotFoundError - Unknown subscription id
    └── DeliveryError - A single delivery attempt failed

Only SubscriptionConfigError and SubscriptionNotFoundError reach callers.
DeliveryError is raised and handled inside the dispatcher.
"""

from typing import Any


class OEEMonitorError(Exception):
    """Base exception for all OEE Monitor errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class SubscriptionConfigError(OEEMonitorError):
    """Subscription rejected at registration.

    Raised for an invalid URL scheme, an empty or unknown event set,
    duplicate header keys or an out-of-range retry policy.

    Attributes:
        errors: Field-level validation errors.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["errors"] = self.errors
        return base


class SubscriptionNotFoundError(OEEMonitorError):
    """No subscription exists with the given id."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            f"Subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
        self.subscription_id = subscription_id


class DeliveryError(OEEMonitorError):
    """A delivery attempt did not receive a 2xx response.

    Every failed attempt is retried while the subscription's retry
    policy allows.

    Attributes:
        status_code: HTTP status if a response arrived.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["status_code"] = self.status_code
        return base
