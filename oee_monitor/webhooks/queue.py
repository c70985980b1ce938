"""Delivery jobs and the pending-delivery queue.

Jobs live only in memory. A process restart drops queued and in-flight
deliveries; persistence is left to an external log if ever needed.
"""

import dataclasses
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class DeliveryJob:
    """One pending delivery of a payload to one subscription.

    The job references the subscription by id so every attempt sees the
    subscription's current state. The payload is a snapshot and is never
    mutated after the job is created.

    Attributes:
        subscription_id: Target subscription.
        payload: Envelope to deliver.
        attempt: Zero-based attempt counter.
        created_at: When the job was first created.
        job_id: Identifier shared by all attempts of the job.
    """

    subscription_id: str
    payload: dict[str, Any]
    attempt: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    job_id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}")

    @property
    def event_name(self) -> str:
        """Event carried by the payload."""
        return str(self.payload.get("event", ""))

    def next_attempt(self) -> "DeliveryJob":
        """Copy of this job for the following attempt."""
        return dataclasses.replace(self, attempt=self.attempt + 1)


class DeliveryQueue:
    """FIFO backlog of delivery jobs.

    Unbounded; retries are appended at the back, so no ordering holds
    across subscriptions or jobs. Owned by a single event loop.
    """

    def __init__(self) -> None:
        self._jobs: deque[DeliveryJob] = deque()

    def __len__(self) -> int:
        return len(self._jobs)

    def push(self, job: DeliveryJob) -> None:
        """Append a job."""
        self._jobs.append(job)

    def pop(self) -> DeliveryJob | None:
        """Remove and return the oldest job, or None when empty."""
        if not self._jobs:
            return None
        return self._jobs.popleft()

    def clear(self) -> int:
        """Drop every queued job.

        Returns:
            Number of jobs dropped.
        """
        dropped = len(self._jobs)
        self._jobs.clear()
        return dropped
