"""Tests for delivery jobs and queue."""

import dataclasses

import pytest

from oee_monitor.webhooks.queue import DeliveryJob, DeliveryQueue


@pytest.fixture
def payload():
    """Sample envelope."""
    return {"event": "alert.created", "data": {"alertId": "a-1"}}


class TestDeliveryJob:
    """Tests for delivery jobs."""

    def test_defaults(self, payload):
        """Test a new job starts at attempt zero."""
        job = DeliveryJob(subscription_id="wh_1", payload=payload)

        assert job.attempt == 0
        assert job.job_id.startswith("job_")
        assert job.event_name == "alert.created"

    def test_next_attempt(self, payload):
        """Test the next attempt keeps identity and payload."""
        job = DeliveryJob(subscription_id="wh_1", payload=payload)

        retry = job.next_attempt()

        assert retry.attempt == 1
        assert retry.job_id == job.job_id
        assert retry.payload is job.payload
        assert retry.created_at == job.created_at
        assert job.attempt == 0

    def test_frozen(self, payload):
        """Test jobs are immutable."""
        job = DeliveryJob(subscription_id="wh_1", payload=payload)

        with pytest.raises(dataclasses.FrozenInstanceError):
            job.attempt = 5


class TestDeliveryQueue:
    """Tests for the delivery queue."""

    def test_fifo(self, payload):
        """Test jobs come out in insertion order."""
        queue = DeliveryQueue()
        jobs = [DeliveryJob(subscription_id=f"wh_{i}", payload=payload) for i in range(3)]
        for job in jobs:
            queue.push(job)

        assert len(queue) == 3
        assert [queue.pop() for _ in range(3)] == jobs
        assert len(queue) == 0

    def test_pop_empty(self):
        """Test popping an empty queue returns None."""
        assert DeliveryQueue().pop() is None

    def test_clear(self, payload):
        """Test clearing returns the number dropped."""
        queue = DeliveryQueue()
        queue.push(DeliveryJob(subscription_id="wh_1", payload=payload))
        queue.push(DeliveryJob(subscription_id="wh_2", payload=payload))

        assert queue.clear() == 2
        assert len(queue) == 0
        assert queue.clear() == 0
