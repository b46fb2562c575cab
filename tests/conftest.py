"""Test fixtures for the fulfillment service tests."""

from decimal import Decimal

import pytest

from fulfillment_service.gate import OrderSubmissionGate
from fulfillment_service.queue import InMemoryOrderQueue
from fulfillment_service.schemas import OrderJob
from fulfillment_service.store import InMemoryStore, JobStatusStore
from fulfillment_service.worker import OrderProcessor, OrderWorker


@pytest.fixture
def store():
    """Create a seeded in-memory store.

    Returns:
        InMemoryStore: Two users and three products, one of them out of stock.
    """
    store = InMemoryStore()
    store.add_user(1, "alice")
    store.add_user(2, "bob")
    store.add_product(1, "Widget", price=Decimal("2.50"), stock=10)
    store.add_product(2, "Gadget", price=Decimal("10.00"), stock=5)
    store.add_product(3, "Gizmo", price=Decimal("4.99"), stock=0)
    return store


@pytest.fixture
def statuses():
    return JobStatusStore()


@pytest.fixture
def queue():
    """Create an in-memory order queue with a short visibility window."""
    queue = InMemoryOrderQueue(visibility_timeout=5.0)
    yield queue
    queue.close()


@pytest.fixture
def gate(store, queue, statuses):
    return OrderSubmissionGate(store, queue, statuses)


@pytest.fixture
def processor(store):
    return OrderProcessor(store)


@pytest.fixture
def worker(queue, processor, statuses):
    """Create a worker that never really sleeps between retries."""
    return OrderWorker(queue, processor, statuses, poll_timeout=0.05, max_attempts=3, sleep=lambda _: None)


@pytest.fixture
def make_job():
    """Factory for order jobs.

    Returns:
        Callable: Builds an OrderJob from a user id and (product_id, quantity) pairs.
    """

    def _make_job(user_id, *lines, job_id=None):
        fields = {"user_id": user_id, "product_ids": [p for p, _ in lines], "quantities": [q for _, q in lines]}
        if job_id:
            fields["job_id"] = job_id
        return OrderJob(**fields)

    return _make_job
