"""Tests for the order submission gate."""

from unittest.mock import MagicMock

import pytest

from fulfillment_service.errors import (
    InsufficientStock,
    InvalidOrder,
    ProductsNotFound,
    QueueUnavailable,
    UserNotFound,
)
from fulfillment_service.gate import OrderSubmissionGate
from fulfillment_service.schemas import OrderJob, OrderRequest


def _request(user_id=1, product_ids=(1, 2), quantities=(2, 1)):
    return OrderRequest(userId=user_id, productIds=list(product_ids), quantities=list(quantities))


def test_submit_enqueues_job(gate, queue, statuses):
    """An order within stock is queued once and marked queued.

    Verifies that:
        - The response is accepted and carries the job id
        - Exactly one job is on the queue with the submitted lines
        - No stock is touched by the submission
    """
    response = gate.submit(_request())

    assert response.accepted is True
    assert response.job_id
    assert queue.pending == 1
    delivery = queue.dequeue(timeout=0)
    job = OrderJob.model_validate_json(delivery.payload)
    assert job.job_id == response.job_id
    assert job.user_id == 1
    assert job.product_ids == [1, 2]
    assert job.quantities == [2, 1]
    assert statuses.get(response.job_id).status == "queued"


def test_submit_does_not_change_stock(gate, store):
    gate.submit(_request())
    assert store.get_product(1).stock == 10
    assert store.get_product(2).stock == 5


def test_submit_accepts_request_by_field_name(gate):
    request = OrderRequest(user_id=2, product_ids=[1], quantities=[1])
    assert gate.submit(request).accepted is True


@pytest.mark.parametrize(
    "product_ids, quantities",
    [
        ([], []),
        ([1, 2], [1]),
        ([1], [0]),
        ([1], [-3]),
    ],
)
def test_submit_rejects_invalid_lines(gate, queue, product_ids, quantities):
    with pytest.raises(InvalidOrder):
        gate.submit(_request(product_ids=product_ids, quantities=quantities))
    assert queue.pending == 0


def test_submit_rejects_unknown_user(gate, queue):
    with pytest.raises(UserNotFound) as exc_info:
        gate.submit(_request(user_id=999))
    assert exc_info.value.user_id == 999
    assert queue.pending == 0


def test_submit_rejects_unknown_products(gate, queue):
    """Every missing product id is reported, not only the first."""
    with pytest.raises(ProductsNotFound) as exc_info:
        gate.submit(_request(product_ids=(1, 77, 88), quantities=(1, 1, 1)))
    assert exc_info.value.product_ids == [77, 88]
    assert queue.pending == 0


def test_submit_rejects_insufficient_stock(gate, queue):
    """The advisory stock check names the product and enqueues nothing."""
    with pytest.raises(InsufficientStock) as exc_info:
        gate.submit(_request(product_ids=(1, 2), quantities=(1, 6)))
    assert exc_info.value.product_name == "Gadget"
    assert "Gadget" in str(exc_info.value)
    assert queue.pending == 0


def test_submit_sums_repeated_products(gate):
    with pytest.raises(InsufficientStock):
        gate.submit(_request(product_ids=(2, 2), quantities=(3, 3)))


def test_submit_propagates_queue_failure(store, statuses):
    """A queue that refuses the job makes the submission fail, never accept."""
    queue = MagicMock()
    queue.enqueue.side_effect = QueueUnavailable("broker down")
    gate = OrderSubmissionGate(store, queue, statuses)

    with pytest.raises(QueueUnavailable):
        gate.submit(_request())

    queue.enqueue.assert_called_once()
    job = queue.enqueue.call_args.args[0]
    assert statuses.get(job.job_id) is None
