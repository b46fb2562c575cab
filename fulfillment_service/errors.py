"""Exception hierarchy for order submission and processing."""

from typing import Iterable


class FulfillmentError(Exception):
    """Base class for all fulfillment errors."""


class OrderValidationError(FulfillmentError):
    """The order can never succeed as submitted; retrying does not help."""


class InvalidOrder(OrderValidationError):
    """Order lines are empty, misaligned or carry a non-positive quantity."""


class UserNotFound(OrderValidationError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User with ID {user_id} not found")


class ProductsNotFound(OrderValidationError):
    def __init__(self, product_ids: Iterable[int]):
        self.product_ids = sorted(product_ids)
        super().__init__(f"Products with IDs {self.product_ids} not found")


class InsufficientStock(OrderValidationError):
    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"Not enough stock for '{product_name}' product: requested {requested}, available {available}")


class TransientError(FulfillmentError):
    """Infrastructure failure that may succeed on a later attempt."""


class QueueUnavailable(TransientError):
    """The order queue did not accept the job."""


class StorageUnavailable(TransientError):
    """The inventory store could not be read or written."""


class MalformedJob(FulfillmentError):
    """A queued payload that cannot be interpreted as an order job."""
