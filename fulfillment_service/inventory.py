"""Stock checking and per-product serialization primitives."""

import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from decimal import Decimal

from .errors import InsufficientStock
from .schemas import OrderLine, Product

CENT = Decimal("0.01")


class ProductLocks:
    """Registry of one mutex per product id.

    Locks for several products are always taken in ascending id order, so
    two jobs sharing products cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def lock_for(self, product_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, product_ids: Iterable[int]) -> Iterator[None]:
        acquired: list[threading.Lock] = []
        try:
            for product_id in sorted(set(product_ids)):
                lock = self.lock_for(product_id)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


def check_stock(lines: Sequence[OrderLine], products: Mapping[int, Product]) -> dict[int, int]:
    """Check every line against available stock before anything is mutated.

    Lines are checked in order. A product appearing on several lines is
    checked against the running sum of its quantities.

    Args:
        lines: Order lines in job order.
        products: Current products keyed by id.

    Returns:
        dict[int, int]: Quantity to decrement per product id.

    Raises:
        InsufficientStock: For the first line whose product cannot cover it.
    """
    decrements: dict[int, int] = {}
    for line in lines:
        product = products[line.product_id]
        requested = decrements.get(line.product_id, 0) + line.quantity
        if product.stock < requested:
            raise InsufficientStock(product.name, requested, product.stock)
        decrements[line.product_id] = requested
    return decrements


def order_total(lines: Sequence[OrderLine], products: Mapping[int, Product]) -> Decimal:
    """Sum of quantity times unit price, rounded to cents."""
    total = sum((products[line.product_id].price * line.quantity for line in lines), Decimal("0"))
    return total.quantize(CENT)
