"""Inventory store: users, products, orders and job status records."""

import itertools
import threading
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Optional, Protocol

from .errors import InsufficientStock, ProductsNotFound
from .logger import logger
from .schemas import JobState, JobStatus, Order, Product, User


class InventoryStore(Protocol):
    """Persistence operations consumed by the gate and the worker."""

    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_products_by_ids(self, product_ids: Iterable[int]) -> list[Product]:
        ...

    def save_product(self, product: Product) -> None:
        ...

    def save_order(self, order: Order) -> Order:
        ...

    def commit_order(self, order: Order, decrements: Mapping[int, int]) -> Order:
        """Atomically decrement stock and persist the order.

        Either every decrement and the order are written or nothing is.
        Each decrement is conditional on ``stock >= quantity``.

        Raises:
            ProductsNotFound: If a product disappeared.
            InsufficientStock: If a conditional decrement fails.
            StorageUnavailable: If the backend cannot be reached.
        """
        ...

    def find_order_by_job(self, job_id: str) -> Optional[Order]:
        ...

    def list_user_orders(self, user_id: int) -> list[Order]:
        ...


class InMemoryStore:
    """Thread-safe in-process implementation of :class:`InventoryStore`.

    Records are pydantic models and are copied on the way in and out, so
    callers never hold a reference into the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[int, User] = {}
        self._products: dict[int, Product] = {}
        self._orders: dict[int, Order] = {}
        self._orders_by_job: dict[str, int] = {}
        self._order_ids = itertools.count(1)

    # Seed helpers
    def add_user(self, user_id: int, name: str = "") -> User:
        user = User(id=user_id, name=name)
        with self._lock:
            self._users[user_id] = user
        return user

    def add_product(self, product_id: int, name: str, price: Decimal, stock: int) -> Product:
        product = Product(id=product_id, name=name, price=price, stock=stock)
        self.save_product(product)
        return product

    def load_seed(self, data: Mapping) -> None:
        """Load users and products from ``{"users": [...], "products": [...]}``."""
        users = [User.model_validate(user) for user in data.get("users", [])]
        products = [Product.model_validate(product) for product in data.get("products", [])]
        with self._lock:
            for user in users:
                self._users[user.id] = user
            for product in products:
                self.save_product(product)
        logger.info(f"Loaded {len(users)} users and {len(products)} products")

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return product.model_copy() if product else None

    def get_products_by_ids(self, product_ids: Iterable[int]) -> list[Product]:
        with self._lock:
            found = []
            for product_id in dict.fromkeys(product_ids):
                product = self._products.get(product_id)
                if product is not None:
                    found.append(product.model_copy())
            return found

    def save_product(self, product: Product) -> None:
        if product.stock < 0:
            raise ValueError(f"Stock of product {product.id} cannot be negative")
        with self._lock:
            self._products[product.id] = product.model_copy()

    def save_order(self, order: Order) -> Order:
        with self._lock:
            existing_id = self._orders_by_job.get(order.job_id)
            if existing_id is not None:
                return self._orders[existing_id]
            stored = order.model_copy(update={"id": next(self._order_ids)})
            self._orders[stored.id] = stored
            self._orders_by_job[stored.job_id] = stored.id
            return stored

    def commit_order(self, order: Order, decrements: Mapping[int, int]) -> Order:
        with self._lock:
            existing = self.find_order_by_job(order.job_id)
            if existing is not None:
                logger.info(f"Order for job {order.job_id} already committed as order {existing.id}")
                return existing

            missing = [product_id for product_id in decrements if product_id not in self._products]
            if missing:
                raise ProductsNotFound(missing)
            for product_id, quantity in decrements.items():
                product = self._products[product_id]
                if product.stock < quantity:
                    raise InsufficientStock(product.name, quantity, product.stock)

            for product_id, quantity in decrements.items():
                product = self._products[product_id]
                self._products[product_id] = product.model_copy(update={"stock": product.stock - quantity})
            return self.save_order(order)

    def find_order_by_job(self, job_id: str) -> Optional[Order]:
        with self._lock:
            order_id = self._orders_by_job.get(job_id)
            return self._orders[order_id] if order_id is not None else None

    def list_user_orders(self, user_id: int) -> list[Order]:
        with self._lock:
            return [order for order in self._orders.values() if order.user_id == user_id]


class JobStatusStore:
    """Tracks the outcome of each job so asynchronous results can be queried."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._statuses: dict[str, JobStatus] = {}

    def mark_queued(self, job_id: str) -> JobStatus:
        """Record a freshly enqueued job without overwriting a worker outcome."""
        with self._lock:
            status = self._statuses.get(job_id)
            if status is None:
                status = self._statuses[job_id] = JobStatus(job_id=job_id, status="queued")
            return status

    def update(
        self,
        job_id: str,
        status: JobState,
        order_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> JobStatus:
        record = JobStatus(job_id=job_id, status=status, order_id=order_id, reason=reason)
        with self._lock:
            self._statuses[job_id] = record
        return record

    def get(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._statuses.get(job_id)
