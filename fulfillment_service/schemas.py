"""Pydantic models for users, products, order jobs and orders."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """A registered customer."""

    id: int
    name: str = ""


class Product(BaseModel):
    """A sellable product with its current stock.

    Attributes:
        id (int): Product identifier.
        name (str): Display name, used in stock error messages.
        price (Decimal): Unit price with two decimal places.
        stock (int): Sellable units, never negative.
    """

    id: int
    name: str
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(..., ge=0)


class OrderLine(BaseModel):
    """A single (product, quantity) pair of an order."""

    product_id: int
    quantity: int = Field(..., gt=0)


class OrderRequest(BaseModel):
    """Inbound order placement payload.

    ``product_ids[i]`` pairs with ``quantities[i]``. Shape and business rules
    are checked by the submission gate so that every rejection carries the
    same response body.

    Attributes:
        user_id (int): Customer placing the order.
        product_ids (list[int]): Requested products.
        quantities (list[int]): Requested quantity per product.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"userId": 1, "productIds": [10, 11], "quantities": [2, 1]},
        },
    )

    user_id: int = Field(..., alias="userId")
    product_ids: list[int] = Field(..., alias="productIds")
    quantities: list[int]


class OrderJob(BaseModel):
    """Queue payload for one order awaiting processing.

    The job id is assigned once at submission and travels with every
    redelivery, so it doubles as the idempotency key of the order.

    Attributes:
        job_id (str): Unique job identifier.
        user_id (int): Customer placing the order.
        product_ids (list[int]): Requested products, in line order.
        quantities (list[int]): Quantity per product, positionally correlated.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=lambda: f"job-{uuid.uuid4().hex}")
    user_id: int
    product_ids: list[int]
    quantities: list[int]

    def lines(self) -> list[OrderLine]:
        return [
            OrderLine(product_id=product_id, quantity=quantity)
            for product_id, quantity in zip(self.product_ids, self.quantities)
        ]


class Order(BaseModel):
    """A finalized order. Created once per successfully processed job.

    Attributes:
        id (int): Order identifier assigned by the store.
        job_id (str): Job that produced this order.
        user_id (int): Owning customer.
        lines (list[OrderLine]): Ordered lines as submitted.
        total (Decimal): Sum of quantity times price at processing time.
        created_at (datetime): When the order was committed.
    """

    model_config = ConfigDict(frozen=True)

    id: int = 0
    job_id: str
    user_id: int
    lines: list[OrderLine] = Field(..., min_length=1)
    total: Decimal
    created_at: datetime = Field(default_factory=_utcnow)


JobState = Literal["queued", "completed", "failed", "dead_lettered"]


class JobStatus(BaseModel):
    """Observable outcome of an order job.

    Attributes:
        job_id (str): The job being tracked.
        status (str): One of queued, completed, failed, dead_lettered.
        order_id (int | None): Persisted order, once completed.
        reason (str | None): Why the job failed or was dead-lettered.
        updated_at (datetime): Last status change.
    """

    job_id: str
    status: JobState
    order_id: Optional[int] = None
    reason: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class PlaceOrderResponse(BaseModel):
    """Synchronous acknowledgment of an order placement."""

    accepted: bool
    message: str
    job_id: Optional[str] = None
