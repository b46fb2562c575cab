"""Order submission: fast validation, then hand-off to the order queue."""

from collections import Counter

from .errors import InsufficientStock, InvalidOrder, ProductsNotFound, UserNotFound
from .logger import logger
from .queue import OrderQueue
from .schemas import OrderJob, OrderRequest, PlaceOrderResponse
from .store import InventoryStore, JobStatusStore


class OrderSubmissionGate:
    """Validates order requests and enqueues them for processing.

    The stock check here is advisory. Nothing is reserved, so the worker
    repeats it under lock before decrementing.
    """

    def __init__(self, store: InventoryStore, queue: OrderQueue, statuses: JobStatusStore):
        self._store = store
        self._queue = queue
        self._statuses = statuses

    def submit(self, request: OrderRequest) -> PlaceOrderResponse:
        """Validate an order request and enqueue it.

        Args:
            request (OrderRequest): The order to place.

        Returns:
            PlaceOrderResponse: Accepted response carrying the job id.

        Raises:
            InvalidOrder: If the lines are empty, misaligned or not positive.
            UserNotFound: If the user does not exist.
            ProductsNotFound: If any product does not exist.
            InsufficientStock: If a product currently lacks the requested stock.
            QueueUnavailable: If the job could not be enqueued.
        """
        logger.debug(f"Placing order for user {request.user_id} with product IDs: {request.product_ids}")
        if not request.product_ids:
            raise InvalidOrder("Order must contain at least one product")
        if len(request.product_ids) != len(request.quantities):
            raise InvalidOrder("Each product must have exactly one quantity")
        if any(quantity <= 0 for quantity in request.quantities):
            raise InvalidOrder("Quantities must be positive")

        if self._store.get_user(request.user_id) is None:
            raise UserNotFound(request.user_id)

        products = {product.id: product for product in self._store.get_products_by_ids(request.product_ids)}
        missing = set(request.product_ids) - products.keys()
        if missing:
            raise ProductsNotFound(missing)

        requested: Counter[int] = Counter()
        for product_id, quantity in zip(request.product_ids, request.quantities):
            requested[product_id] += quantity
        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.stock < quantity:
                raise InsufficientStock(product.name, quantity, product.stock)

        job = OrderJob(user_id=request.user_id, product_ids=request.product_ids, quantities=request.quantities)
        self._queue.enqueue(job)
        self._statuses.mark_queued(job.job_id)
        logger.info(f"Order job {job.job_id} accepted for user {request.user_id}")
        return PlaceOrderResponse(accepted=True, message="Order placed successfully.", job_id=job.job_id)
