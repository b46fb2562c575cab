"""Order processing: authoritative stock check, decrement and order persistence."""

import threading
from typing import Callable, Optional

from pydantic import ValidationError

from .errors import (
    InsufficientStock,
    MalformedJob,
    OrderValidationError,
    ProductsNotFound,
    TransientError,
    UserNotFound,
)
from .inventory import ProductLocks, check_stock, order_total
from .logger import logger
from .queue import Delivery, OrderQueue
from .schemas import Order, OrderJob
from .store import InventoryStore, JobStatusStore


class OrderProcessor:
    """Turns an order job into a persisted order, all lines or none.

    Every product of a job is locked for the duration of the check and the
    commit, and the store applies each decrement only while stock covers it.
    """

    def __init__(self, store: InventoryStore, locks: Optional[ProductLocks] = None):
        self._store = store
        self._locks = locks or ProductLocks()

    @staticmethod
    def _validate_payload(job: OrderJob) -> None:
        if not job.product_ids:
            raise MalformedJob(f"Job {job.job_id} has no products")
        if len(job.product_ids) != len(job.quantities):
            raise MalformedJob(f"Job {job.job_id} has {len(job.product_ids)} products but {len(job.quantities)} quantities")
        if any(quantity <= 0 for quantity in job.quantities):
            raise MalformedJob(f"Job {job.job_id} has a non-positive quantity")

    def process(self, job: OrderJob) -> Order:
        """Process one order job.

        Redelivery of a job that was already committed returns the existing
        order without touching stock.

        Args:
            job (OrderJob): The job to process.

        Returns:
            Order: The persisted order.

        Raises:
            MalformedJob: If the payload is inconsistent.
            UserNotFound: If the user does not exist.
            ProductsNotFound: If any product does not exist.
            InsufficientStock: If any line cannot be covered; nothing is decremented.
            StorageUnavailable: If the store cannot be reached.
        """
        logger.debug(f"Processing order job {job.job_id} for user {job.user_id}")
        self._validate_payload(job)

        existing = self._store.find_order_by_job(job.job_id)
        if existing is not None:
            logger.info(f"Job {job.job_id} already processed as order {existing.id}")
            return existing

        if self._store.get_user(job.user_id) is None:
            raise UserNotFound(job.user_id)

        product_ids = list(dict.fromkeys(job.product_ids))
        with self._locks.hold(product_ids):
            existing = self._store.find_order_by_job(job.job_id)
            if existing is not None:
                logger.info(f"Job {job.job_id} already processed as order {existing.id}")
                return existing

            products = {product.id: product for product in self._store.get_products_by_ids(product_ids)}
            missing = set(product_ids) - products.keys()
            if missing:
                raise ProductsNotFound(missing)

            lines = job.lines()
            decrements = check_stock(lines, products)
            order = Order(job_id=job.job_id, user_id=job.user_id, lines=lines, total=order_total(lines, products))
            order = self._store.commit_order(order, decrements)

        logger.info(f"Order {order.id} processed successfully for user {job.user_id}, total {order.total}")
        return order


class _ShutdownRequested(Exception):
    """Raised when the worker is stopped while a job waits to be retried."""


class OrderWorker:
    """Consumes order jobs from the queue with a bounded number of threads.

    Outcomes per job:
        - completed: order persisted, then acked.
        - failed: stock ran out before processing, recorded and acked without retry.
        - dead_lettered: malformed payload, missing user or products, unexpected
          errors, or transient failures beyond ``max_attempts``.
        - released: the worker stopped while the job waited for a retry; the
          job is handed back to the queue and keeps its queued status.
    """

    def __init__(
        self,
        queue: OrderQueue,
        processor: OrderProcessor,
        statuses: JobStatusStore,
        concurrency: int = 1,
        poll_timeout: float = 1.0,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        max_backoff: float = 5.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._queue = queue
        self._processor = processor
        self._statuses = statuses
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._max_backoff = max_backoff
        self._stop = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        self._stop.clear()
        for index in range(self._concurrency):
            thread = threading.Thread(target=self.run, name=f"order-worker-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {self._concurrency} order worker thread(s)")

    def stop(self) -> None:
        """Stop taking new jobs.

        A job already dequeued is finished first, unless it is waiting for a
        retry, in which case it is handed back to the queue.
        """
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]

    def run(self) -> None:
        """Consume jobs until stopped."""
        logger.info("Starting order processing loop")
        while not self._stop.is_set():
            try:
                delivery = self._queue.dequeue(self._poll_timeout)
            except TransientError as e:
                logger.error(f"Queue unavailable: {e}")
                self._stop.wait(self._retry_backoff)
                continue
            if delivery is None:
                continue
            self.handle(delivery)
        logger.info("Order processing loop stopped")

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_backoff * 2 ** (attempt - 1), self._max_backoff)

    def _process_with_retry(self, job: OrderJob) -> Order:
        attempt = 1
        while True:
            try:
                return self._processor.process(job)
            except TransientError as e:
                if attempt >= self._max_attempts:
                    raise
                delay = self._backoff(attempt)
                logger.warning(f"Attempt {attempt} for job {job.job_id} failed: {e}; retrying in {delay:.2f}s")
                self._sleep(delay)
                if self._stop.is_set():
                    raise _ShutdownRequested(f"Worker stopped while job {job.job_id} waited for a retry")
                attempt += 1

    def _dead_letter(self, delivery: Delivery, job_id: Optional[str], reason: str) -> str:
        if job_id:
            self._statuses.update(job_id, "dead_lettered", reason=reason)
        try:
            self._queue.dead_letter(delivery, reason)
        except TransientError as e:
            logger.error(f"Failed to dead-letter job {job_id}: {e}")
            self._release(delivery, job_id)
        return "dead_lettered"

    def _ack(self, delivery: Delivery, job_id: str) -> None:
        try:
            self._queue.ack(delivery)
        except TransientError as e:
            logger.error(f"Failed to acknowledge job {job_id}: {e}")
            self._release(delivery, job_id)

    def _release(self, delivery: Delivery, job_id: Optional[str]) -> None:
        try:
            self._queue.release(delivery)
        except TransientError as e:
            logger.error(f"Failed to hand job {job_id} back to the queue: {e}")
        else:
            logger.warning(f"Job {job_id} handed back to the queue for redelivery")

    def handle(self, delivery: Delivery) -> str:
        """Process one delivery and settle it with the queue.

        Returns:
            str: The recorded job status.
        """
        try:
            job = OrderJob.model_validate_json(delivery.payload)
        except ValidationError as e:
            logger.error(f"Failed to parse order job: {e}")
            return self._dead_letter(delivery, None, f"Malformed job payload: {e}")

        try:
            order = self._process_with_retry(job)
        except InsufficientStock as e:
            logger.warning(f"Order job {job.job_id} failed: {e}")
            self._statuses.update(job.job_id, "failed", reason=str(e))
            self._ack(delivery, job.job_id)
            return "failed"
        except OrderValidationError as e:
            logger.error(f"Order job {job.job_id} references missing records: {e}")
            return self._dead_letter(delivery, job.job_id, str(e))
        except MalformedJob as e:
            logger.error(f"Malformed order job {job.job_id}: {e}")
            return self._dead_letter(delivery, job.job_id, str(e))
        except TransientError as e:
            logger.error(f"Order job {job.job_id} gave up after {self._max_attempts} attempts: {e}")
            return self._dead_letter(delivery, job.job_id, f"Retry budget exhausted: {e}")
        except _ShutdownRequested as e:
            logger.info(str(e))
            self._release(delivery, job.job_id)
            return "released"
        except Exception as e:
            logger.opt(exception=e).error(f"Unexpected error processing order job {job.job_id}: {e}")
            return self._dead_letter(delivery, job.job_id, f"Unexpected error: {e}")

        self._statuses.update(job.job_id, "completed", order_id=order.id)
        self._ack(delivery, job.job_id)
        return "completed"
