"""FastAPI server for order placement and order lookup."""

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import OrderValidationError, QueueUnavailable
from .gate import OrderSubmissionGate
from .logger import setup_service_logger
from .queue import InMemoryOrderQueue, KafkaOrderQueue, OrderQueue
from .schemas import JobStatus, Order, OrderRequest, PlaceOrderResponse
from .store import InMemoryStore, InventoryStore, JobStatusStore
from .worker import OrderProcessor, OrderWorker

router = APIRouter()


def build_queue(settings: Settings) -> OrderQueue:
    """Create the order queue selected by the settings."""
    if settings.queue_backend == "memory":
        return InMemoryOrderQueue(visibility_timeout=settings.queue_visibility_timeout)
    return KafkaOrderQueue(
        settings.kafka_bootstrap_servers,
        topic=settings.orders_topic,
        dead_letter_topic=settings.dead_letter_topic,
        group_id=settings.consumer_group,
    )


class FulfillmentState:
    """Collaborators shared by the request handlers and the worker threads."""

    def __init__(self, settings: Settings, store: InventoryStore, queue: OrderQueue):
        self.settings = settings
        self.store = store
        self.queue = queue
        self.statuses = JobStatusStore()
        self.gate = OrderSubmissionGate(store, queue, self.statuses)
        self.worker = OrderWorker(
            queue,
            OrderProcessor(store),
            self.statuses,
            concurrency=settings.worker_concurrency,
            poll_timeout=settings.worker_poll_timeout,
            max_attempts=settings.worker_max_attempts,
            retry_backoff=settings.worker_retry_backoff,
            max_backoff=settings.worker_max_backoff,
        )


def get_state(request: Request) -> FulfillmentState:
    return request.app.state.fulfillment


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[InventoryStore] = None,
    queue: Optional[OrderQueue] = None,
) -> FastAPI:
    """Build the application. Queue and workers live for the app's lifespan.

    Args:
        settings: Runtime settings, read from the environment when omitted.
        store: Inventory store. When omitted, an in-memory store seeded from
            ``settings.seed_file`` (empty without one).
        queue: Order queue, built from the settings when omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    logger = setup_service_logger("fulfillment-service", settings.log_level, settings.log_file)
    if store is None:
        store = InMemoryStore()
        if settings.seed_file:
            store.load_seed(json.loads(Path(settings.seed_file).read_text()))
        else:
            logger.warning("No store or SEED_FILE given, starting with an empty catalogue")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = FulfillmentState(settings, store, queue or build_queue(settings))
        app.state.fulfillment = state
        state.worker.start()
        yield
        state.worker.stop()
        state.worker.join(timeout=settings.worker_poll_timeout * 5)
        if state.worker.running:
            logger.warning("Worker threads still busy, leaving the queue open")
        else:
            state.queue.close()
        logger.info("Fulfillment service stopped")

    app = FastAPI(title="Order Fulfillment Service", lifespan=lifespan)
    app.include_router(router)
    logger.info("API router mounted.")
    return app


@router.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/ready")
def readiness_check(state: FulfillmentState = Depends(get_state)):
    """Check if the service is ready to accept orders.

    Returns:
        dict: Service readiness status and queue connection status.
    """
    queue_ok = state.queue.is_ready()
    return {"status": "ready" if queue_ok else "not_ready", "queue": queue_ok}


@router.post("/orders/place", response_model=PlaceOrderResponse, status_code=status.HTTP_202_ACCEPTED)
def place_order(order: OrderRequest, state: FulfillmentState = Depends(get_state)):
    """Validate an order and queue it for processing.

    The response only confirms the order was queued. The outcome is
    available from ``/orders/jobs/{job_id}``.

    Args:
        order (OrderRequest): The order to place.

    Returns:
        PlaceOrderResponse: Acceptance with the job id, or the rejection reason.
    """
    try:
        return state.gate.submit(order)
    except OrderValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=PlaceOrderResponse(accepted=False, message=str(e)).model_dump(),
        )
    except QueueUnavailable as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=PlaceOrderResponse(accepted=False, message=f"Order could not be queued: {e}").model_dump(),
        )


@router.get("/orders/user/{user_id}", response_model=List[Order])
def get_user_orders(user_id: int, state: FulfillmentState = Depends(get_state)):
    """List every persisted order of a user.

    Raises:
        HTTPException: If the user is not found
    """
    if state.store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return state.store.list_user_orders(user_id)


@router.get("/orders/jobs/{job_id}", response_model=JobStatus)
def get_job_status(job_id: str, state: FulfillmentState = Depends(get_state)):
    """Get the processing outcome of a placed order.

    Raises:
        HTTPException: If the job is not known
    """
    job_status = state.statuses.get(job_id)
    if job_status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_status
