"""Environment-driven settings for the fulfillment service."""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime settings.

    Attributes:
        kafka_bootstrap_servers (str): Comma-separated list of Kafka broker addresses.
        orders_topic (str): Topic carrying order jobs.
        dead_letter_topic (str): Topic receiving jobs that will not be retried.
        consumer_group (str): Consumer group shared by all worker threads.
        queue_backend (str): ``kafka`` or ``memory``.
        worker_concurrency (int): Number of worker threads.
        worker_poll_timeout (float): Seconds a worker waits on an empty queue.
        worker_max_attempts (int): Attempts per job on transient failures.
        worker_retry_backoff (float): Base delay in seconds between attempts.
        worker_max_backoff (float): Upper bound for the retry delay.
        queue_visibility_timeout (float): Redelivery window of the in-memory queue.
        log_level (str): Minimum log level.
        log_file (str | None): Optional log file path.
        seed_file (str | None): JSON file of users and products loaded into the
            in-memory store when no store is supplied.
    """

    kafka_bootstrap_servers: str = "kafka:9092"
    orders_topic: str = "orders.placed"
    dead_letter_topic: str = "orders.dead-letter"
    consumer_group: str = "fulfillment-worker"
    queue_backend: Literal["kafka", "memory"] = "kafka"
    worker_concurrency: int = Field(2, ge=1, le=64)
    worker_poll_timeout: float = Field(1.0, gt=0)
    worker_max_attempts: int = Field(3, ge=1)
    worker_retry_backoff: float = Field(0.5, ge=0)
    worker_max_backoff: float = Field(5.0, ge=0)
    queue_visibility_timeout: float = Field(30.0, gt=0)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    seed_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset ones."""
        env = {
            "kafka_bootstrap_servers": os.getenv("KAFKA_BOOTSTRAP_SERVERS"),
            "orders_topic": os.getenv("ORDERS_TOPIC"),
            "dead_letter_topic": os.getenv("DEAD_LETTER_TOPIC"),
            "consumer_group": os.getenv("CONSUMER_GROUP"),
            "queue_backend": os.getenv("QUEUE_BACKEND"),
            "worker_concurrency": os.getenv("WORKER_CONCURRENCY"),
            "worker_poll_timeout": os.getenv("WORKER_POLL_TIMEOUT"),
            "worker_max_attempts": os.getenv("WORKER_MAX_ATTEMPTS"),
            "worker_retry_backoff": os.getenv("WORKER_RETRY_BACKOFF"),
            "worker_max_backoff": os.getenv("WORKER_MAX_BACKOFF"),
            "queue_visibility_timeout": os.getenv("QUEUE_VISIBILITY_TIMEOUT"),
            "log_level": os.getenv("LOG_LEVEL"),
            "log_file": os.getenv("LOG_FILE"),
            "seed_file": os.getenv("SEED_FILE"),
        }
        return cls(**{key: value for key, value in env.items() if value is not None})
