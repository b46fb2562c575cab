"""Order job queues: the Kafka-backed queue and an in-process equivalent."""

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional, Protocol

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition
from confluent_kafka.admin import AdminClient

from .errors import QueueUnavailable
from .logger import get_kafka_logger
from .schemas import OrderJob

logger = get_kafka_logger("fulfillment-service")


@dataclass(frozen=True)
class Delivery:
    """One delivery of a queued job. The same job may be delivered again."""

    payload: bytes
    delivery_count: int = 1
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class DeadLetter:
    payload: bytes
    reason: str


@dataclass
class _DeliveryReport:
    done: threading.Event = field(default_factory=threading.Event)
    error: Any = None


class OrderQueue(Protocol):
    """Durable, at-least-once channel of order jobs."""

    def enqueue(self, job: OrderJob) -> None:
        """Raises QueueUnavailable when the job was not durably accepted."""
        ...

    def dequeue(self, timeout: float) -> Optional[Delivery]:
        """Wait up to ``timeout`` seconds for a job; ``None`` when none arrived."""
        ...

    def ack(self, delivery: Delivery) -> None:
        ...

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        ...

    def release(self, delivery: Delivery) -> None:
        """Hand an unsettled delivery back so it is delivered again."""
        ...

    def is_ready(self) -> bool:
        ...

    def close(self) -> None:
        ...


class KafkaOrderQueue:
    """Order queue on top of Kafka topics.

    Jobs are keyed by user id so one customer's jobs stay on one partition.
    Offsets are committed manually, and only on ack, so a job whose worker
    dies before acking is delivered again after the partition is reassigned.
    Each worker thread polls through its own consumer.

    Attributes:
        topic: Topic carrying order jobs.
        dead_letter_topic: Topic receiving jobs that will not be retried.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str = "orders.placed",
        dead_letter_topic: str = "orders.dead-letter",
        group_id: str = "fulfillment-worker",
        flush_timeout: float = 5.0,
    ):
        """Initialize the Kafka producer; consumers are created per thread on first dequeue.

        Args:
            bootstrap_servers (str): Comma-separated list of Kafka broker addresses.
            topic (str): Topic carrying order jobs.
            dead_letter_topic (str): Topic receiving dead-lettered jobs.
            group_id (str): Consumer group shared by all workers.
            flush_timeout (float): Seconds to wait for the broker to confirm a write.
        """
        self.topic = topic
        self.dead_letter_topic = dead_letter_topic
        self._bootstrap_servers = bootstrap_servers
        self._group_id = group_id
        self._flush_timeout = flush_timeout
        self._producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "message.timeout.ms": 5000,
                "acks": "all",
                "enable.idempotence": True,
                "partitioner": "consistent_random",
            }
        )
        self._local = threading.local()
        self._consumers: list[Consumer] = []
        self._consumers_lock = threading.Lock()

    def create_consumer(self) -> Consumer:
        """Create a consumer that never commits offsets on its own."""
        return Consumer(
            {
                "bootstrap.servers": self._bootstrap_servers,
                "group.id": self._group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
                "session.timeout.ms": 30000,
                "max.poll.interval.ms": 300000,
            }
        )

    def _thread_consumer(self) -> Consumer:
        consumer = getattr(self._local, "consumer", None)
        if consumer is None:
            consumer = self.create_consumer()
            consumer.subscribe([self.topic])
            logger.info(f"Consumer subscribed to {self.topic} as {self._group_id}")
            self._local.consumer = consumer
            with self._consumers_lock:
                self._consumers.append(consumer)
        return consumer

    def _delivery_callback(self, report: _DeliveryReport, err, msg):
        """Record the delivery report of a single write.

        Args:
            report: Report of the write, filled in place.
            err: Error that occurred during message delivery, if any.
            msg: Message that was delivered or failed.
        """
        if err:
            report.error = err
            logger.bind(topic=msg.topic(), key=msg.key()).error(f"Message failed delivery: {err}")
        else:
            logger.bind(offset=msg.offset(), latency=msg.latency()).debug(
                f"Message delivered to {msg.topic()} [p:{msg.partition()}]"
            )
        report.done.set()

    def _produce(self, topic: str, key: Optional[bytes], value: bytes, headers: Optional[list] = None) -> None:
        report = _DeliveryReport()
        try:
            self._producer.produce(
                topic=topic,
                key=key,
                value=value,
                headers=headers,
                on_delivery=partial(self._delivery_callback, report),
            )
            deadline = time.monotonic() + self._flush_timeout
            while not report.done.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise QueueUnavailable(f"Delivery to {topic} not confirmed within {self._flush_timeout}s")
                self._producer.poll(min(remaining, 0.1))
        except BufferError as e:
            logger.warning("Producer buffer full")
            raise QueueUnavailable(f"Producer buffer full: {e}") from e
        except KafkaException as e:
            raise QueueUnavailable(f"Kafka rejected the message: {e}") from e
        if report.error is not None:
            raise QueueUnavailable(f"Message delivery to {topic} failed: {report.error}")

    def enqueue(self, job: OrderJob) -> None:
        self._produce(self.topic, str(job.user_id).encode("utf-8"), job.model_dump_json().encode("utf-8"))
        logger.info(f"Job {job.job_id} enqueued on {self.topic}")

    def dequeue(self, timeout: float) -> Optional[Delivery]:
        consumer = self._thread_consumer()
        msg = consumer.poll(timeout)
        if msg is None:
            return None
        if msg.error():
            if msg.error().code() == KafkaError._PARTITION_EOF:
                logger.debug("Reached end of partition")
                return None
            logger.error(f"Consumer error: {msg.error()}")
            raise QueueUnavailable(str(msg.error()))
        logger.debug(f"Received message | topic={msg.topic()} | partition={msg.partition()} | offset={msg.offset()}")
        return Delivery(payload=msg.value(), handle=(consumer, msg))

    def ack(self, delivery: Delivery) -> None:
        consumer, msg = delivery.handle
        try:
            consumer.commit(message=msg, asynchronous=False)
        except KafkaException as e:
            raise QueueUnavailable(f"Offset commit failed: {e}") from e

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        _, msg = delivery.handle
        self._produce(self.dead_letter_topic, msg.key(), delivery.payload, headers=[("reason", reason.encode("utf-8"))])
        logger.warning(f"Message moved to {self.dead_letter_topic}: {reason}")
        self.ack(delivery)

    def release(self, delivery: Delivery) -> None:
        """Rewind the partition to the delivered message.

        Commits are cumulative, so without the rewind a later ack on the same
        partition would commit past this message.
        """
        consumer, msg = delivery.handle
        try:
            consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))
        except KafkaException as e:
            raise QueueUnavailable(f"Seek to offset {msg.offset()} failed: {e}") from e
        logger.warning(f"Rewound {msg.topic()} [p:{msg.partition()}] to offset {msg.offset()}")

    def is_ready(self) -> bool:
        """Check if the Kafka cluster answers a metadata request."""
        try:
            admin = AdminClient({"bootstrap.servers": self._bootstrap_servers})
            return bool(admin.list_topics(timeout=5))
        except Exception as e:
            logger.error(f"Kafka connection failed: {e}")
            return False

    def close(self) -> None:
        with self._consumers_lock:
            consumers, self._consumers = self._consumers, []
        for consumer in consumers:
            consumer.close()
        remaining = self._producer.flush(self._flush_timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still pending delivery")
        logger.info("Kafka order queue closed")


@dataclass
class _Entry:
    payload: bytes
    delivery_count: int = 0


class InMemoryOrderQueue:
    """Thread-safe FIFO with visibility-timeout redelivery.

    A dequeued job stays in flight until acked. If the ack does not arrive
    within ``visibility_timeout`` seconds the job goes back to the head of
    the queue and is handed to the next caller of :meth:`dequeue`.
    """

    def __init__(self, visibility_timeout: float = 30.0, clock=time.monotonic):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._cond = threading.Condition()
        self._ready: deque[_Entry] = deque()
        self._in_flight: dict[str, tuple[_Entry, float]] = {}
        self._closed = False
        self.dead_letters: list[DeadLetter] = []

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._ready)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return len(self._in_flight)

    def enqueue(self, job: OrderJob) -> None:
        self.enqueue_raw(job.model_dump_json().encode("utf-8"))
        logger.info(f"Job {job.job_id} enqueued")

    def enqueue_raw(self, payload: bytes) -> None:
        with self._cond:
            if self._closed:
                raise QueueUnavailable("Queue is closed")
            self._ready.append(_Entry(payload))
            self._cond.notify()

    def _requeue_expired(self, now: float) -> None:
        expired = [token for token, (_, deadline) in self._in_flight.items() if deadline <= now]
        for token in expired:
            entry, _ = self._in_flight.pop(token)
            logger.warning(f"Delivery {token} not acknowledged in time, redelivering")
            self._ready.appendleft(entry)

    def dequeue(self, timeout: float) -> Optional[Delivery]:
        with self._cond:
            deadline = self._clock() + timeout
            while True:
                now = self._clock()
                self._requeue_expired(now)
                if self._ready:
                    entry = self._ready.popleft()
                    entry.delivery_count += 1
                    token = uuid.uuid4().hex
                    self._in_flight[token] = (entry, now + self.visibility_timeout)
                    return Delivery(payload=entry.payload, delivery_count=entry.delivery_count, handle=token)
                if self._closed or now >= deadline:
                    return None
                wait = deadline - now
                if self._in_flight:
                    next_expiry = min(expiry for _, expiry in self._in_flight.values())
                    wait = min(wait, max(next_expiry - now, 0.0))
                self._cond.wait(wait)

    def ack(self, delivery: Delivery) -> None:
        with self._cond:
            if self._in_flight.pop(delivery.handle, None) is None:
                logger.warning(f"Delivery {delivery.handle} acknowledged after its visibility window")

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        with self._cond:
            self.dead_letters.append(DeadLetter(delivery.payload, reason))
        logger.warning(f"Delivery {delivery.handle} dead-lettered: {reason}")
        self.ack(delivery)

    def release(self, delivery: Delivery) -> None:
        with self._cond:
            in_flight = self._in_flight.pop(delivery.handle, None)
            if in_flight is not None:
                self._ready.appendleft(in_flight[0])
                self._cond.notify()

    def is_ready(self) -> bool:
        with self._cond:
            return not self._closed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
