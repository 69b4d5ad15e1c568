"""Consumes seckill order messages from RabbitMQ with retries and dead-lettering."""

import enum
import functools
import json
import logging
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, fields

import pika

logger = logging.getLogger(__name__)

# Queue and exchange names.
SECKILL_ORDER_QUEUE_NAME = "seckill_order_queue"
SECKILL_DLX_NAME = "seckill_dlx"
SECKILL_DEAD_QUEUE_NAME = "seckill_dead_queue"
SECKILL_DELAY_QUEUE_NAME = "seckill_delay_queue"
SECKILL_CHECK_QUEUE_NAME = "seckill_order_check_queue"

# Routing keys.
ROUTING_KEY_DEAD = "seckill.dead"
ROUTING_KEY_DELAY = "seckill.delay"
ROUTING_KEY_CHECK = "seckill.order.check"

MAX_RETRY_COUNT = 3
ORDER_CHECK_DELAY_MS = 300000
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0
WORKER_POOL_SIZE = 50

_POLL_SECONDS = 1.0


@dataclass
class SeckillOrderMessage:
    """A successful seckill purchase waiting to become an order."""

    order_id: str = ""
    user_id: int = 0
    seckill_product_id: int = 0
    product_id: int = 0
    quantity: int = 0
    seckill_price: int = 0
    amount: int = 0
    created_at: int = 0

    @classmethod
    def from_json(cls, data):
        """Decode a message from JSON text or bytes; raise ValueError when malformed."""
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError("message must be a JSON object")
        values = {}
        for field in fields(cls):
            value = payload.get(field.name)
            if value is None:
                continue
            if field.name == "order_id":
                if not isinstance(value, str):
                    raise ValueError(f"{field.name} must be a string")
            elif isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{field.name} must be an integer")
            values[field.name] = value
        return cls(**values)

    def to_json(self):
        """Encode the message as JSON text."""
        return json.dumps(asdict(self))


class Disposition(enum.Enum):
    """What to tell the broker about a delivered message."""

    ACK = "ack"
    REQUEUE = "requeue"
    DEAD_LETTER = "dead_letter"
    REJECT = "reject"


def _to_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def get_retry_count_from_x_death(headers, queue_name):
    """Number of times a message was dead-lettered from queue_name, per x-death."""
    if not headers or not queue_name:
        return 0
    raw = headers.get("x-death")
    if raw is None:
        return 0
    if not isinstance(raw, (list, tuple)):
        logger.error("Invalid x-death header type: %s", type(raw).__name__)
        return 0
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        if entry.get("queue") != queue_name:
            continue
        count = _to_int(entry.get("count"))
        return count if count is not None and count > 0 else 0
    return 0


def declare_topology(channel, exchange, queue_name, routing_key):
    """Declare the exchanges, queues and bindings the consumers rely on."""
    channel.exchange_declare(exchange=exchange, exchange_type="direct", durable=True)
    channel.exchange_declare(exchange=SECKILL_DLX_NAME, exchange_type="direct", durable=True)

    channel.queue_declare(queue=SECKILL_DEAD_QUEUE_NAME, durable=True)
    channel.queue_bind(queue=SECKILL_DEAD_QUEUE_NAME, exchange=SECKILL_DLX_NAME,
                       routing_key=ROUTING_KEY_DEAD)

    dead_letter_args = {
        "x-dead-letter-exchange": SECKILL_DLX_NAME,
        "x-dead-letter-routing-key": ROUTING_KEY_DEAD,
    }
    channel.queue_declare(queue=queue_name, durable=True, arguments=dict(dead_letter_args))
    channel.queue_bind(queue=queue_name, exchange=exchange, routing_key=routing_key)

    # Messages sit here without a consumer until their TTL sends them to the check queue.
    delay_args = {
        "x-message-ttl": ORDER_CHECK_DELAY_MS,
        "x-dead-letter-exchange": exchange,
        "x-dead-letter-routing-key": ROUTING_KEY_CHECK,
    }
    channel.queue_declare(queue=SECKILL_DELAY_QUEUE_NAME, durable=True, arguments=delay_args)
    channel.queue_bind(queue=SECKILL_DELAY_QUEUE_NAME, exchange=exchange,
                       routing_key=ROUTING_KEY_DELAY)

    channel.queue_declare(queue=SECKILL_CHECK_QUEUE_NAME, durable=True,
                          arguments=dict(dead_letter_args))
    channel.queue_bind(queue=SECKILL_CHECK_QUEUE_NAME, exchange=exchange,
                       routing_key=ROUTING_KEY_CHECK)


def decide_disposition(body, headers, queue_name, process_func):
    """Decode and process one delivery and decide how to settle it."""
    try:
        message = SeckillOrderMessage.from_json(body)
    except (ValueError, UnicodeDecodeError) as err:
        logger.error("Failed to unmarshal message: %s", err)
        return Disposition.REJECT

    retry_count = get_retry_count_from_x_death(headers, queue_name)
    if process_func is not None:
        try:
            process_func(message)
        except Exception as err:
            logger.error("Failed to process: orderId=%s, retryCount=%d, err=%s",
                         message.order_id, retry_count, err)
            if retry_count >= MAX_RETRY_COUNT:
                logger.error("Max retry exceeded, routing to DLX: orderId=%s", message.order_id)
                return Disposition.DEAD_LETTER
            return Disposition.REQUEUE

    logger.info("Processed: orderId=%s", message.order_id)
    return Disposition.ACK


def _next_backoff(backoff):
    return backoff * 2 if backoff < RECONNECT_MAX_SECONDS else backoff


class Consumer:
    """Consumes one queue on a background thread, reconnecting with backoff."""

    def __init__(self, url, exchange, routing_key, queue_name, consumer_tag="", process_func=None):
        self.url = url
        self.exchange = exchange
        self.routing_key = routing_key
        self.queue_name = queue_name
        self.consumer_tag = consumer_tag
        self.process_func = process_func
        self._stop = threading.Event()
        self._thread = None
        self._executor = None
        self._slots = threading.BoundedSemaphore(WORKER_POOL_SIZE)
        self._connection = None
        self._channel = None

    def handle_message(self, body, headers=None):
        """Process one delivery body and return how it should be settled."""
        return decide_disposition(body, headers, self.queue_name, self.process_func)

    def start(self):
        """Begin consuming in the background."""
        if self._thread is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=WORKER_POOL_SIZE,
                                            thread_name_prefix=f"consumer-{self.queue_name}")
        self._thread = threading.Thread(target=self._run, name=f"consume-{self.queue_name}",
                                        daemon=True)
        self._thread.start()
        logger.info("RabbitMQ consumer started: queue=%s", self.queue_name)

    def stop(self):
        """Stop consuming, wait for in-flight work and close the connection."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._close_connection()
        logger.info("RabbitMQ consumer stopped: queue=%s", self.queue_name)

    def _run(self):
        backoff = RECONNECT_BASE_SECONDS
        while not self._stop.is_set():
            try:
                self._setup_connection()
                backoff = RECONNECT_BASE_SECONDS
                logger.info("Consumer started consuming: queue=%s", self.queue_name)
                self._consume_loop()
                if self._stop.is_set():
                    break
                logger.error("Consumer channel closed, reconnecting: queue=%s", self.queue_name)
                backoff = _next_backoff(backoff)
            except Exception as err:
                if self._stop.is_set():
                    break
                logger.error("Consumer connection failed: %s, retrying in %.0fs", err, backoff)
            finally:
                self._close_connection()
            if self._stop.wait(backoff):
                break
            backoff = _next_backoff(backoff)
        logger.info("Consumer stopping: queue=%s", self.queue_name)

    def _setup_connection(self):
        connection = pika.BlockingConnection(pika.URLParameters(self.url))
        try:
            channel = connection.channel()
            declare_topology(channel, self.exchange, self.queue_name, self.routing_key)
            channel.basic_qos(prefetch_count=WORKER_POOL_SIZE)
        except Exception:
            try:
                connection.close()
            except Exception:
                pass
            raise
        self._connection, self._channel = connection, channel

    def _consume_loop(self):
        connection, channel = self._connection, self._channel
        for method, properties, body in channel.consume(
            self.queue_name, auto_ack=False, inactivity_timeout=_POLL_SECONDS
        ):
            if self._stop.is_set():
                break
            if method is None:
                continue
            headers = properties.headers if properties is not None else None
            self._slots.acquire()
            self._executor.submit(self._work, connection, channel, method.delivery_tag,
                                  body, headers)
        try:
            channel.cancel()
        except Exception:
            pass

    def _work(self, connection, channel, delivery_tag, body, headers):
        try:
            disposition = self.handle_message(body, headers)
            connection.add_callback_threadsafe(
                functools.partial(self._settle, channel, delivery_tag, disposition)
            )
        except Exception as err:
            logger.error("Failed to settle delivery %s: %s", delivery_tag, err)
        finally:
            self._slots.release()

    @staticmethod
    def _settle(channel, delivery_tag, disposition):
        try:
            if disposition is Disposition.ACK:
                channel.basic_ack(delivery_tag=delivery_tag)
            elif disposition is Disposition.REQUEUE:
                channel.basic_nack(delivery_tag=delivery_tag, requeue=True)
            elif disposition is Disposition.DEAD_LETTER:
                channel.basic_nack(delivery_tag=delivery_tag, requeue=False)
            else:
                channel.basic_reject(delivery_tag=delivery_tag, requeue=False)
        except Exception as err:
            logger.error("Failed to ack: %s", err)

    def _close_connection(self):
        channel, connection = self._channel, self._connection
        self._channel = self._connection = None
        for resource in (channel, connection):
            if resource is None:
                continue
            try:
                if resource.is_open:
                    resource.close()
            except Exception:
                pass