"""Wiring of stores, batch writer, service and consumers for the order service."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from seckillmall.batch_writer import BatchWriter
from seckillmall.consumer import (
    ROUTING_KEY_CHECK,
    SECKILL_CHECK_QUEUE_NAME,
    SECKILL_ORDER_QUEUE_NAME,
    Consumer,
)
from seckillmall.order_service import OrderService
from seckillmall.order_store import OrderStore, open_database
from seckillmall.rpc_clients import ProductServiceClient
from seckillmall.seckill_order_store import SeckillOrderStore

logger = logging.getLogger(__name__)

BATCH_MAX_SIZE = 50
BATCH_FLUSH_TIMEOUT_MS = 200


@dataclass
class ServiceContext:
    """Everything a running order service holds; close it to release it all."""

    config: Any
    connection: Any
    order_store: OrderStore
    seckill_order_store: SeckillOrderStore
    batch_writer: BatchWriter
    order_service: OrderService
    product_rpc: Any
    seckill_rpc: Any = None
    consumer: Optional[Consumer] = None
    check_consumer: Optional[Consumer] = None
    _closed: bool = field(default=False, init=False, repr=False)

    def start(self):
        """Start the order queue and timeout-check queue consumers."""
        for consumer in (self.consumer, self.check_consumer):
            if consumer is None:
                continue
            try:
                consumer.start()
            except Exception as err:
                logger.error("RabbitMQ consumer failed to start: queue=%s, err=%s",
                             consumer.queue_name, err)

    def close(self):
        """Stop consuming, flush buffered orders and close the database."""
        if self._closed:
            return
        self._closed = True
        for consumer in (self.consumer, self.check_consumer):
            if consumer is not None:
                try:
                    consumer.stop()
                except Exception as err:
                    logger.error("RabbitMQ consumer failed to stop: %s", err)
        self.batch_writer.shutdown()
        self.connection.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def build_service_context(config, product_rpc=None, seckill_rpc=None, connect_consumers=True):
    """Open the database and assemble the service; consumers need a broker URL."""
    connection = open_database(config.data_source)
    order_store = OrderStore(connection)
    seckill_order_store = SeckillOrderStore(connection)
    batch_writer = BatchWriter(order_store, seckill_order_store,
                               BATCH_MAX_SIZE, BATCH_FLUSH_TIMEOUT_MS)
    if product_rpc is None:
        product_rpc = ProductServiceClient()
    if seckill_rpc is None:
        logger.error("seckill RPC client not configured; status write-back is disabled")

    order_service = OrderService(order_store, seckill_order_store, batch_writer,
                                 product_rpc, seckill_rpc)

    consumer = check_consumer = None
    rabbit = config.rabbitmq
    if connect_consumers and rabbit.url:
        consumer = Consumer(
            rabbit.url,
            rabbit.exchange,
            rabbit.routing_key,
            SECKILL_ORDER_QUEUE_NAME,
            rabbit.consumer_tag,
            order_service.process_seckill_order,
        )
        check_consumer = Consumer(
            rabbit.url,
            rabbit.exchange,
            ROUTING_KEY_CHECK,
            SECKILL_CHECK_QUEUE_NAME,
            rabbit.consumer_tag + "_check",
            order_service.process_order_timeout,
        )
    elif connect_consumers:
        logger.error("RabbitMQ URL not configured; consumers are disabled")

    return ServiceContext(
        config=config,
        connection=connection,
        order_store=order_store,
        seckill_order_store=seckill_order_store,
        batch_writer=batch_writer,
        order_service=order_service,
        product_rpc=product_rpc,
        seckill_rpc=seckill_rpc,
        consumer=consumer,
        check_consumer=check_consumer,
    )