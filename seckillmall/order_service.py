"""Order processing driven by seckill messages, timeouts and cancellations."""

import logging
import time

from seckillmall import metrics
from seckillmall.constants import SECKILL_STATUS_SUCCESS
from seckillmall.entities import Order, OrderStatus, OrderType, SeckillOrder
from seckillmall.order_store import InvalidParamsError, NotFoundError
from seckillmall.rpc_clients import RpcError, is_no_deduct_record_error

logger = logging.getLogger(__name__)

TIMEOUT_COMPENSATE_REASON = "timeout_not_found_in_db"

_TIMEOUT_RESULTS = {
    "compensated": "compensated_ok",
    "idempotent_failed": "compensated_idempotent",
    "already_success": "skip_already_success",
    "order_not_found": "skip_order_missing",
}


class OrderService:
    """Turns seckill purchases into orders and keeps stock and cache state in step.

    For seckill orders the Redis stock on the seckill service is authoritative,
    so no product stock is deducted when a seckill message is processed.
    """

    def __init__(self, order_store, seckill_order_store, batch_writer=None,
                 product_rpc=None, seckill_rpc=None):
        self._order_store = order_store
        self._seckill_order_store = seckill_order_store
        self._batch_writer = batch_writer
        self.product_rpc = product_rpc
        self.seckill_rpc = seckill_rpc

    def process_seckill_order(self, msg):
        """Create the order for a seckill message; raise when it cannot be stored."""
        start = time.monotonic()
        result = "failed"
        try:
            now = int(time.time())
            order = Order(
                order_id=msg.order_id,
                user_id=msg.user_id,
                product_id=msg.product_id,
                product_name="",
                quantity=int(msg.quantity),
                amount=msg.amount,
                seckill_price=msg.seckill_price,
                order_type=OrderType.SECKILL,
                status=OrderStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            record = SeckillOrder(
                user_id=msg.user_id,
                seckill_product_id=msg.seckill_product_id,
                order_id=msg.order_id,
                quantity=int(msg.quantity),
                created_at=now,
            )

            if self._batch_writer is not None:
                order_id = msg.order_id

                def on_persisted(persisted):
                    if persisted:
                        self._mark_seckill_order_success(order_id)

                self._batch_writer.add_order(order, record, on_persisted)
            else:
                try:
                    exists = self._order_store.check_idempotency(msg.order_id)
                except Exception as err:
                    logger.error("idempotency check failed: orderId=%s, err=%s", msg.order_id, err)
                    result = "idempotency_error"
                    raise
                if exists:
                    logger.debug("order exists, skipping: orderId=%s", msg.order_id)
                    self._mark_seckill_order_success(msg.order_id)
                    result = "idempotent_skip"
                    return
                try:
                    self._order_store.insert(order)
                except Exception as err:
                    logger.error("create order failed: orderId=%s, err=%s", msg.order_id, err)
                    result = "create_order_error"
                    raise
                try:
                    self._seckill_order_store.insert(record)
                except Exception as err:
                    logger.error("write seckill record failed: orderId=%s, err=%s",
                                 msg.order_id, err)
                self._mark_seckill_order_success(msg.order_id)

            logger.debug("seckill order processed: orderId=%s, userId=%s",
                         msg.order_id, msg.user_id)
            result = "success"
        finally:
            metrics.ORDER_SECKILL_PROCESS_TOTAL.inc(result)
            metrics.ORDER_SECKILL_PROCESS_DURATION_SECONDS.observe(
                result, time.monotonic() - start
            )

    def process_order_timeout(self, msg):
        """Compensate a seckill purchase whose order never reached the database."""
        result = "unknown"
        try:
            logger.debug("timeout check: orderId=%s, userId=%s", msg.order_id, msg.user_id)
            try:
                self._order_store.find_one_by_order_id(msg.order_id)
            except NotFoundError:
                pass
            except Exception as err:
                logger.error("query order failed: orderId=%s, err=%s", msg.order_id, err)
                result = "query_error"
                raise
            else:
                logger.debug("order already created, skipping: orderId=%s", msg.order_id)
                result = "skip_existing"
                return

            logger.error("order timed out, compensating: orderId=%s (not found in DB)",
                         msg.order_id)
            if self.seckill_rpc is None:
                result = "compensate_client_nil"
                raise RpcError("seckill rpc client is nil")

            try:
                outcome = self.seckill_rpc.compensate_failed_order(
                    msg.order_id,
                    msg.seckill_product_id,
                    msg.user_id,
                    msg.quantity,
                    TIMEOUT_COMPENSATE_REASON,
                )
            except Exception as err:
                logger.error("failed compensation rpc error: orderId=%s, err=%s",
                             msg.order_id, err)
                result = "compensate_rpc_error"
                raise

            result = _TIMEOUT_RESULTS.get(outcome.result, "compensate_unexpected_result")
            logger.debug("timeout compensation done: orderId=%s, result=%s",
                         msg.order_id, outcome.result)
        finally:
            metrics.ORDER_SECKILL_TIMEOUT_TOTAL.inc(result)

    def _mark_seckill_order_success(self, order_id):
        if self.seckill_rpc is None:
            return
        try:
            self.seckill_rpc.update_order_status(order_id, SECKILL_STATUS_SUCCESS, True)
        except Exception as err:
            logger.error("write back seckill order status failed: orderId=%s, err=%s",
                         order_id, err)
            return
        logger.debug("seckill order status set to success: orderId=%s", order_id)

    def rollback_seckill_order(self, order_id, product_id, quantity):
        """Give back product stock for a cancelled or refunded seckill order."""
        try:
            order = self._order_store.find_one_by_order_id(order_id)
        except NotFoundError as err:
            raise NotFoundError("订单不存在") from err

        if order.order_type != OrderType.SECKILL:
            return

        if self.product_rpc is not None:
            try:
                self.product_rpc.rollback_stock(product_id, quantity, order_id)
            except Exception as err:
                if is_no_deduct_record_error(err):
                    logger.info("skip seckill stock rollback (no deduct record): "
                                "orderId=%s, productId=%s", order_id, product_id)
                    return
                logger.error("rollback stock failed: orderId=%s, err=%s", order_id, err)
                raise
            logger.debug("rollback stock done: orderId=%s, productId=%s, quantity=%s",
                         order_id, product_id, quantity)

    def create_normal_order(self, user_id, product_id, quantity, order_id):
        """Deduct product stock for a normal order."""
        if user_id <= 0 or product_id <= 0 or quantity <= 0:
            raise InvalidParamsError("参数无效")

        if self.product_rpc is not None:
            try:
                self.product_rpc.deduct_stock(product_id, quantity, order_id)
            except Exception as err:
                logger.error("deduct stock failed: orderId=%s, productId=%s, err=%s",
                             order_id, product_id, err)
                raise RpcError("库存扣减失败，请稍后重试") from err

        logger.debug("normal order stock deducted: orderId=%s, productId=%s, quantity=%s",
                     order_id, product_id, quantity)