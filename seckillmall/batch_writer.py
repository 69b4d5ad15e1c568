"""Buffers orders and writes them to the database in batches."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from seckillmall.entities import Order, SeckillOrder
from seckillmall.order_store import AlreadyExistsError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 100
DEFAULT_FLUSH_TIMEOUT_MS = 500


@dataclass
class _BufferedOrder:
    order: Order
    seckill: Optional[SeckillOrder]
    persist_hook: Optional[Callable[[bool], None]]


def is_duplicate_insert_error(err):
    """True when an insert failed because the row already exists."""
    if err is None:
        return False
    if isinstance(err, AlreadyExistsError):
        return True
    return "duplicate" in str(err).lower()


def _trigger_persist_hook(hook, persisted):
    if hook is None:
        return
    try:
        hook(persisted)
    except Exception:
        logger.exception("persist hook failed")


class BatchWriter:
    """Collects orders and inserts them once the batch is full or a timeout passes.

    Each order's persist hook is called with True once the order is known to
    be stored (including when it already existed) and with False when it
    could not be stored.
    """

    def __init__(self, order_store, seckill_order_store,
                 max_batch_size=DEFAULT_MAX_BATCH_SIZE,
                 flush_timeout_ms=DEFAULT_FLUSH_TIMEOUT_MS):
        if max_batch_size <= 0:
            max_batch_size = DEFAULT_MAX_BATCH_SIZE
        if flush_timeout_ms <= 0:
            flush_timeout_ms = DEFAULT_FLUSH_TIMEOUT_MS
        self._order_store = order_store
        self._seckill_order_store = seckill_order_store
        self.max_batch_size = max_batch_size
        self.flush_timeout = flush_timeout_ms / 1000.0
        self._buffer = []
        self._lock = threading.Lock()
        self._timer = None
        self._closed = False
        self._workers = []
        logger.info(
            "BatchWriter initialized: maxBatchSize=%d, flushTimeout=%dms",
            max_batch_size, flush_timeout_ms,
        )

    def add_order(self, order, seckill_order=None, persist_hook=None):
        """Queue an order (and its seckill record) for writing."""
        with self._lock:
            dropped = self._closed
            if not dropped:
                self._buffer.append(_BufferedOrder(order, seckill_order, persist_hook))
                if len(self._buffer) >= self.max_batch_size:
                    self._flush_locked()
                elif self._timer is None:
                    self._timer = threading.Timer(self.flush_timeout, self._on_timer)
                    self._timer.daemon = True
                    self._timer.start()
        if dropped:
            logger.error("BatchWriter already closed, dropping order: %s", order.order_id)
            _trigger_persist_hook(persist_hook, False)

    def flush(self):
        """Write out whatever is buffered now."""
        with self._lock:
            self._flush_locked()

    def shutdown(self):
        """Stop accepting orders, flush the buffer and wait for all writes."""
        logger.info("Flushing batch writer buffer before shutdown...")
        with self._lock:
            self._closed = True
            self._flush_locked()
            workers = list(self._workers)
        for worker in workers:
            worker.join()
        logger.info("Batch writer shutdown complete")

    def _on_timer(self):
        with self._lock:
            self._flush_locked()

    def _flush_locked(self):
        if not self._buffer:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        items, self._buffer = self._buffer, []
        self._workers = [w for w in self._workers if w.is_alive()]
        worker = threading.Thread(target=self._run_batch, args=(items,), daemon=True)
        self._workers.append(worker)
        worker.start()

    def _run_batch(self, items):
        try:
            self._batch_insert(items)
        except Exception:
            logger.exception("batch insert crashed")

    def _batch_insert(self, items):
        start = time.monotonic()
        order_ids = [item.order.order_id for item in items]
        try:
            existing = self._order_store.batch_check_idempotency(order_ids)
        except Exception as err:
            logger.error("Batch check idempotency failed: %s", err)
            self._fallback_insert_orders(items)
            return

        valid_items = []
        duplicates = 0
        for item in items:
            if existing.get(item.order.order_id):
                duplicates += 1
                _trigger_persist_hook(item.persist_hook, True)
            else:
                valid_items.append(item)

        if duplicates:
            logger.info("Filtered duplicate orders: %d/%d", duplicates, len(items))
        if not valid_items:
            logger.info("All orders are duplicates, skipping batch insert")
            return

        valid_orders = [item.order for item in valid_items]
        seckill_records = [item.seckill for item in valid_items if item.seckill is not None]

        try:
            affected = self._order_store.batch_insert(valid_orders)
        except Exception as err:
            logger.error("Batch insert orders failed: count=%d, err=%s", len(valid_orders), err)
            self._fallback_insert_orders(valid_items)
            return

        logger.info(
            "Batch insert orders success: total=%d, inserted=%d, duplicates=%d, duration=%dms",
            len(items), affected, duplicates, int((time.monotonic() - start) * 1000),
        )
        for item in valid_items:
            _trigger_persist_hook(item.persist_hook, True)

        if seckill_records:
            try:
                self._seckill_order_store.batch_insert(seckill_records)
            except Exception as err:
                logger.error(
                    "Batch insert seckill_orders failed (non-critical): count=%d, err=%s",
                    len(seckill_records), err,
                )

    def _fallback_insert_orders(self, items):
        logger.info("Fallback to single insert: count=%d", len(items))
        for item in items:
            try:
                self._order_store.insert(item.order)
            except Exception as err:
                if is_duplicate_insert_error(err):
                    _trigger_persist_hook(item.persist_hook, True)
                    continue
                logger.error(
                    "Fallback insert failed: orderId=%s, err=%s", item.order.order_id, err
                )
                _trigger_persist_hook(item.persist_hook, False)
                continue
            _trigger_persist_hook(item.persist_hook, True)