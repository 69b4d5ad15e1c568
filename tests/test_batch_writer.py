import threading
import time

import pytest

from seckillmall.batch_writer import BatchWriter, is_duplicate_insert_error
from seckillmall.entities import Order, OrderType, SeckillOrder
from seckillmall.order_store import AlreadyExistsError, OrderStore, open_database
from seckillmall.seckill_order_store import SeckillOrderStore


@pytest.fixture
def stores():
    connection = open_database(":memory:")
    yield OrderStore(connection), SeckillOrderStore(connection)
    connection.close()


class _Recorder:
    def __init__(self):
        self.results = {}
        self._lock = threading.Lock()

    def hook_for(self, order_id):
        def hook(persisted):
            with self._lock:
                self.results[order_id] = persisted
        return hook


def _order(order_id, user_id=1):
    return Order(order_id=order_id, user_id=user_id, product_id=9,
                 quantity=1, amount=100, order_type=OrderType.SECKILL)


def _seckill(order_id, user_id=1):
    return SeckillOrder(user_id=user_id, seckill_product_id=4, order_id=order_id)


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_shutdown_flushes_and_reports_persisted(stores):
    order_store, seckill_store = stores
    recorder = _Recorder()
    writer = BatchWriter(order_store, seckill_store, 10, 10000)
    writer.add_order(_order("S1", 1), _seckill("S1", 1), recorder.hook_for("S1"))
    writer.add_order(_order("S2", 2), _seckill("S2", 2), recorder.hook_for("S2"))
    writer.shutdown()
    assert recorder.results == {"S1": True, "S2": True}
    assert order_store.check_idempotency("S1")
    assert seckill_store.find_by_order_id("S2").user_id == 2


def test_full_batch_flushes_without_timer(stores):
    order_store, seckill_store = stores
    writer = BatchWriter(order_store, seckill_store, 2, 60000)
    writer.add_order(_order("S1", 1), None, None)
    writer.add_order(_order("S2", 2), None, None)
    assert _wait_for(lambda: order_store.check_idempotency("S2"))
    writer.shutdown()
    assert order_store.check_idempotency("S1")


def test_timeout_flushes_partial_batch(stores):
    order_store, seckill_store = stores
    writer = BatchWriter(order_store, seckill_store, 100, 20)
    writer.add_order(_order("S1"), None, None)
    assert _wait_for(lambda: order_store.check_idempotency("S1"))
    writer.shutdown()
    assert order_store.batch_check_idempotency(["S1"]) == {"S1": True}


def test_existing_orders_report_persisted(stores):
    order_store, seckill_store = stores
    order_store.insert(_order("S1"))
    recorder = _Recorder()
    writer = BatchWriter(order_store, seckill_store, 10, 10000)
    writer.add_order(_order("S1"), None, recorder.hook_for("S1"))
    writer.shutdown()
    assert recorder.results == {"S1": True}


def test_closed_writer_drops_order(stores):
    order_store, seckill_store = stores
    recorder = _Recorder()
    writer = BatchWriter(order_store, seckill_store, 10, 10000)
    writer.shutdown()
    writer.add_order(_order("S1"), None, recorder.hook_for("S1"))
    assert recorder.results == {"S1": False}
    assert not order_store.check_idempotency("S1")


class _CheckFailingStore:
    def __init__(self, inner):
        self._inner = inner

    def batch_check_idempotency(self, order_ids):
        raise RuntimeError("connection lost")

    def batch_insert(self, orders):
        return self._inner.batch_insert(orders)

    def insert(self, order):
        return self._inner.insert(order)


def test_fallback_inserts_one_by_one(stores):
    order_store, seckill_store = stores
    order_store.insert(_order("S1"))
    recorder = _Recorder()
    writer = BatchWriter(_CheckFailingStore(order_store), seckill_store, 10, 10000)
    writer.add_order(_order("S1"), None, recorder.hook_for("S1"))
    writer.add_order(_order("S2"), None, recorder.hook_for("S2"))
    writer.shutdown()
    assert recorder.results == {"S1": True, "S2": True}
    assert order_store.check_idempotency("S2")


class _BrokenStore:
    def batch_check_idempotency(self, order_ids):
        return {}

    def batch_insert(self, orders):
        raise RuntimeError("disk gone")

    def insert(self, order):
        raise RuntimeError("disk gone")


def test_failed_writes_report_not_persisted(stores):
    _, seckill_store = stores
    recorder = _Recorder()
    writer = BatchWriter(_BrokenStore(), seckill_store, 10, 10000)
    writer.add_order(_order("S1"), None, recorder.hook_for("S1"))
    writer.shutdown()
    assert recorder.results == {"S1": False}


def test_defaults_for_non_positive_settings(stores):
    order_store, seckill_store = stores
    writer = BatchWriter(order_store, seckill_store, 0, -5)
    assert writer.max_batch_size == 100
    assert writer.flush_timeout == pytest.approx(0.5)
    writer.shutdown()


@pytest.mark.parametrize(
    "err, expected",
    [
        (None, False),
        (AlreadyExistsError(), True),
        (RuntimeError("Error 1062: Duplicate entry 'S1' for key 'PRIMARY'"), True),
        (RuntimeError("connection refused"), False),
    ],
)
def test_is_duplicate_insert_error(err, expected):
    assert is_duplicate_insert_error(err) is expected