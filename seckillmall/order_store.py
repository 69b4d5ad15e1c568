"""Order persistence on SQLite, with the model errors shared by the stores."""

import sqlite3
import threading
import time

from seckillmall.entities import Order, OrderStatus


class ModelError(Exception):
    """Base class for storage-layer errors."""

    default_message = "model error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class NotFoundError(ModelError):
    default_message = "record not found"


class AlreadyExistsError(ModelError):
    default_message = "record already exists"


class InvalidParamsError(ModelError):
    default_message = "invalid params"


class OrderCannotPayError(ModelError):
    default_message = "order cannot be paid"


class OrderCannotCancelError(ModelError):
    default_message = "order cannot be cancelled"


class OrderCannotRefundError(ModelError):
    default_message = "order cannot be refunded"


_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    order_id      VARCHAR(32) PRIMARY KEY,
    user_id       INTEGER NOT NULL,
    product_id    INTEGER NOT NULL,
    product_name  VARCHAR(200) NOT NULL DEFAULT '',
    quantity      INTEGER NOT NULL DEFAULT 1,
    amount        INTEGER NOT NULL DEFAULT 0,
    seckill_price INTEGER DEFAULT 0,
    order_type    INTEGER NOT NULL DEFAULT 0,
    status        INTEGER NOT NULL DEFAULT 0,
    payment_id    VARCHAR(64) DEFAULT '',
    paid_at       INTEGER DEFAULT 0,
    created_at    INTEGER DEFAULT 0,
    updated_at    INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders (user_id);
CREATE INDEX IF NOT EXISTS idx_orders_product_id ON orders (product_id);
CREATE INDEX IF NOT EXISTS idx_orders_status ON orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders (created_at);

CREATE TABLE IF NOT EXISTS seckill_orders (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL,
    seckill_product_id INTEGER NOT NULL,
    order_id           VARCHAR(32) NOT NULL,
    quantity           INTEGER NOT NULL DEFAULT 1,
    created_at         INTEGER DEFAULT 0,
    UNIQUE (user_id, seckill_product_id)
);
CREATE INDEX IF NOT EXISTS idx_seckill_orders_product ON seckill_orders (seckill_product_id);
CREATE INDEX IF NOT EXISTS idx_seckill_orders_order_id ON seckill_orders (order_id);
"""

_ORDER_COLUMNS = (
    "order_id",
    "user_id",
    "product_id",
    "product_name",
    "quantity",
    "amount",
    "seckill_price",
    "order_type",
    "status",
    "payment_id",
    "paid_at",
    "created_at",
    "updated_at",
)
_SELECT_ORDER = "SELECT " + ", ".join(_ORDER_COLUMNS) + " FROM orders"
_INSERT_COLUMNS = "(" + ", ".join(_ORDER_COLUMNS) + ")"
_PLACEHOLDERS = "(" + ", ".join("?" for _ in _ORDER_COLUMNS) + ")"
_IN_CHUNK = 500


class _Connection(sqlite3.Connection):
    """SQLite connection carrying a lock shared by every store that uses it."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def ensure_schema(connection):
    """Create the order tables if they are missing."""
    connection.executescript(_SCHEMA)
    connection.commit()


def connection_lock(connection):
    """The lock attached to a connection from open_database, or a fresh one."""
    return getattr(connection, "lock", None) or threading.RLock()


def open_database(path):
    """Open (and create if needed) the order database at path."""
    connection = sqlite3.connect(str(path), check_same_thread=False, factory=_Connection)
    ensure_schema(connection)
    return connection


def _order_values(order):
    data = order.to_dict()
    return tuple(data[column] for column in _ORDER_COLUMNS)


def _row_to_order(row):
    return Order(**dict(zip(_ORDER_COLUMNS, row)))


class OrderStore:
    """Reads and writes rows of the orders table."""

    def __init__(self, connection):
        self._conn = connection
        self._lock = connection_lock(connection)
        with self._lock:
            ensure_schema(connection)

    def find_one_by_order_id(self, order_id):
        """Return the order with this number or raise NotFoundError."""
        with self._lock:
            row = self._conn.execute(
                _SELECT_ORDER + " WHERE order_id = ? LIMIT 1", (order_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_order(row)

    def find_by_user_id(self, user_id, status, page, page_size):
        """Return (orders on the page, total) for a user, newest first.

        A status above zero restricts the result to that status.
        """
        where = " WHERE user_id = ?"
        params = [user_id]
        if status > 0:
            where += " AND status = ?"
            params.append(int(status))
        offset = (page - 1) * page_size
        with self._lock:
            (total,) = self._conn.execute(
                "SELECT COUNT(*) FROM orders" + where, params
            ).fetchone()
            rows = self._conn.execute(
                _SELECT_ORDER + where + " ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [*params, page_size, offset],
            ).fetchall()
        return [_row_to_order(row) for row in rows], total

    def insert(self, order):
        """Insert one order; raise AlreadyExistsError on a duplicate number."""
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO orders " + _INSERT_COLUMNS + " VALUES " + _PLACEHOLDERS,
                    _order_values(order),
                )
        except sqlite3.IntegrityError as err:
            raise AlreadyExistsError(f"duplicate order {order.order_id}: {err}") from err

    def batch_insert(self, orders):
        """Insert orders, silently skipping existing numbers; return rows inserted."""
        if not orders:
            return 0
        affected = 0
        with self._lock, self._conn:
            for order in orders:
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO orders " + _INSERT_COLUMNS + " VALUES " + _PLACEHOLDERS,
                    _order_values(order),
                )
                affected += cursor.rowcount
        return affected

    def update(self, order):
        """Save every field of the order, inserting it if it does not exist."""
        assignments = ", ".join(
            f"{column} = excluded.{column}" for column in _ORDER_COLUMNS if column != "order_id"
        )
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO orders " + _INSERT_COLUMNS + " VALUES " + _PLACEHOLDERS
                + " ON CONFLICT(order_id) DO UPDATE SET " + assignments,
                _order_values(order),
            )

    def update_status(self, order_id, status):
        """Set the status of an order."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE orders SET status = ? WHERE order_id = ?", (int(status), order_id)
            )

    def pay(self, order_id, payment_id):
        """Mark a pending order paid; raise OrderCannotPayError otherwise."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE orders SET status = ?, payment_id = ?, paid_at = ? "
                "WHERE order_id = ? AND status = ?",
                (
                    int(OrderStatus.PAID),
                    payment_id,
                    int(time.time()),
                    order_id,
                    int(OrderStatus.PENDING),
                ),
            )
        if cursor.rowcount == 0:
            raise OrderCannotPayError()

    def cancel(self, order_id, user_id):
        """Cancel a pending order of this user; raise OrderCannotCancelError otherwise."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE orders SET status = ? WHERE order_id = ? AND user_id = ? AND status = ?",
                (int(OrderStatus.CANCELLED), order_id, user_id, int(OrderStatus.PENDING)),
            )
        if cursor.rowcount == 0:
            raise OrderCannotCancelError()

    def refund(self, order_id):
        """Refund a paid or completed order; raise OrderCannotRefundError otherwise."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE orders SET status = ? WHERE order_id = ? AND status IN (?, ?)",
                (
                    int(OrderStatus.REFUNDED),
                    order_id,
                    int(OrderStatus.PAID),
                    int(OrderStatus.COMPLETED),
                ),
            )
        if cursor.rowcount == 0:
            raise OrderCannotRefundError()

    def check_idempotency(self, order_id):
        """True when an order with this number already exists."""
        with self._lock:
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM orders WHERE order_id = ?", (order_id,)
            ).fetchone()
        return count > 0

    def batch_check_idempotency(self, order_ids):
        """Map each existing order number among order_ids to True."""
        ids = list(order_ids)
        existing = {}
        with self._lock:
            for start in range(0, len(ids), _IN_CHUNK):
                chunk = ids[start:start + _IN_CHUNK]
                marks = ", ".join("?" for _ in chunk)
                rows = self._conn.execute(
                    f"SELECT order_id FROM orders WHERE order_id IN ({marks})", chunk
                ).fetchall()
                existing.update((row[0], True) for row in rows)
        return existing