"""Persistence of seckill purchase records."""

import sqlite3

from seckillmall.entities import SeckillOrder
from seckillmall.order_store import (
    AlreadyExistsError,
    NotFoundError,
    connection_lock,
    ensure_schema,
)

_COLUMNS = ("id", "user_id", "seckill_product_id", "order_id", "quantity", "created_at")
_SELECT = "SELECT " + ", ".join(_COLUMNS) + " FROM seckill_orders"
_INSERT = (
    "INSERT {verb} seckill_orders (user_id, seckill_product_id, order_id, quantity, created_at) "
    "VALUES (?, ?, ?, ?, ?)"
)


def _values(record):
    return (
        record.user_id,
        record.seckill_product_id,
        record.order_id,
        record.quantity,
        record.created_at,
    )


def _row_to_record(row):
    return SeckillOrder(**dict(zip(_COLUMNS, row)))


class SeckillOrderStore:
    """Reads and writes rows of the seckill_orders table."""

    def __init__(self, connection):
        self._conn = connection
        self._lock = connection_lock(connection)
        with self._lock:
            ensure_schema(connection)

    def insert(self, record):
        """Insert one record and set its id; raise AlreadyExistsError on conflict."""
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(_INSERT.format(verb="INTO"), _values(record))
        except sqlite3.IntegrityError as err:
            raise AlreadyExistsError(
                f"duplicate seckill order for user {record.user_id}: {err}"
            ) from err
        record.id = cursor.lastrowid

    def batch_insert(self, records):
        """Insert records, skipping any that conflict with an existing purchase."""
        if not records:
            return
        with self._lock, self._conn:
            self._conn.executemany(
                _INSERT.format(verb="OR IGNORE INTO"), [_values(r) for r in records]
            )

    def find_by_user_and_seckill_product(self, user_id, seckill_product_id):
        """Return the user's record for a seckill product or raise NotFoundError."""
        with self._lock:
            row = self._conn.execute(
                _SELECT + " WHERE user_id = ? AND seckill_product_id = ? LIMIT 1",
                (user_id, seckill_product_id),
            ).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_record(row)

    def find_by_order_id(self, order_id):
        """Return the record for an order number or raise NotFoundError."""
        with self._lock:
            row = self._conn.execute(
                _SELECT + " WHERE order_id = ? LIMIT 1", (order_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_record(row)