"""Order and seckill-purchase records as stored in the database."""

from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import ClassVar


class OrderStatus(IntEnum):
    PENDING = 0
    PAID = 1
    CANCELLED = 2
    REFUNDED = 3
    COMPLETED = 4


class OrderType(IntEnum):
    NORMAL = 0
    SECKILL = 1


@dataclass
class Order:
    """One order row. Amounts are in fen; times are Unix seconds."""

    TABLE_NAME: ClassVar[str] = "orders"

    order_id: str
    user_id: int
    product_id: int
    product_name: str = ""
    quantity: int = 1
    amount: int = 0
    seckill_price: int = 0
    order_type: int = OrderType.NORMAL
    status: int = OrderStatus.PENDING
    payment_id: str = ""
    paid_at: int = 0
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self):
        """Plain dictionary with the stored field names."""
        data = asdict(self)
        data["order_type"] = int(self.order_type)
        data["status"] = int(self.status)
        return data


@dataclass
class SeckillOrder:
    """One seckill purchase record, unique per user and seckill product."""

    TABLE_NAME: ClassVar[str] = "seckill_orders"

    user_id: int
    seckill_product_id: int
    order_id: str
    quantity: int = 1
    created_at: int = 0
    id: int = 0

    def to_dict(self):
        """Plain dictionary with the stored field names."""
        return asdict(self)