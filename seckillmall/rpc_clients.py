"""Clients for the product and seckill services used by the order service.

Each client wraps a stub: an object whose snake_case methods take the request
fields as keyword arguments plus a ``timeout`` in seconds. A client built
without a stub does nothing, as when the service is unavailable.
"""

from collections.abc import Mapping
from dataclasses import dataclass

RPC_TIMEOUT_SECONDS = 5.0
PRODUCT_SERVICE_DEFAULT_PORT = 9082
SECKILL_SERVICE_DEFAULT_PORT = 9083
NO_DEDUCT_RECORD_CODE = "NO_DEDUCT_RECORD"
FAILED_PRECONDITION = "FAILED_PRECONDITION"


class RpcError(Exception):
    """A failed or rejected call to another service."""

    def __init__(self, message, code="UNKNOWN", result=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.result = result


@dataclass(frozen=True)
class CompensateResult:
    """Outcome of a timeout compensation on the seckill service."""

    success: bool
    result: str = ""
    message: str = ""


def _field(response, name, default=None):
    if isinstance(response, Mapping):
        return response.get(name, default)
    return getattr(response, name, default)


def resolve_endpoints(etcd_hosts, fallback_endpoint="", default_port=PRODUCT_SERVICE_DEFAULT_PORT):
    """Direct endpoints to dial; empty when etcd discovery is configured."""
    if etcd_hosts:
        return []
    return [fallback_endpoint or f"127.0.0.1:{default_port}"]


def is_no_deduct_record_error(err):
    """True when a stock rollback failed because nothing had been deducted."""
    if err is None:
        return False
    if isinstance(err, RpcError):
        return NO_DEDUCT_RECORD_CODE in err.message
    return NO_DEDUCT_RECORD_CODE in str(err)


class ProductServiceClient:
    """Stock and product lookups on the product service."""

    def __init__(self, stub=None):
        self._stub = stub

    def deduct_stock(self, product_id, quantity, order_id):
        """Deduct stock for an order."""
        if self._stub is None:
            return
        self._stub.deduct_stock(product_id=product_id, quantity=quantity, order_id=order_id,
                                timeout=RPC_TIMEOUT_SECONDS)

    def rollback_stock(self, product_id, quantity, order_id):
        """Give back stock deducted for an order."""
        if self._stub is None:
            return
        self._stub.rollback_stock(product_id=product_id, quantity=quantity, order_id=order_id,
                                  timeout=RPC_TIMEOUT_SECONDS)

    def get_product(self, product_id):
        """Return the product record, or None without a stub."""
        if self._stub is None:
            return None
        return self._stub.get_product(product_id=product_id, timeout=RPC_TIMEOUT_SECONDS)


class SeckillServiceClient:
    """Order-state updates and compensation on the seckill service."""

    def __init__(self, stub=None):
        self._stub = stub

    def update_order_status(self, order_id, status, allow_recover=False):
        """Move a seckill order's cached state; allow_recover permits failed -> success."""
        if self._stub is None:
            return
        response = self._stub.update_order_status(
            order_id=order_id, status=status, allow_recover=allow_recover,
            timeout=RPC_TIMEOUT_SECONDS,
        )
        if response is None:
            raise RpcError("update order status returned nil response")
        if not _field(response, "success", False):
            raise RpcError(f"update order status rejected: {_field(response, 'message', '')}")

    def compensate_failed_order(self, order_id, seckill_product_id, user_id, quantity, reason):
        """Mark a pending order failed and restore its stock; return the outcome."""
        if self._stub is None:
            return CompensateResult(
                success=True,
                result="client_nil",
                message="seckill rpc client unavailable, skip",
            )
        response = self._stub.compensate_failed_order(
            order_id=order_id, seckill_product_id=seckill_product_id, user_id=user_id,
            quantity=quantity, reason=reason, timeout=RPC_TIMEOUT_SECONDS,
        )
        if response is None:
            raise RpcError("compensate failed order returned nil response")
        outcome = CompensateResult(
            success=bool(_field(response, "success", False)),
            result=_field(response, "result", "") or "",
            message=_field(response, "message", "") or "",
        )
        if not outcome.success:
            raise RpcError(f"compensate failed order rejected: {outcome.message}", result=outcome)
        return outcome