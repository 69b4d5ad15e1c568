# seckillmall

Building blocks for the order side of a flash-sale ("seckill") mall.

- **Constants and helpers** – Redis key builders, queue and service names,
  paging limits (`seckillmall.constants`), and string, masking and money
  helpers with amounts in fen (`seckillmall.helpers`).
- **Entities and storage** – `Order` and `SeckillOrder` records with the
  `OrderStatus` and `OrderType` enums (`seckillmall.entities`), stored in
  SQLite by `OrderStore` and `SeckillOrderStore`
  (`seckillmall.order_store`, `seckillmall.seckill_order_store`). Batch
  inserts skip rows that already exist.
- **Batched persistence** – `seckillmall.batch_writer.BatchWriter` buffers
  orders and writes them in batches, flushing when the batch is full, after a
  timeout, on `flush()` or on `shutdown()`. A hook is called with `True` once
  an order is known to be stored and with `False` when it could not be.
- **Queue consumption** – `seckillmall.consumer` declares the RabbitMQ
  topology (main queue, dead-letter exchange and queue, delay queue,
  timeout-check queue) and consumes `SeckillOrderMessage`s on a background
  thread, reconnecting with backoff. A failing message is requeued until its
  `x-death` count reaches the retry limit, and is then dead-lettered.
- **Order processing** – `seckillmall.order_service.OrderService` turns
  seckill messages into orders, compensates purchases whose order never
  reached the database, rolls back seckill stock and deducts stock for normal
  orders, talking to other services through `ProductServiceClient` and
  `SeckillServiceClient` (`seckillmall.rpc_clients`).
- **Wiring** – `seckillmall.order_config` loads the service configuration
  from YAML or JSON, and `seckillmall.service_context.build_service_context`
  assembles database, stores, batch writer, service and consumers into a
  `ServiceContext` that is started with `start()` and released with `close()`.
- **Metrics** – in-process labelled counters and histograms
  (`seckillmall.metrics`) record the outcome of each processed message.
- **Gateway authentication** – the JSON response envelope, CORS headers,
  HMAC-SHA256 token verification and a Redis revocation check
  (`seckillmall.auth`).

## Requirements

Python 3.10 or newer. The package depends on `pika` and `pyyaml`.

## Examples

Formatting amounts and masking personal data:

```python
from seckillmall.helpers import fen_to_yuan, format_amount, mask_email

fen_to_yuan(12345)                 # "123.45"
format_amount(12345)               # "123.45元"
mask_email("alice@example.com")    # "al***@example.com"
```

Storing orders:

```python
from seckillmall.entities import Order, OrderStatus, OrderType
from seckillmall.order_store import OrderStore, open_database

store = OrderStore(open_database(":memory:"))
store.insert(Order(order_id="N1", user_id=1, product_id=2, product_name="Mug",
                   quantity=1, amount=990, order_type=OrderType.NORMAL,
                   status=OrderStatus.PENDING))
store.pay("N1", "pay-1")
assert store.find_one_by_order_id("N1").status == OrderStatus.PAID
```

Reading the retry count of a dead-lettered message:

```python
from seckillmall.consumer import get_retry_count_from_x_death

headers = {"x-death": [{"queue": "seckill_order_check_queue", "count": 2}]}
get_retry_count_from_x_death(headers, "seckill_order_check_queue")   # 2
```

Assembling the service from a configuration file:

```python
from seckillmall.order_config import load_config
from seckillmall.service_context import build_service_context

config = load_config("order.yaml")   # Name, ListenOn, MySQL.DataSource, RabbitMQ, ...
with build_service_context(config) as context:
    context.start()
    ...
```

`MySQL.DataSource` is the path of the SQLite database file. Consumers are
created only when `RabbitMQ.URL` is set.

## Errors

Failures are raised as exceptions rather than returned as codes: store
operations raise subclasses of `ModelError` (for example `NotFoundError` or
`OrderCannotPayError`), calls to other services raise `RpcError`, and the
gateway helpers raise `TokenError` and `AuthError`.

## What this package does not do

- It generates no order numbers: callers supply the `order_id` of every order.
- It offers no request-level order operations (create, get, list, cancel, pay,
  refund with their checks and messages); `OrderStore` and `OrderService`
  are the layers below them.
- It has no rate limiting, no HTTP server and no network RPC server; the
  service clients wrap stubs that the caller provides.
- It installs no command; the service is assembled and run from Python.