"""Redis key layout, message-queue names, service names and shared limits."""

# Key prefixes, laid out as {prefix}:{entity}:{identifier}.
REDIS_KEY_PREFIX_USER = "user"
REDIS_KEY_PREFIX_USER_TOKEN = "token"
REDIS_KEY_PREFIX_PRODUCT = "product"
REDIS_KEY_PREFIX_PRODUCT_STOCK = "stock"
REDIS_KEY_PREFIX_SECKILL_STOCK = "seckill:stock"
REDIS_KEY_PREFIX_SECKILL_USER = "seckill:user"
REDIS_KEY_PREFIX_SECKILL_ORDER = "seckill:order"
REDIS_KEY_PREFIX_SECKILL_LOCK = "seckill:lock"
REDIS_KEY_PREFIX_ORDER = "order"
REDIS_KEY_PREFIX_ORDER_IDEMPOTENCY = "order:idempot"

# Key templates.
KEY_USER_INFO = "user:info:{:d}"
KEY_USER_TOKEN_BLACK = "user:token:{}"
KEY_PRODUCT_INFO = "product:info:{:d}"
KEY_PRODUCT_STOCK = "product:stock:{:d}"
KEY_SECKILL_STOCK = "seckill:stock:{:d}"
KEY_SECKILL_USER_BUY = "seckill:user:{:d}:{:d}"
KEY_SECKILL_ORDER = "seckill:order:{}"
KEY_SECKILL_LOCK = "seckill:lock:{:d}:{:d}"
KEY_ORDER_INFO = "order:info:{}"
KEY_ORDER_IDEMPOTENCY = "order:idempot:{}"

# Key lifetimes in seconds.
TTL_USER_INFO = 3600
TTL_PRODUCT_INFO = 600
TTL_SECKILL_ORDER = 86400
TTL_ORDER_INFO = 3600

# Message queue.
RABBITMQ_EXCHANGE = "seckill_exchange"
RABBITMQ_ROUTING_KEY = "seckill.order"
RABBITMQ_QUEUE_ORDER = "seckill_order_queue"
RABBITMQ_CONSUMER_ORDER = "order-service-consumer"

# Service addresses used for discovery.
GRPC_SERVICE_USER = "user-service:8081"
GRPC_SERVICE_PRODUCT = "product-service:8082"
GRPC_SERVICE_SECKILL = "seckill-service:8083"
GRPC_SERVICE_ORDER = "order-service:8084"

# HTTP route prefixes.
HTTP_PREFIX_USER = "/api/v1/user"
HTTP_PREFIX_PRODUCT = "/api/v1/product"
HTTP_PREFIX_SECKILL = "/api/v1/seckill"
HTTP_PREFIX_ORDER = "/api/v1/order"
HTTP_PREFIX_HEALTH = "/health"

# Paging.
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Seckill order states kept in Redis.
SECKILL_STATUS_PENDING = "pending"
SECKILL_STATUS_SUCCESS = "success"
SECKILL_STATUS_FAILED = "failed"

# Seckill result codes.
SECKILL_RESULT_CODE_SUCCESS = "SUCCESS"
SECKILL_RESULT_CODE_SOLD_OUT = "SOLD_OUT"
SECKILL_RESULT_CODE_ALREADY_PURCHASED = "ALREADY_PURCHASED"
SECKILL_RESULT_CODE_NOT_STARTED = "SECKILL_NOT_STARTED"
SECKILL_RESULT_CODE_ENDED = "SECKILL_ENDED"
SECKILL_RESULT_CODE_SYSTEM_ERROR = "SYSTEM_ERROR"
SECKILL_RESULT_CODE_INVALID_REQUEST = "INVALID_REQUEST"

# Seckill campaign states.
SECKILL_PRODUCT_STATUS_PENDING = 0
SECKILL_PRODUCT_STATUS_ACTIVE = 1
SECKILL_PRODUCT_STATUS_ENDED = 2


def user_info_key(user_id):
    """Cache key for a user's profile."""
    return KEY_USER_INFO.format(user_id)


def user_token_black_key(token):
    """Key marking a revoked token."""
    return KEY_USER_TOKEN_BLACK.format(token)


def product_info_key(product_id):
    """Cache key for a product."""
    return KEY_PRODUCT_INFO.format(product_id)


def product_stock_key(product_id):
    """Key holding a product's live stock."""
    return KEY_PRODUCT_STOCK.format(product_id)


def seckill_stock_key(seckill_product_id):
    """Counter key for a seckill campaign's stock."""
    return KEY_SECKILL_STOCK.format(seckill_product_id)


def seckill_user_buy_key(seckill_product_id, user_id):
    """Key marking that a user already bought in a seckill campaign."""
    return KEY_SECKILL_USER_BUY.format(seckill_product_id, user_id)


def seckill_order_key(order_id):
    """Key holding the state of a seckill order."""
    return KEY_SECKILL_ORDER.format(order_id)


def seckill_lock_key(seckill_product_id, user_id):
    """Distributed lock key for one user in one seckill campaign."""
    return KEY_SECKILL_LOCK.format(seckill_product_id, user_id)


def order_info_key(order_id):
    """Cache key for an order."""
    return KEY_ORDER_INFO.format(order_id)


def order_idempotency_key(idempotency_key):
    """Key guarding an idempotent order request."""
    return KEY_ORDER_IDEMPOTENCY.format(idempotency_key)


def clamp_page(page, page_size):
    """Apply paging defaults and the page-size ceiling; return (page, page_size)."""
    if page <= 0:
        page = DEFAULT_PAGE
    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)