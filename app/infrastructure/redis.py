"""Redis client used as the system of record for books, users and the ledger.

Provides a pooled connection and the small helpers the stores share. All
multi-step check-and-mutate operations run as Lua scripts so Redis executes
them as one indivisible step.

For deployments:
- Set REDIS_HOST / REDIS_PORT to the Redis instance
- Set REDIS_PASSWORD if authentication is enabled
- Set REDIS_KEY_PREFIX to share one database between environments
"""
import redis
from functools import wraps
from typing import Dict, List, Optional

from app.core.errors import ServerError
from app.core.logging import get_logger
from app.core.config import settings

logger = get_logger(__name__)

# Redis connection pool (lazy initialization)
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def get_redis_client(
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[int] = None,
    password: Optional[str] = None,
) -> Optional[redis.Redis]:
    """Get or create Redis client with connection pooling.

    Uses settings from environment variables if not explicitly provided.
    Returns None if Redis is not available so callers can fall back to the
    in-memory stores.

    Args:
        host: Redis host (default from REDIS_HOST env)
        port: Redis port (default from REDIS_PORT env)
        db: Redis database number (default from REDIS_DB env)
        password: Redis password (default from REDIS_PASSWORD env)

    Returns:
        Redis client instance or None if unavailable
    """
    global _redis_pool, _redis_client

    host = host or settings.redis_host
    port = port or settings.redis_port
    db = db if db is not None else settings.redis_db
    password = password or settings.redis_password

    if _redis_client is None:
        logger.info(f"Initializing Redis connection pool: {host}:{port}")

        try:
            _redis_pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                max_connections=50,
                socket_connect_timeout=5,
                socket_timeout=5,
            )

            client = redis.Redis(connection_pool=_redis_pool)
            client.ping()
            _redis_client = client
            logger.info("Redis connection established successfully")

        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            _redis_pool = None
            return None

    return _redis_client


def close_redis_client() -> None:
    """Release the pooled connections, if any."""
    global _redis_pool, _redis_client

    if _redis_pool is not None:
        _redis_pool.disconnect()
        logger.info("Redis connection pool closed")
    _redis_pool = None
    _redis_client = None


def storage_errors(func):
    """Decorator turning Redis failures into ``ServerError``.

    Domain errors raised by the wrapped store method pass through untouched.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except redis.RedisError as e:
            logger.error(f"Redis error in {func.__qualname__}: {e}", exc_info=True)
            raise ServerError("Storage unavailable") from e

    return wrapper


def pairs_to_dict(raw: List[str]) -> Dict[str, str]:
    """Convert a flat HGETALL reply returned from a Lua script into a dict."""
    return dict(zip(raw[::2], raw[1::2]))


class RedisKeys:
    """Key layout shared by the Redis stores.

    Example:
        >>> keys = RedisKeys("library:")
        >>> keys.book("42")
        'library:book:42'
    """

    def __init__(self, prefix: str = "library:"):
        self.prefix = prefix

    def book(self, book_id: str) -> str:
        return f"{self.prefix}book:{book_id}"

    def books(self) -> str:
        return f"{self.prefix}books"

    def transaction(self, transaction_id: str) -> str:
        return f"{self.prefix}transaction:{transaction_id}"

    def user_transactions(self, user_id: str) -> str:
        return f"{self.prefix}user:{user_id}:transactions"

    def user(self, user_id: str) -> str:
        return f"{self.prefix}user:{user_id}"

    def user_email(self, email: str) -> str:
        return f"{self.prefix}user_email:{email.lower()}"
