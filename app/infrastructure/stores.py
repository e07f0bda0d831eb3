"""Builds the store trio for the configured backend."""
import threading
from dataclasses import dataclass
from typing import Optional

import redis

from app.core.config import settings
from app.core.logging import get_logger
from app.infrastructure.inventory import InventoryStore, MemoryInventoryStore, RedisInventoryStore
from app.infrastructure.ledger import MemoryTransactionLedger, RedisTransactionLedger, TransactionLedger
from app.infrastructure.redis import get_redis_client
from app.infrastructure.users import MemoryUserStore, RedisUserStore, UserStore

logger = get_logger(__name__)


@dataclass
class Stores:
    inventory: InventoryStore
    ledger: TransactionLedger
    users: UserStore
    backend: str


def memory_stores() -> Stores:
    return Stores(
        inventory=MemoryInventoryStore(),
        ledger=MemoryTransactionLedger(),
        users=MemoryUserStore(),
        backend="memory",
    )


def redis_stores(redis_client: redis.Redis, key_prefix: Optional[str] = None) -> Stores:
    prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix
    return Stores(
        inventory=RedisInventoryStore(redis_client, prefix),
        ledger=RedisTransactionLedger(redis_client, prefix),
        users=RedisUserStore(redis_client, prefix),
        backend="redis",
    )


def build_stores(backend: Optional[str] = None) -> Stores:
    """Create stores for ``backend`` (default ``STORAGE_BACKEND``).

    Falls back to in-memory stores when Redis is configured but unreachable.
    """
    backend = backend or settings.storage_backend

    if backend == "redis":
        client = get_redis_client()
        if client is not None:
            logger.info("Using Redis-backed stores")
            return redis_stores(client)
        logger.warning("Redis unavailable, falling back to in-memory storage")

    logger.info("Using in-memory stores")
    return memory_stores()


_stores: Optional[Stores] = None
_stores_lock = threading.Lock()


def get_stores() -> Stores:
    """FastAPI dependency returning the process-wide stores (built lazily)."""
    global _stores

    with _stores_lock:
        if _stores is None:
            _stores = build_stores()
        return _stores