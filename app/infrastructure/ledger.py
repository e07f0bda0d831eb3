"""Transaction ledger: lending records and their lifecycle.

Records are created active and move to returned exactly once. Both backends
make the ``active -> returned`` check and write one atomic step, so of two
racing returns only one gets through.
"""
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List

import redis

from app.core.errors import AlreadyReturned, transaction_not_found
from app.core.logging import get_logger
from app.domain.transaction import Transaction, TransactionStatus, TransactionType
from app.infrastructure.redis import RedisKeys, pairs_to_dict, storage_errors

logger = get_logger(__name__)

RETURNED = {"status": TransactionStatus.RETURNED, "type": TransactionType.RETURN}
REOPENED = {"status": TransactionStatus.ACTIVE, "type": TransactionType.BORROW}


def _new_borrow(user_id: str, book_id: str, count: int) -> Transaction:
    return Transaction(
        id=uuid.uuid4().hex,
        user_id=user_id,
        book_id=book_id,
        quantity=count,
        type=TransactionType.BORROW,
        status=TransactionStatus.ACTIVE,
        created_at=datetime.now(timezone.utc),
    )


class TransactionLedger(ABC):
    """Contract shared by the ledger backends."""

    @abstractmethod
    def create_borrow(self, user_id: str, book_id: str, count: int) -> Transaction:
        """Record a new active borrow. Inventory is the caller's concern."""

    @abstractmethod
    def mark_returned(self, transaction_id: str) -> Transaction:
        """Close an active transaction.

        Raises:
            NotFound: no such transaction
            AlreadyReturned: the transaction is already closed
        """

    @abstractmethod
    def revert_return(self, transaction_id: str) -> Transaction:
        """Undo ``mark_returned`` whose inventory release could not be applied."""

    @abstractmethod
    def get_by_id(self, transaction_id: str) -> Transaction:
        ...

    @abstractmethod
    def list_by_user(self, user_id: str) -> List[Transaction]:
        ...


class MemoryTransactionLedger(TransactionLedger):
    """Process-local ledger guarded by a single lock."""

    def __init__(self):
        self._transactions: Dict[str, Transaction] = {}
        self._by_user: Dict[str, List[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def create_borrow(self, user_id: str, book_id: str, count: int) -> Transaction:
        transaction = _new_borrow(user_id, book_id, count)
        with self._lock:
            self._transactions[transaction.id] = transaction
            self._by_user[user_id].append(transaction.id)
        return transaction

    def mark_returned(self, transaction_id: str) -> Transaction:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                raise transaction_not_found()
            if not transaction.is_active:
                raise AlreadyReturned()
            transaction = transaction.model_copy(update=RETURNED)
            self._transactions[transaction_id] = transaction
        return transaction

    def revert_return(self, transaction_id: str) -> Transaction:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                raise transaction_not_found()
            transaction = transaction.model_copy(update=REOPENED)
            self._transactions[transaction_id] = transaction
        return transaction

    def get_by_id(self, transaction_id: str) -> Transaction:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise transaction_not_found()
        return transaction

    def list_by_user(self, user_id: str) -> List[Transaction]:
        with self._lock:
            return [self._transactions[tid] for tid in self._by_user.get(user_id, [])]


# Replies: -1 missing, -2 not active, else HGETALL of the transaction
MARK_RETURNED_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
if redis.call('HGET', KEYS[1], 'status') ~= 'active' then
    return -2
end
redis.call('HSET', KEYS[1], 'status', 'returned')
redis.call('HSET', KEYS[1], 'type', 'return')
return redis.call('HGETALL', KEYS[1])
"""

REVERT_RETURN_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
redis.call('HSET', KEYS[1], 'status', 'active')
redis.call('HSET', KEYS[1], 'type', 'borrow')
return redis.call('HGETALL', KEYS[1])
"""


class RedisTransactionLedger(TransactionLedger):
    """Ledger kept in Redis: one hash per transaction, one id list per user."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "library:"):
        self.redis = redis_client
        self.keys = RedisKeys(key_prefix)
        self._mark_returned = self.redis.register_script(MARK_RETURNED_SCRIPT)
        self._revert_return = self.redis.register_script(REVERT_RETURN_SCRIPT)

    def _result(self, reply) -> Transaction:
        if reply == -1:
            raise transaction_not_found()
        if reply == -2:
            raise AlreadyReturned()
        return Transaction.from_record(pairs_to_dict(reply))

    @storage_errors
    def create_borrow(self, user_id: str, book_id: str, count: int) -> Transaction:
        transaction = _new_borrow(user_id, book_id, count)
        pipe = self.redis.pipeline(transaction=True)
        pipe.hset(self.keys.transaction(transaction.id), mapping=transaction.to_record())
        pipe.rpush(self.keys.user_transactions(user_id), transaction.id)
        pipe.execute()
        return transaction

    @storage_errors
    def mark_returned(self, transaction_id: str) -> Transaction:
        return self._result(self._mark_returned(keys=[self.keys.transaction(transaction_id)]))

    @storage_errors
    def revert_return(self, transaction_id: str) -> Transaction:
        return self._result(self._revert_return(keys=[self.keys.transaction(transaction_id)]))

    @storage_errors
    def get_by_id(self, transaction_id: str) -> Transaction:
        data = self.redis.hgetall(self.keys.transaction(transaction_id))
        if not data:
            raise transaction_not_found()
        return Transaction.from_record(data)

    @storage_errors
    def list_by_user(self, user_id: str) -> List[Transaction]:
        ids = self.redis.lrange(self.keys.user_transactions(user_id), 0, -1)
        pipe = self.redis.pipeline(transaction=False)
        for transaction_id in ids:
            pipe.hgetall(self.keys.transaction(transaction_id))
        return [Transaction.from_record(data) for data in pipe.execute() if data]
