"""Inventory store: book records and their available-copy counts.

``reserve`` is the only way copies leave the shelf and it is a single
conditional decrement: it either takes all requested copies or none. The
Redis store runs it as a Lua script; the memory store holds its lock across
the check and the write.
"""
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis

from app.core.errors import InsufficientStock, book_not_found
from app.core.logging import get_logger
from app.domain.book import Book
from app.infrastructure.redis import RedisKeys, pairs_to_dict, storage_errors

logger = get_logger(__name__)


class InventoryStore(ABC):
    """Contract shared by the inventory backends."""

    @abstractmethod
    def add(self, title: str, author: str, quantity: int = 1) -> Book:
        ...

    @abstractmethod
    def get(self, book_id: str) -> Book:
        """Return the book or raise ``NotFound``."""

    @abstractmethod
    def list_books(self) -> List[Book]:
        ...

    @abstractmethod
    def update(
        self,
        book_id: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
        quantity: Optional[int] = None,
    ) -> Book:
        ...

    @abstractmethod
    def delete(self, book_id: str) -> Book:
        ...

    @abstractmethod
    def reserve(self, book_id: str, count: int) -> Book:
        """Take ``count`` copies off the shelf if at least that many are there.

        Raises:
            NotFound: the book does not exist
            InsufficientStock: fewer than ``count`` copies available; nothing changes
        """

    @abstractmethod
    def release(self, book_id: str, count: int) -> Book:
        """Put ``count`` copies back on the shelf.

        Raises:
            NotFound: the book does not exist
        """


class MemoryInventoryStore(InventoryStore):
    """Process-local inventory guarded by a single lock."""

    def __init__(self):
        self._books: Dict[str, Book] = {}
        self._lock = threading.Lock()

    def add(self, title: str, author: str, quantity: int = 1) -> Book:
        book = Book(id=uuid.uuid4().hex, title=title, author=author, quantity=quantity)
        with self._lock:
            self._books[book.id] = book
        return book

    def get(self, book_id: str) -> Book:
        with self._lock:
            book = self._books.get(book_id)
        if book is None:
            raise book_not_found()
        return book

    def list_books(self) -> List[Book]:
        with self._lock:
            return list(self._books.values())

    def update(self, book_id, title=None, author=None, quantity=None) -> Book:
        changes = {k: v for k, v in
                   (("title", title), ("author", author), ("quantity", quantity))
                   if v is not None}
        with self._lock:
            book = self._books.get(book_id)
            if book is None:
                raise book_not_found()
            book = book.model_copy(update=changes)
            self._books[book_id] = book
        return book

    def delete(self, book_id: str) -> Book:
        with self._lock:
            book = self._books.pop(book_id, None)
        if book is None:
            raise book_not_found()
        return book

    def reserve(self, book_id: str, count: int) -> Book:
        with self._lock:
            book = self._books.get(book_id)
            if book is None:
                raise book_not_found()
            if book.quantity < count:
                raise InsufficientStock()
            book = book.model_copy(update={"quantity": book.quantity - count})
            self._books[book_id] = book
        return book

    def release(self, book_id: str, count: int) -> Book:
        with self._lock:
            book = self._books.get(book_id)
            if book is None:
                raise book_not_found()
            book = book.model_copy(update={"quantity": book.quantity + count})
            self._books[book_id] = book
        return book


# Replies: -1 missing book, -2 not enough copies, else HGETALL of the book
RESERVE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local count = tonumber(ARGV[1])
if tonumber(redis.call('HGET', KEYS[1], 'quantity')) < count then
    return -2
end
redis.call('HINCRBY', KEYS[1], 'quantity', -count)
return redis.call('HGETALL', KEYS[1])
"""

RELEASE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
redis.call('HINCRBY', KEYS[1], 'quantity', tonumber(ARGV[1]))
return redis.call('HGETALL', KEYS[1])
"""

# ARGV holds field/value pairs to overwrite
UPDATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
for i = 1, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return redis.call('HGETALL', KEYS[1])
"""

# KEYS[1] book hash, KEYS[2] catalog list, ARGV[1] book id
DELETE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local book = redis.call('HGETALL', KEYS[1])
redis.call('DEL', KEYS[1])
redis.call('LREM', KEYS[2], 0, ARGV[1])
return book
"""


def _book_from_hash(data: Dict[str, str]) -> Book:
    return Book(
        id=data["id"],
        title=data["title"],
        author=data["author"],
        quantity=int(data["quantity"]),
    )


class RedisInventoryStore(InventoryStore):
    """Inventory kept in Redis hashes, one per book.

    Example:
        >>> store = RedisInventoryStore(get_redis_client())
        >>> book = store.add("Dune", "Frank Herbert", quantity=2)
        >>> store.reserve(book.id, 2).quantity
        0
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "library:"):
        self.redis = redis_client
        self.keys = RedisKeys(key_prefix)
        self._reserve = self.redis.register_script(RESERVE_SCRIPT)
        self._release = self.redis.register_script(RELEASE_SCRIPT)
        self._update = self.redis.register_script(UPDATE_SCRIPT)
        self._delete = self.redis.register_script(DELETE_SCRIPT)

    def _result(self, reply) -> Book:
        if reply == -1:
            raise book_not_found()
        if reply == -2:
            raise InsufficientStock()
        return _book_from_hash(pairs_to_dict(reply))

    @storage_errors
    def add(self, title: str, author: str, quantity: int = 1) -> Book:
        book = Book(id=uuid.uuid4().hex, title=title, author=author, quantity=quantity)
        pipe = self.redis.pipeline(transaction=True)
        pipe.hset(self.keys.book(book.id), mapping={
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "quantity": book.quantity,
        })
        pipe.rpush(self.keys.books(), book.id)
        pipe.execute()
        return book

    @storage_errors
    def get(self, book_id: str) -> Book:
        data = self.redis.hgetall(self.keys.book(book_id))
        if not data:
            raise book_not_found()
        return _book_from_hash(data)

    @storage_errors
    def list_books(self) -> List[Book]:
        ids = self.redis.lrange(self.keys.books(), 0, -1)
        pipe = self.redis.pipeline(transaction=False)
        for book_id in ids:
            pipe.hgetall(self.keys.book(book_id))
        return [_book_from_hash(data) for data in pipe.execute() if data]

    @storage_errors
    def update(self, book_id, title=None, author=None, quantity=None) -> Book:
        args = []
        for field, value in (("title", title), ("author", author), ("quantity", quantity)):
            if value is not None:
                args.extend([field, value])
        return self._result(self._update(keys=[self.keys.book(book_id)], args=args))

    @storage_errors
    def delete(self, book_id: str) -> Book:
        reply = self._delete(
            keys=[self.keys.book(book_id), self.keys.books()],
            args=[book_id],
        )
        return self._result(reply)

    @storage_errors
    def reserve(self, book_id: str, count: int) -> Book:
        return self._result(self._reserve(keys=[self.keys.book(book_id)], args=[count]))

    @storage_errors
    def release(self, book_id: str, count: int) -> Book:
        return self._result(self._release(keys=[self.keys.book(book_id)], args=[count]))
