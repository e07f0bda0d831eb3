"""Tests for the Redis-backed stores, run against fakeredis with Lua support."""
import pytest

fakeredis = pytest.importorskip("fakeredis")
pytest.importorskip("lupa")

import redis

from app.core.errors import AlreadyReturned, Conflict, InsufficientStock, NotFound, ServerError
from app.domain.transaction import TransactionStatus, TransactionType
from app.domain.user import Role
from app.infrastructure.redis import RedisKeys
from app.infrastructure.stores import redis_stores
from app.services.lending import LendingEngine


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    yield client
    client.flushall()


@pytest.fixture
def rstores(redis_client):
    return redis_stores(redis_client, key_prefix="test:")


class TestRedisInventory:

    def test_add_get_list(self, rstores):
        book = rstores.inventory.add("Dune", "Frank Herbert", quantity=3)

        assert rstores.inventory.get(book.id) == book
        assert rstores.inventory.list_books() == [book]

    def test_reserve_is_conditional(self, rstores):
        book = rstores.inventory.add("Dune", "Frank Herbert", quantity=2)

        assert rstores.inventory.reserve(book.id, 2).quantity == 0
        with pytest.raises(InsufficientStock):
            rstores.inventory.reserve(book.id, 1)
        assert rstores.inventory.get(book.id).quantity == 0

    def test_release(self, rstores):
        book = rstores.inventory.add("Dune", "Frank Herbert", quantity=0)

        assert rstores.inventory.release(book.id, 3).quantity == 3

    def test_missing_book(self, rstores):
        with pytest.raises(NotFound):
            rstores.inventory.reserve("missing", 1)
        with pytest.raises(NotFound):
            rstores.inventory.release("missing", 1)

    def test_update_and_delete(self, rstores):
        book = rstores.inventory.add("Dune", "Frank Herbert", quantity=1)

        updated = rstores.inventory.update(book.id, author="F. Herbert", quantity=7)
        assert updated.author == "F. Herbert"
        assert updated.quantity == 7
        assert updated.title == "Dune"

        rstores.inventory.delete(book.id)
        assert rstores.inventory.list_books() == []
        with pytest.raises(NotFound):
            rstores.inventory.get(book.id)

    def test_keys_use_prefix(self, rstores, redis_client):
        book = rstores.inventory.add("Dune", "Frank Herbert")

        assert redis_client.exists(RedisKeys("test:").book(book.id))


class TestRedisLedger:

    def test_lifecycle(self, rstores):
        tx = rstores.ledger.create_borrow("u1", "b1", 2)

        stored = rstores.ledger.get_by_id(tx.id)
        assert stored == tx

        returned = rstores.ledger.mark_returned(tx.id)
        assert returned.status == TransactionStatus.RETURNED
        assert returned.type == TransactionType.RETURN

        with pytest.raises(AlreadyReturned):
            rstores.ledger.mark_returned(tx.id)

        reopened = rstores.ledger.revert_return(tx.id)
        assert reopened.status == TransactionStatus.ACTIVE

    def test_missing(self, rstores):
        with pytest.raises(NotFound):
            rstores.ledger.get_by_id("missing")
        with pytest.raises(NotFound):
            rstores.ledger.mark_returned("missing")

    def test_list_by_user(self, rstores):
        first = rstores.ledger.create_borrow("u1", "b1", 1)
        rstores.ledger.create_borrow("u2", "b1", 1)
        second = rstores.ledger.create_borrow("u1", "b1", 1)

        assert [t.id for t in rstores.ledger.list_by_user("u1")] == [first.id, second.id]


class TestRedisUsers:

    def test_create_and_lookup(self, rstores):
        user = rstores.users.create("Jane", "jane@example.com", "hash", Role.MANAGER)

        assert rstores.users.get(user.id) == user
        assert rstores.users.find_by_email("JANE@example.com") == user
        assert rstores.users.find_by_email("nobody@example.com") is None

    def test_duplicate_email(self, rstores):
        rstores.users.create("Jane", "jane@example.com", "hash", Role.NORMAL)

        with pytest.raises(Conflict):
            rstores.users.create("Jane", "Jane@Example.com", "hash", Role.NORMAL)

    def test_failed_create_leaves_email_free(self, rstores, redis_client, monkeypatch):
        def broken(*args, **kwargs):
            raise redis.ConnectionError("connection lost")

        monkeypatch.setattr(rstores.users, "_create", broken)
        with pytest.raises(ServerError):
            rstores.users.create("Jane", "jane@example.com", "hash", Role.NORMAL)
        monkeypatch.undo()

        assert not redis_client.exists(RedisKeys("test:").user_email("jane@example.com"))
        user = rstores.users.create("Jane", "jane@example.com", "hash", Role.NORMAL)
        assert rstores.users.find_by_email("jane@example.com") == user

    def test_create_writes_index_and_hash_together(self, rstores, redis_client):
        user = rstores.users.create("Jane", "jane@example.com", "hash", Role.NORMAL)
        keys = RedisKeys("test:")

        assert redis_client.get(keys.user_email("jane@example.com")) == user.id
        assert redis_client.hget(keys.user(user.id), "role") == "normal"


class TestRedisLending:

    def test_scenario(self, rstores, alice):
        engine = LendingEngine(rstores.inventory, rstores.ledger)
        book = rstores.inventory.add("Sample Book", "Author", quantity=5)

        tx = engine.borrow(alice, book.id, 2)
        assert rstores.inventory.get(book.id).quantity == 3

        engine.return_book(alice, tx.id)
        assert rstores.inventory.get(book.id).quantity == 5

        with pytest.raises(AlreadyReturned):
            engine.return_book(alice, tx.id)
        assert rstores.inventory.get(book.id).quantity == 5

    def test_redis_errors_become_server_errors(self, rstores, monkeypatch):
        def broken(*args, **kwargs):
            raise redis.ConnectionError("connection lost")

        monkeypatch.setattr(rstores.inventory.redis, "hgetall", broken)

        with pytest.raises(ServerError) as exc_info:
            rstores.inventory.get("any")

        assert exc_info.value.status_code == 500


class TestRedisFallback:

    @pytest.mark.parametrize("error", [redis.ConnectionError, redis.TimeoutError])
    def test_unreachable_redis_falls_back_to_memory(self, monkeypatch, error):
        from app.infrastructure import redis as redis_module
        from app.infrastructure.stores import build_stores

        def unreachable(self):
            raise error("no route to host")

        monkeypatch.setattr(redis_module, "_redis_client", None)
        monkeypatch.setattr(redis_module, "_redis_pool", None)
        monkeypatch.setattr(redis.Redis, "ping", unreachable)

        assert redis_module.get_redis_client() is None
        assert build_stores("redis").backend == "memory"
