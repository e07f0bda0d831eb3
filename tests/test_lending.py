"""Unit tests for the lending engine."""
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from app.core.errors import (
    AlreadyReturned,
    Forbidden,
    InsufficientStock,
    InvalidArgument,
    NotFound,
    ServerError,
)
from app.domain.transaction import TransactionStatus, TransactionType
from app.domain.user import Identity, Role


def on_shelf(stores, book):
    return stores.inventory.get(book.id).quantity


def accounted_copies(stores, book, identities):
    """Copies on the shelf plus copies held by active transactions."""
    held = sum(
        tx.quantity
        for identity in identities
        for tx in stores.ledger.list_by_user(identity.id)
        if tx.book_id == book.id and tx.status == TransactionStatus.ACTIVE
    )
    return on_shelf(stores, book) + held


class TestBorrow:

    def test_borrow_decrements_and_records(self, engine, stores, book, alice):
        """Borrowing takes exactly `count` copies and opens one active borrow."""
        tx = engine.borrow(alice, book.id, 2)

        assert on_shelf(stores, book) == 3
        assert tx.status == TransactionStatus.ACTIVE
        assert tx.type == TransactionType.BORROW
        assert tx.quantity == 2
        assert tx.user_id == alice.id
        assert stores.ledger.list_by_user(alice.id) == [tx]

    def test_insufficient_stock_mutates_nothing(self, engine, stores, book, alice):
        with pytest.raises(InsufficientStock) as exc_info:
            engine.borrow(alice, book.id, 6)

        assert exc_info.value.message == "Not enough stock available"
        assert on_shelf(stores, book) == 5
        assert stores.ledger.list_by_user(alice.id) == []

    def test_missing_book(self, engine, stores, alice):
        with pytest.raises(NotFound) as exc_info:
            engine.borrow(alice, "missing", 1)

        assert exc_info.value.message == "Book not found"
        assert stores.ledger.list_by_user(alice.id) == []

    @pytest.mark.parametrize("count", [0, -1, True, 1.5, "2", None])
    def test_invalid_count(self, engine, stores, book, alice, count):
        with pytest.raises(InvalidArgument):
            engine.borrow(alice, book.id, count)

        assert on_shelf(stores, book) == 5

    def test_ledger_failure_releases_reservation(self, engine, stores, book, alice):
        """A failed ledger write must not leave copies off the shelf."""
        with patch.object(stores.ledger, "create_borrow", side_effect=RuntimeError("write failed")):
            with pytest.raises(ServerError):
                engine.borrow(alice, book.id, 2)

        assert on_shelf(stores, book) == 5
        assert stores.ledger.list_by_user(alice.id) == []

    def test_failed_compensation_still_reports_server_error(self, engine, stores, book, alice):
        with patch.object(stores.ledger, "create_borrow", side_effect=RuntimeError("write failed")), \
             patch.object(stores.inventory, "release", side_effect=RuntimeError("release failed")):
            with pytest.raises(ServerError):
                engine.borrow(alice, book.id, 1)


class TestReturn:

    def test_return_restores_quantity(self, engine, stores, book, alice):
        tx = engine.borrow(alice, book.id, 2)

        returned = engine.return_book(alice, tx.id)

        assert returned.status == TransactionStatus.RETURNED
        assert returned.type == TransactionType.RETURN
        assert on_shelf(stores, book) == 5

    def test_second_return_fails_without_mutation(self, engine, stores, book, alice):
        tx = engine.borrow(alice, book.id, 2)
        engine.return_book(alice, tx.id)

        with pytest.raises(AlreadyReturned) as exc_info:
            engine.return_book(alice, tx.id)

        assert exc_info.value.message == "Book already returned"
        assert on_shelf(stores, book) == 5

    def test_missing_transaction(self, engine, alice):
        with pytest.raises(NotFound) as exc_info:
            engine.return_book(alice, "missing")

        assert exc_info.value.message == "Transaction not found"

    def test_other_user_cannot_return(self, engine, stores, book, alice, bob):
        tx = engine.borrow(alice, book.id, 1)

        with pytest.raises(Forbidden) as exc_info:
            engine.return_book(bob, tx.id)

        assert exc_info.value.message == "You are not authorized to return this book"
        assert stores.ledger.get_by_id(tx.id).status == TransactionStatus.ACTIVE
        assert on_shelf(stores, book) == 4

    def test_manager_cannot_return_for_someone_else(self, engine, stores, book, alice, manager):
        """Role does not substitute for return rights."""
        tx = engine.borrow(alice, book.id, 1)

        with pytest.raises(Forbidden):
            engine.return_book(manager, tx.id)

        assert stores.ledger.get_by_id(tx.id).is_active
        assert on_shelf(stores, book) == 4

    def test_release_failure_reopens_transaction(self, engine, stores, book, alice):
        tx = engine.borrow(alice, book.id, 2)

        with patch.object(stores.inventory, "release", side_effect=RuntimeError("release failed")):
            with pytest.raises(ServerError):
                engine.return_book(alice, tx.id)

        assert stores.ledger.get_by_id(tx.id).status == TransactionStatus.ACTIVE
        assert on_shelf(stores, book) == 3

        # The reopened transaction can still be returned normally
        engine.return_book(alice, tx.id)
        assert on_shelf(stores, book) == 5

    def test_deleted_book_reopens_transaction(self, engine, stores, book, alice):
        tx = engine.borrow(alice, book.id, 1)
        stores.inventory.delete(book.id)

        with pytest.raises(NotFound) as exc_info:
            engine.return_book(alice, tx.id)

        assert exc_info.value.message == "Book not found"
        assert stores.ledger.get_by_id(tx.id).is_active


class TestLookup:

    def test_borrower_can_view(self, engine, book, alice):
        tx = engine.borrow(alice, book.id, 1)

        assert engine.get_transaction(alice, tx.id) == tx

    def test_manager_can_view(self, engine, book, alice, manager):
        tx = engine.borrow(alice, book.id, 1)

        assert engine.get_transaction(manager, tx.id).id == tx.id

    def test_other_user_cannot_view(self, engine, book, alice, bob):
        tx = engine.borrow(alice, book.id, 1)

        with pytest.raises(Forbidden) as exc_info:
            engine.get_transaction(bob, tx.id)

        assert exc_info.value.message == "Access denied"

    def test_missing_transaction(self, engine, manager):
        with pytest.raises(NotFound):
            engine.get_transaction(manager, "missing")

    def test_list_my_transactions(self, engine, stores, book, alice, bob):
        mine = [engine.borrow(alice, book.id, 1), engine.borrow(alice, book.id, 1)]
        engine.borrow(bob, book.id, 1)
        engine.return_book(alice, mine[0].id)

        listed = engine.list_my_transactions(alice)

        assert [t.id for t in listed] == [t.id for t in mine]
        assert listed[0].status == TransactionStatus.RETURNED
        assert listed[1].status == TransactionStatus.ACTIVE


class TestScenarios:

    def test_borrow_return_return_again(self, engine, stores, book, alice):
        """quantity 5 -> borrow 2 -> 3 -> return -> 5 -> return again fails."""
        tx = engine.borrow(alice, book.id, 2)
        assert on_shelf(stores, book) == 3

        engine.return_book(alice, tx.id)
        assert on_shelf(stores, book) == 5
        assert stores.ledger.get_by_id(tx.id).status == TransactionStatus.RETURNED

        with pytest.raises(AlreadyReturned):
            engine.return_book(alice, tx.id)
        assert on_shelf(stores, book) == 5

    def test_concurrent_borrow_of_last_copy(self, engine, stores, alice, bob):
        """Two simultaneous requests for the last copy: exactly one wins."""
        book = stores.inventory.add("Last Copy", "Author", quantity=1)
        barrier = threading.Barrier(2)

        def attempt(identity):
            barrier.wait()
            try:
                return engine.borrow(identity, book.id, 1)
            except InsufficientStock as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, [alice, bob]))

        assert sum(isinstance(r, InsufficientStock) for r in results) == 1
        assert on_shelf(stores, book) == 0

    def test_concurrent_double_return(self, engine, stores, book, alice):
        tx = engine.borrow(alice, book.id, 3)
        barrier = threading.Barrier(4)

        def attempt(_):
            barrier.wait()
            try:
                engine.return_book(alice, tx.id)
                return True
            except AlreadyReturned:
                return False

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(attempt, range(4)))

        assert results.count(True) == 1
        assert on_shelf(stores, book) == 5

    def test_every_copy_stays_accounted_for(self, engine, stores):
        """Shelf + active borrows equals owned copies under mixed concurrent load."""
        book = stores.inventory.add("Popular", "Author", quantity=10)
        users = [Identity(id=f"user_{i}", role=Role.NORMAL) for i in range(6)]

        def worker(identity):
            rng = random.Random(identity.id)
            for _ in range(25):
                try:
                    tx = engine.borrow(identity, book.id, rng.randint(1, 3))
                except InsufficientStock:
                    continue
                assert on_shelf(stores, book) >= 0
                if rng.random() < 0.7:
                    engine.return_book(identity, tx.id)

        with ThreadPoolExecutor(max_workers=len(users)) as pool:
            list(pool.map(worker, users))

        assert on_shelf(stores, book) >= 0
        assert accounted_copies(stores, book, users) == 10
