"""Lending engine: borrow, return and transaction lookup.

Borrow and return each touch two stores, the inventory and the ledger. The
engine applies them in a fixed order and undoes the first write when the
second one fails, so every copy stays accounted for either on the shelf or
in exactly one active transaction.

    borrow:  inventory.reserve  -> ledger.create_borrow   (undo: release)
    return:  ledger.mark_returned -> inventory.release    (undo: revert_return)
"""
from typing import List

from app.core.errors import (
    AlreadyReturned,
    InvalidArgument,
    NotFound,
    ServerError,
)
from app.core.logging import get_logger
from app.domain.transaction import Transaction
from app.domain.user import Identity, Role
from app.infrastructure.inventory import InventoryStore
from app.infrastructure.ledger import TransactionLedger
from app.services.policy import require_owner_or_role

logger = get_logger(__name__)

# Roles allowed to view any transaction
VIEWER_ROLES = frozenset({Role.MANAGER})


class LendingEngine:
    """Orchestrates inventory and ledger for lending use cases.

    Example:
        >>> engine = LendingEngine(stores.inventory, stores.ledger)
        >>> tx = engine.borrow(identity, book.id, 2)
        >>> engine.return_book(identity, tx.id)
    """

    def __init__(self, inventory: InventoryStore, ledger: TransactionLedger):
        self.inventory = inventory
        self.ledger = ledger

    def borrow(self, identity: Identity, book_id: str, count: int) -> Transaction:
        """Take ``count`` copies of a book and open an active transaction.

        Raises:
            InvalidArgument: ``count`` is not a positive integer
            NotFound: the book does not exist
            InsufficientStock: fewer than ``count`` copies on the shelf
            ServerError: the ledger write failed; the reservation was released
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidArgument("Quantity must be a positive integer")

        self.inventory.reserve(book_id, count)

        try:
            transaction = self.ledger.create_borrow(identity.id, book_id, count)
        except Exception as exc:
            logger.error(
                f"Ledger write failed after reserving {count} of book {book_id}; releasing",
                extra={"user_id": identity.id, "book_id": book_id, "quantity": count},
                exc_info=True
            )
            self._compensate(self.inventory.release, book_id, count)
            raise ServerError() from exc

        logger.info(
            f"Borrow recorded: {transaction.id}",
            extra={"transaction_id": transaction.id, "user_id": identity.id,
                   "book_id": book_id, "quantity": count}
        )
        return transaction

    def return_book(self, identity: Identity, transaction_id: str) -> Transaction:
        """Close the caller's active transaction and restock its copies.

        Only the borrower may return; elevated roles do not substitute.

        Raises:
            NotFound: no such transaction, or its book left the catalog
            AlreadyReturned: the transaction is already closed
            Forbidden: the caller is not the borrower
            ServerError: the restock failed; the transaction was reopened
        """
        transaction = self.ledger.get_by_id(transaction_id)
        if not transaction.is_active:
            raise AlreadyReturned()
        require_owner_or_role(
            identity, transaction.user_id,
            message="You are not authorized to return this book",
        )

        # Atomic in the ledger; a concurrent return loses here with AlreadyReturned
        returned = self.ledger.mark_returned(transaction_id)

        try:
            self.inventory.release(transaction.book_id, transaction.quantity)
        except NotFound:
            logger.warning(
                f"Book {transaction.book_id} missing on return of {transaction_id}; reopening",
                extra={"transaction_id": transaction_id, "book_id": transaction.book_id}
            )
            self._compensate(self.ledger.revert_return, transaction_id)
            raise
        except Exception as exc:
            logger.error(
                f"Restock failed on return of {transaction_id}; reopening",
                extra={"transaction_id": transaction_id, "book_id": transaction.book_id},
                exc_info=True
            )
            self._compensate(self.ledger.revert_return, transaction_id)
            raise ServerError() from exc

        logger.info(
            f"Return recorded: {transaction_id}",
            extra={"transaction_id": transaction_id, "user_id": identity.id,
                   "book_id": transaction.book_id, "quantity": transaction.quantity}
        )
        return returned

    def get_transaction(self, identity: Identity, transaction_id: str) -> Transaction:
        """Return a transaction visible to its borrower and to managers."""
        transaction = self.ledger.get_by_id(transaction_id)
        require_owner_or_role(identity, transaction.user_id, VIEWER_ROLES)
        return transaction

    def list_my_transactions(self, identity: Identity) -> List[Transaction]:
        return self.ledger.list_by_user(identity.id)

    def _compensate(self, undo, *args) -> None:
        try:
            undo(*args)
        except Exception:
            # Inventory and ledger now disagree; needs manual reconciliation
            logger.critical(
                f"Compensating action {getattr(undo, '__name__', undo)}{args} failed",
                exc_info=True
            )
            raise ServerError()
