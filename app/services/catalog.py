"""Catalog management: book CRUD on top of the inventory store.

Reads are public; writes are restricted to managers.
"""
from typing import List

from app.core.errors import InvalidArgument
from app.core.logging import get_logger
from app.domain.book import Book, BookCreate, BookUpdate
from app.domain.user import Identity, Role
from app.infrastructure.inventory import InventoryStore
from app.services.policy import require_role

logger = get_logger(__name__)

EDITOR_ROLES = frozenset({Role.MANAGER})


def _check_quantity(quantity) -> None:
    if quantity is not None and quantity < 0:
        raise InvalidArgument("Quantity cannot be negative")


class CatalogService:

    def __init__(self, inventory: InventoryStore):
        self.inventory = inventory

    def list_books(self) -> List[Book]:
        return self.inventory.list_books()

    def get_book(self, book_id: str) -> Book:
        return self.inventory.get(book_id)

    def add_book(self, identity: Identity, data: BookCreate) -> Book:
        require_role(identity, EDITOR_ROLES)
        _check_quantity(data.quantity)
        book = self.inventory.add(data.title, data.author, data.quantity)
        logger.info(f"Book added: {book.id}", extra={"book_id": book.id, "user_id": identity.id})
        return book

    def update_book(self, identity: Identity, book_id: str, data: BookUpdate) -> Book:
        require_role(identity, EDITOR_ROLES)
        _check_quantity(data.quantity)
        book = self.inventory.update(
            book_id, title=data.title, author=data.author, quantity=data.quantity
        )
        logger.info(f"Book updated: {book_id}", extra={"book_id": book_id, "user_id": identity.id})
        return book

    def delete_book(self, identity: Identity, book_id: str) -> Book:
        require_role(identity, EDITOR_ROLES)
        book = self.inventory.delete(book_id)
        logger.info(f"Book deleted: {book_id}", extra={"book_id": book_id, "user_id": identity.id})
        return book
