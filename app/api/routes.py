"""FastAPI routes for the library lending API.

- Users: registration, login, current user
- Books: public catalog reads, manager-only writes
- Transactions: borrow, return, own history, single lookup

Handlers are plain ``def`` so FastAPI runs them concurrently in its
threadpool. Domain failures propagate as ``LendingError`` and are rendered by
the handler installed in ``main.py``.
"""
from typing import List

from fastapi import APIRouter, Depends, status

from app.core.auth import get_current_identity
from app.core.logging import get_logger, LogTimer
from app.domain.book import Book, BookCreate, BookUpdate
from app.domain.transaction import (
    BorrowRequest,
    BorrowResponse,
    ReturnRequest,
    ReturnResponse,
    Transaction,
    TransactionEnvelope,
)
from app.domain.user import Identity, LoginRequest, RegisterRequest, TokenResponse, User
from app.infrastructure.stores import Stores, get_stores
from app.services.accounts import AccountService
from app.services.catalog import CatalogService
from app.services.lending import LendingEngine

logger = get_logger(__name__)
router = APIRouter()


def get_lending_engine(stores: Stores = Depends(get_stores)) -> LendingEngine:
    return LendingEngine(stores.inventory, stores.ledger)


def get_catalog(stores: Stores = Depends(get_stores)) -> CatalogService:
    return CatalogService(stores.inventory)


def get_accounts(stores: Stores = Depends(get_stores)) -> AccountService:
    return AccountService(stores.users)


# -----------------
# USERS
# -----------------

@router.post("/users/register", response_model=User, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, accounts: AccountService = Depends(get_accounts)):
    """Register a new user.

    Example:
        POST /users/register
        {"name": "Jane", "email": "jane@example.com", "password": "pw"}
    """
    return accounts.register(req)


@router.post("/users/login", response_model=TokenResponse)
def login(req: LoginRequest, accounts: AccountService = Depends(get_accounts)):
    """Authenticate user and return a bearer token."""
    with LogTimer(logger, "user_authentication"):
        return accounts.login(req)


@router.get("/users/me", response_model=User)
def current_user_info(
    identity: Identity = Depends(get_current_identity),
    stores: Stores = Depends(get_stores),
):
    """Get current authenticated user info.

    Requires: Authentication
    """
    return stores.users.get(identity.id).public()


# -----------------
# BOOK ENDPOINTS
# -----------------

@router.get("/books", response_model=List[Book])
def list_books(catalog: CatalogService = Depends(get_catalog)):
    return catalog.list_books()


@router.get("/books/{book_id}", response_model=Book)
def get_book(book_id: str, catalog: CatalogService = Depends(get_catalog)):
    return catalog.get_book(book_id)


@router.post("/books", response_model=Book, status_code=status.HTTP_201_CREATED)
def add_book(
    data: BookCreate,
    identity: Identity = Depends(get_current_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    """Add a book to the catalog.

    Requires: manager role
    """
    return catalog.add_book(identity, data)


@router.put("/books/{book_id}", response_model=Book)
def update_book(
    book_id: str,
    data: BookUpdate,
    identity: Identity = Depends(get_current_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    """Edit a book; omitted fields are kept.

    Requires: manager role
    """
    return catalog.update_book(identity, book_id, data)


@router.delete("/books/{book_id}")
def delete_book(
    book_id: str,
    identity: Identity = Depends(get_current_identity),
    catalog: CatalogService = Depends(get_catalog),
):
    """Remove a book from the catalog.

    Requires: manager role
    """
    catalog.delete_book(identity, book_id)
    return {"message": "Book deleted successfully"}


# -----------------
# TRANSACTION ENDPOINTS
# -----------------

@router.post(
    "/transactions/borrow",
    response_model=BorrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def borrow_book(
    req: BorrowRequest,
    identity: Identity = Depends(get_current_identity),
    engine: LendingEngine = Depends(get_lending_engine),
):
    """Borrow copies of a book.

    Example:
        POST /transactions/borrow
        {"bookId": "b7e1...", "quantity": 1}
    """
    with LogTimer(logger, "borrow"):
        transaction = engine.borrow(identity, req.book_id, req.quantity)

    return BorrowResponse(message="Transaction created successfully", transaction=transaction)


@router.post("/transactions/return", response_model=ReturnResponse)
def return_book(
    req: ReturnRequest,
    identity: Identity = Depends(get_current_identity),
    engine: LendingEngine = Depends(get_lending_engine),
):
    """Return a borrowed book. Only the borrower may return it."""
    with LogTimer(logger, "return"):
        engine.return_book(identity, req.transaction_id)

    return ReturnResponse(message="Transaction returned successfully")


@router.get("/transactions", response_model=List[Transaction])
def list_my_transactions(
    identity: Identity = Depends(get_current_identity),
    engine: LendingEngine = Depends(get_lending_engine),
):
    """All transactions of the logged-in user."""
    return engine.list_my_transactions(identity)


@router.get("/transactions/{transaction_id}", response_model=TransactionEnvelope)
def get_transaction(
    transaction_id: str,
    identity: Identity = Depends(get_current_identity),
    engine: LendingEngine = Depends(get_lending_engine),
):
    """A single transaction, visible to its borrower and to managers."""
    return TransactionEnvelope(transaction=engine.get_transaction(identity, transaction_id))
