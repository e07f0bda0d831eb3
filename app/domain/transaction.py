"""Domain models for lending transactions.

A transaction is created as an active borrow and closed exactly once when the
copies come back. Wire names follow the public API (``userId``, ``bookId``,
``createdAt``); Python code uses the snake_case field names.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from pydantic import BaseModel, Field, StrictInt


class TransactionType(str, Enum):
    BORROW = "borrow"
    RETURN = "return"


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"


class Transaction(BaseModel):
    """Ledger record of copies moved from the shelf to a borrower.

    Attributes:
        id: Unique identifier
        user_id: Borrower
        book_id: Borrowed book
        quantity: Copies taken at borrow time and restored at return time
        type: ``borrow`` while open, ``return`` once closed
        status: ``active`` while open, ``returned`` once closed
        created_at: UTC creation timestamp
    """
    id: str
    user_id: str = Field(alias="userId")
    book_id: str = Field(alias="bookId")
    quantity: int = Field(gt=0)
    type: TransactionType = TransactionType.BORROW
    status: TransactionStatus = TransactionStatus.ACTIVE
    created_at: datetime = Field(alias="createdAt")

    class Config:
        populate_by_name = True

    @property
    def is_active(self) -> bool:
        return self.status == TransactionStatus.ACTIVE

    def to_record(self) -> Dict[str, str]:
        """Flat string mapping used by the Redis ledger."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "quantity": str(self.quantity),
            "type": self.type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Transaction":
        return cls(
            id=record["id"],
            user_id=record["user_id"],
            book_id=record["book_id"],
            quantity=int(record["quantity"]),
            type=TransactionType(record["type"]),
            status=TransactionStatus(record["status"]),
            created_at=datetime.fromisoformat(record["created_at"]),
        )


class BorrowRequest(BaseModel):
    """Body of ``POST /transactions/borrow``."""
    book_id: str = Field(alias="bookId")
    quantity: StrictInt

    class Config:
        populate_by_name = True
        json_schema_extra = {"example": {"bookId": "b7e1...", "quantity": 1}}


class ReturnRequest(BaseModel):
    """Body of ``POST /transactions/return``."""
    transaction_id: str = Field(alias="transactionId")

    class Config:
        populate_by_name = True


class BorrowResponse(BaseModel):
    message: str
    transaction: Transaction


class ReturnResponse(BaseModel):
    message: str


class TransactionEnvelope(BaseModel):
    transaction: Transaction
