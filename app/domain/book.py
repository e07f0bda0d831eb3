"""Domain models for catalog books."""
from typing import Optional
from pydantic import BaseModel, Field


class Book(BaseModel):
    """A catalog entry.

    ``quantity`` counts the copies currently on the shelf, i.e. available to
    borrow. Borrowed copies are accounted for by active transactions.
    """
    id: str
    title: str
    author: str
    quantity: int = Field(ge=0)


class BookCreate(BaseModel):
    """Body of ``POST /books``."""
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    quantity: int = 1

    class Config:
        json_schema_extra = {
            "example": {"title": "Dune", "author": "Frank Herbert", "quantity": 3}
        }


class BookUpdate(BaseModel):
    """Body of ``PUT /books/{id}``; omitted fields are left unchanged."""
    title: Optional[str] = Field(default=None, min_length=1)
    author: Optional[str] = Field(default=None, min_length=1)
    quantity: Optional[int] = None
