"""Domain models for users, identities and authentication."""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    """Coarse-grained capability class of a user."""
    NORMAL = "normal"
    MANAGER = "manager"


class User(BaseModel):
    """Registered library user.

    Attributes:
        id: Unique identifier for the user
        name: Full name
        email: Email address, unique across users
        role: ``normal`` or ``manager``
    """
    id: str
    name: str
    email: EmailStr
    role: Role = Role.NORMAL

    class Config:
        json_schema_extra = {
            "example": {
                "id": "6f1c0a9e2b4d4c3e9a7b1d2e3f4a5b6c",
                "name": "Jane Smith",
                "email": "jane@example.com",
                "role": "normal",
            }
        }


class StoredUser(User):
    """User record as persisted, including the password hash."""
    password_hash: str

    def public(self) -> User:
        return User(id=self.id, name=self.name, email=self.email, role=self.role)


class Identity(BaseModel):
    """Authenticated caller as seen by the lending core."""
    id: str
    role: Role


class TokenData(BaseModel):
    """JWT token payload data.

    Attributes:
        sub: Subject (user ID)
        role: User role at issue time
        exp: Token expiration time
        iat: Token issued at time
    """
    sub: str
    role: Role
    exp: datetime
    iat: Optional[datetime] = None


class RegisterRequest(BaseModel):
    """Registration request body."""
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    role: Role = Role.NORMAL

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Jane Smith",
                "email": "jane@example.com",
                "password": "secure_password123",
                "role": "normal",
            }
        }


class LoginRequest(BaseModel):
    """Login credentials request."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Authentication token response.

    Attributes:
        token: JWT access token
        token_type: Token type (always "bearer")
        expires_in: Token lifetime in seconds
    """
    token: str
    token_type: str = "bearer"
    expires_in: int
