"""User registration and login."""
from app.core.auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    authenticate_user,
    create_access_token,
    hash_password,
)
from app.core.errors import InvalidCredentials
from app.core.logging import get_logger
from app.domain.user import LoginRequest, RegisterRequest, TokenResponse, User
from app.infrastructure.users import UserStore

logger = get_logger(__name__)


class AccountService:

    def __init__(self, users: UserStore):
        self.users = users

    def register(self, req: RegisterRequest) -> User:
        """Create a user; ``Conflict`` if the email is already registered."""
        user = self.users.create(
            name=req.name,
            email=req.email,
            password_hash=hash_password(req.password),
            role=req.role,
        )
        logger.info(f"User registered: {user.id}", extra={"user_id": user.id})
        return user.public()

    def login(self, req: LoginRequest) -> TokenResponse:
        """Issue a bearer token for valid credentials."""
        user = authenticate_user(self.users, req.email, req.password)
        if user is None:
            raise InvalidCredentials()

        return TokenResponse(
            token=create_access_token(user),
            token_type="bearer",
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )
