"""Authentication for the library lending API.

Implements bcrypt password hashing and JWT bearer tokens. Each request's
token is resolved to an ``Identity`` (user id + role) by looking the user up
in the user store, so role changes and deleted users take effect at once.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import DEV_SECRET_KEY, settings
from app.core.errors import NotFound
from app.core.logging import get_logger
from app.domain.user import Identity, StoredUser, TokenData, User
from app.infrastructure.stores import Stores, get_stores
from app.infrastructure.users import UserStore

logger = get_logger(__name__)

# JWT Configuration from settings
SECRET_KEY = settings.jwt_secret_key
ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72

# Production security check
if settings.environment == "production":
    if SECRET_KEY == DEV_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY must be set to a secure value in production!")
    if len(SECRET_KEY) < 32:
        logger.warning("JWT_SECRET_KEY should be at least 32 characters for security")

# Missing credentials are reported by get_current_identity, not FastAPI
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(
        password.encode("utf-8")[:BCRYPT_MAX_BYTES],
        password_hash.encode("utf-8"),
    )


def create_access_token(
    user: User,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token for user.

    Args:
        user: User object
        expires_delta: Token expiration time (default: ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    expire = now + expires_delta

    payload = {
        "sub": user.id,
        "role": user.role.value,
        "exp": expire,
        "iat": now,
    }

    token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)

    logger.info(
        f"Access token created for user {user.id}",
        extra={"user_id": user.id}
    )

    return token


def decode_token(token: str) -> TokenData:
    """Decode and validate JWT token.

    Args:
        token: JWT token string

    Returns:
        TokenData with user info

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token, SECRET_KEY, algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )

        return TokenData(
            sub=payload.get("sub"),
            role=payload.get("role"),
            exp=datetime.fromtimestamp(payload.get("exp"), tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc) if "iat" in payload else None,
        )

    except jwt.ExpiredSignatureError:
        logger.warning("Expired token attempted")
        raise _unauthorized("Invalid token")

    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning(f"Invalid token attempted: {e}")
        raise _unauthorized("Invalid token")


def authenticate_user(users: UserStore, email: str, password: str) -> Optional[StoredUser]:
    """Return the user when ``email`` and ``password`` match, else None."""
    user = users.find_by_email(email)

    if user is None:
        logger.warning(f"Login attempt for non-existent user: {email}")
        return None

    if not verify_password(password, user.password_hash):
        logger.warning(f"Invalid password for user: {email}")
        return None

    logger.info(f"User authenticated successfully: {email}")
    return user


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    stores: Stores = Depends(get_stores),
) -> Identity:
    """FastAPI dependency resolving the bearer token to an ``Identity``.

    Raises:
        HTTPException: 401 when the token is missing, invalid, expired, or
            names a user that no longer exists

    Example:
        >>> @router.get("/protected")
        >>> def protected_route(identity: Identity = Depends(get_current_identity)):
        ...     return {"user": identity.id}
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Authentication required")

    token_data = decode_token(credentials.credentials)

    try:
        user = stores.users.get(token_data.sub)
    except NotFound:
        logger.warning(f"Token for unknown user {token_data.sub}")
        raise _unauthorized("User not found")

    logger.debug(f"User authenticated: {user.id}", extra={"user_id": user.id})

    return Identity(id=user.id, role=user.role)
