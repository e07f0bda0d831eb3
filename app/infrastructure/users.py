"""User store: registered accounts, unique by case-insensitive email."""
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis

from app.core.errors import Conflict, user_not_found
from app.core.logging import get_logger
from app.domain.user import Role, StoredUser
from app.infrastructure.redis import RedisKeys, storage_errors

logger = get_logger(__name__)


class UserStore(ABC):

    @abstractmethod
    def create(self, name: str, email: str, password_hash: str, role: Role) -> StoredUser:
        """Persist a new user; ``Conflict`` if the email is taken."""

    @abstractmethod
    def get(self, user_id: str) -> StoredUser:
        ...

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[StoredUser]:
        ...


class MemoryUserStore(UserStore):

    def __init__(self):
        self._users: Dict[str, StoredUser] = {}
        self._emails: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, name: str, email: str, password_hash: str, role: Role) -> StoredUser:
        user = StoredUser(
            id=uuid.uuid4().hex,
            name=name,
            email=email,
            role=role,
            password_hash=password_hash,
        )
        with self._lock:
            if email.lower() in self._emails:
                raise Conflict("Email already registered")
            self._emails[email.lower()] = user.id
            self._users[user.id] = user
        return user

    def get(self, user_id: str) -> StoredUser:
        with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise user_not_found()
        return user

    def find_by_email(self, email: str) -> Optional[StoredUser]:
        with self._lock:
            user_id = self._emails.get(email.lower())
            return self._users.get(user_id) if user_id else None


# KEYS[1] email index, KEYS[2] user hash, ARGV[1] user id, then field/value pairs
CREATE_SCRIPT = """
if not redis.call('SET', KEYS[1], ARGV[1], 'NX') then
    return 0
end
for i = 2, #ARGV, 2 do
    redis.call('HSET', KEYS[2], ARGV[i], ARGV[i + 1])
end
return 1
"""


class RedisUserStore(UserStore):
    """Users as Redis hashes plus an email -> id index.

    The email claim and the user hash are written by one script, so a failed
    registration never leaves the email taken.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "library:"):
        self.redis = redis_client
        self.keys = RedisKeys(key_prefix)
        self._create = self.redis.register_script(CREATE_SCRIPT)

    @storage_errors
    def create(self, name: str, email: str, password_hash: str, role: Role) -> StoredUser:
        user = StoredUser(
            id=uuid.uuid4().hex,
            name=name,
            email=email,
            role=role,
            password_hash=password_hash,
        )
        fields = [
            "id", user.id,
            "name", user.name,
            "email", user.email,
            "role", user.role.value,
            "password_hash", user.password_hash,
        ]
        created = self._create(
            keys=[self.keys.user_email(email), self.keys.user(user.id)],
            args=[user.id, *fields],
        )
        if not created:
            raise Conflict("Email already registered")
        return user

    @storage_errors
    def get(self, user_id: str) -> StoredUser:
        data = self.redis.hgetall(self.keys.user(user_id))
        if not data:
            raise user_not_found()
        return StoredUser(**data)

    @storage_errors
    def find_by_email(self, email: str) -> Optional[StoredUser]:
        user_id = self.redis.get(self.keys.user_email(email))
        if not user_id:
            return None
        data = self.redis.hgetall(self.keys.user(user_id))
        return StoredUser(**data) if data else None
