"""Pytest configuration and shared fixtures."""
import os

# Must be set before any app module reads settings
os.environ["ENVIRONMENT"] = "test"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from app.core.auth import create_access_token, hash_password
from app.domain.user import Identity, Role
from app.infrastructure.stores import get_stores, memory_stores
from app.services.lending import LendingEngine


@pytest.fixture
def stores():
    """Fresh in-memory stores for each test."""
    return memory_stores()


@pytest.fixture
def engine(stores):
    return LendingEngine(stores.inventory, stores.ledger)


@pytest.fixture
def book(stores):
    """Book with five copies on the shelf."""
    return stores.inventory.add("Sample Book", "Author", quantity=5)


@pytest.fixture
def alice():
    return Identity(id="user_alice", role=Role.NORMAL)


@pytest.fixture
def bob():
    return Identity(id="user_bob", role=Role.NORMAL)


@pytest.fixture
def manager():
    return Identity(id="user_manager", role=Role.MANAGER)


@pytest.fixture
def make_user(stores):
    """Factory creating a stored user and returning (user, auth headers)."""
    counter = {"n": 0}

    def _make(role: Role = Role.NORMAL, password: str = "password"):
        counter["n"] += 1
        user = stores.users.create(
            name=f"Test User {counter['n']}",
            email=f"user{counter['n']}@example.com",
            password_hash=hash_password(password),
            role=role,
        )
        token = create_access_token(user)
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def test_client(stores):
    """FastAPI test client wired to the per-test stores."""
    from main import app

    app.dependency_overrides[get_stores] = lambda: stores
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
