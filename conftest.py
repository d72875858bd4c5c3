import os

# Cheap password hashing for tests; must be set before circulation.config is imported
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

import pytest
from fastapi.testclient import TestClient

from circulation.api import create_app
from circulation.library import Library
from circulation.models import Role


@pytest.fixture
def lib(tmp_path):
    # tmp_path is unique per test, parametrized cases included
    db_file = str(tmp_path / "library.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def make_user(lib):
    """Create a user with the given role and return its id."""
    counter = {"n": 0}

    def _make(name: str = "", role: Role = Role.MEMBER, password: str = "password123") -> int:
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user_id = lib.users.insert(name, f"{name}@example.com", password)
        if role is not Role.MEMBER:
            lib.users.set_role(user_id, role)
        return user_id

    return _make


@pytest.fixture
def app(lib):
    return create_app(settings=lib.settings, library=lib)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login(app, lib, make_user):
    """Return a TestClient logged in as a fresh user with ``role``."""

    def _login(role: Role = Role.MEMBER, name: str = "") -> TestClient:
        user_id = make_user(name=name, role=role)
        user = lib.users.get(user_id)
        client = TestClient(app)
        response = client.post("/user/login", json={"email": user.email, "password": "password123"})
        assert response.status_code == 200
        client.user_id = user_id
        return client

    return _login
