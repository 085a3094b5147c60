"""
tests/conftest.py -- Shared fixtures for the access-control test suite.

This module provides:
  - make_settings(): Settings for an isolated in-memory database
  - db: async fixture, a seeded in-memory Database for resolver/audit unit tests
  - failing_db: storage collaborator whose every call raises StorageError
  - api: module-scoped TestClient over create_app() with one user per role

Design: in-memory SQLite URLs get a StaticPool in core.db, so every statement
sees the same database. The app's Database is created inside the lifespan,
on the TestClient's event loop; extra users are seeded through
client.portal so they run on that same loop.

ENVIRONMENT must be set before any Settings is built so a missing SECRET_KEY
produces a generated key instead of a startup failure.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Generator
from dataclasses import dataclass, field

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.store import seed_defaults
from auth.tokens import hash_password
from core.config import Settings
from core.db import Database
from core.errors import StorageError
from core.models import User

MEMORY_URL = "sqlite+aiosqlite:///:memory:"
ADMIN_PASSWORD = "adminpass123"
USER_PASSWORD = "userpass123"

# Login is rate-limited per client address and every TestClient request comes
# from "testclient"; counters would leak across test modules. test_rate_limit.py
# switches it back on for its own app.
limiter.enabled = False


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "database_url": MEMORY_URL,
        "bootstrap_admin_password": ADMIN_PASSWORD,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db() -> AsyncIterator[Database]:
    """Seeded in-memory Database (role permissions only, no users)."""
    database = Database(MEMORY_URL)
    await seed_defaults(database, make_settings(bootstrap_admin_password=""))
    yield database
    await database.close()


class FailingDatabase:
    """Storage collaborator that fails every call, as a dead database would."""

    async def get(self, query, params=None):
        raise StorageError("storage read failed")

    async def all(self, query, params=None):
        raise StorageError("storage read failed")

    async def run(self, query, params=None):
        raise StorageError("storage write failed")


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    ids: dict[str, int] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    admin_password: str = ADMIN_PASSWORD
    user_password: str = USER_PASSWORD

    def headers(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}

    def seed_user(self, username: str, role: str, password: str = USER_PASSWORD, **extra) -> User:
        """Create a user through the running app's store, record its id and a token for it."""
        app = self.client.app
        user = User(username=username, role=role, password_hash=hash_password(password, rounds=4), **extra)
        user.id = self.client.portal.call(app.state.user_store.create_user, user)
        self.ids[username] = user.id
        self.tokens[username] = app.state.tokens.issue(user)
        return user


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness with tokens for admin, provisioner and read_only users.

    The bootstrap admin ("admin" / ADMIN_PASSWORD) is created by the real
    lifespan. "prov" and "ro" are seeded once per test module.
    """
    app = create_app(make_settings())
    with TestClient(app, raise_server_exceptions=True) as client:
        harness = ApiHarness(client=client)

        admin = client.portal.call(app.state.user_store.get_by_username, "admin")
        harness.ids["admin"] = admin.id
        harness.tokens["admin"] = app.state.tokens.issue(admin)

        harness.seed_user("prov", "provisioner", full_name="Prov User")
        harness.seed_user("ro", "read_only", full_name="Ro User")

        yield harness


@pytest.fixture
def failing_db() -> FailingDatabase:
    return FailingDatabase()
