"""
Test Configuration
==================

Shared fixtures: an in-memory Redis stand-in, the ASGI client, and
dependency overrides for the database, the signed-in user and storage.
"""

import fnmatch
import os
import uuid
from unittest.mock import AsyncMock

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEV_AUTH_DISABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-characters")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ancretoi.db.session import get_db
from ancretoi.dependencies import get_current_user, get_current_user_optional, get_kv_storage
from ancretoi.main import app
from ancretoi.models.user import User, UserRole, default_limits
from ancretoi.services import cache as cache_module


class MemoryStorage:
    """Key-value storage kept in a dict."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)


class FakeRedis:
    """The handful of Redis commands the app uses, kept in a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value):
        self.store[key] = str(value)
        return True

    async def setex(self, key, ttl, value):
        self.store[key] = str(value)
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def ttl(self, key):
        return 60 if key in self.store else -2

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        return None


def make_user(role: str = UserRole.USER.value, email: str = "learner@example.com") -> User:
    return User(
        user_id=uuid.uuid4(),
        email=email,
        name=None,
        role=role,
        theme="system",
        marketing=False,
        product_updates=True,
        limits=default_limits(),
    )


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    """Every Redis call in a test hits this in-memory store."""
    fake = FakeRedis()
    monkeypatch.setattr(cache_module, "_redis_client", fake)
    return fake


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def db_session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def member() -> User:
    return make_user()


@pytest.fixture
def admin() -> User:
    return make_user(role=UserRole.ADMIN.value, email="admin@example.com")


@pytest.fixture
def override(db_session, storage):
    """Install dependency overrides; ``override(user)`` signs ``user`` in."""

    async def _db():
        yield db_session

    def _install(user=None):
        app.dependency_overrides[get_db] = _db
        app.dependency_overrides[get_kv_storage] = lambda: storage
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
            app.dependency_overrides[get_current_user_optional] = lambda: user
        else:
            app.dependency_overrides[get_current_user_optional] = lambda: None

    yield _install
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(override) -> AsyncClient:
    """Anonymous client."""
    override()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def member_client(override, member) -> AsyncClient:
    override(member)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def admin_client(override, admin) -> AsyncClient:
    override(admin)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
