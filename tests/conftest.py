"""Test fixtures - in-memory SQLite per test, a recording broker gateway.

Learn: the app runs against SQLite through aiosqlite. StaticPool keeps
one connection for the whole engine, so every session of a test (the
fixture's and each request's) sees the same in-memory database, and a
new engine per test means nothing leaks between tests.

The broker is replaced by RecordingGateway: publishes are recorded
instead of sent, and a test can make them fail with a chosen error.
The live feed registry and presence tracker are the real ones, built
fresh by create_app() for every test.

Environment variables are set before anything imports parley.config.
"""

import os

os.environ.setdefault("PARLEY_ENVIRONMENT", "test")
os.environ.setdefault("PARLEY_BCRYPT_ROUNDS", "4")
os.environ.setdefault("PARLEY_RELAY_ENABLED", "false")

from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from parley.auth.dependencies import CurrentIdentity, get_current_user  # noqa: E402
from parley.auth.jwt import create_access_token  # noqa: E402
from parley.auth.password import hash_password  # noqa: E402
from parley.db.engine import get_db  # noqa: E402
from parley.db.models import Base, User  # noqa: E402
from parley.main import create_app  # noqa: E402

PASSWORD = "password123"


class RecordingGateway:
    """Stands in for BrokerGateway. Records publishes, optionally fails them."""

    def __init__(self):
        self.published: list[tuple[str, object]] = []
        self.fail_with: Optional[type] = None
        self.connected = True
        self.queue = "messages_queue"
        self.group = "parley-relay"

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def ping(self) -> bool:
        return self.connected

    async def publish(self, pattern: str, payload) -> None:
        if self.fail_with is not None:
            raise self.fail_with(
                f"{pattern} failed in test", pattern=pattern, event=payload
            )
        self.published.append((pattern, payload))

    def patterns(self) -> list[str]:
        return [pattern for pattern, _ in self.published]


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def users(session_factory) -> dict[str, User]:
    """alice, bob and carol, all with password PASSWORD."""
    async with session_factory() as session:
        people = {
            key: User(email=f"{key}@example.com", name=key.title(), password_hash=hash_password(PASSWORD))
            for key in ("alice", "bob", "carol")
        }
        session.add_all(people.values())
        await session.commit()
    return people


@pytest.fixture()
def gateway():
    return RecordingGateway()


@pytest_asyncio.fixture()
async def app(session_factory, gateway):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.gateway = gateway
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app, users):
    """HTTP client authenticated as alice.

    Learn: get_current_user is overridden so protected routes work
    without a login round trip. Tests that need real tokens or another
    user use `anon_client` with `auth_headers`.
    """
    alice = users["alice"]

    def override_get_current_user():
        return CurrentIdentity(id=alice.id, email=alice.email, name=alice.name)

    app.dependency_overrides[get_current_user] = override_get_current_user
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def anon_client(app):
    """HTTP client with real authentication (no override)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _bearer(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.email, user.name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers():
    """Build real Authorization headers for a seeded user."""
    return _bearer
