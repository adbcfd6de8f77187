"""Shared test fixtures.

Every test gets its own SQLite database file. SQLite transactions are opened
with BEGIN IMMEDIATE, so test code opens a short-lived session per block
(``async with session_factory() as db``) and never holds one across a request.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _ensure_test_keys() -> None:
    """Generate an RSA key pair for JWT signing and point settings at it."""
    keydir = Path(tempfile.mkdtemp(prefix="thumbs_test_keys_"))
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_path = keydir / "jwt_private.pem"
    public_path = keydir / "jwt_public.pem"
    private_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    os.environ["THUMBS_JWT_PRIVATE_KEY_PATH"] = str(private_path)
    os.environ["THUMBS_JWT_PUBLIC_KEY_PATH"] = str(public_path)
    os.environ["THUMBS_DATABASE_URL"] = f"sqlite+aiosqlite:///{keydir / 'bootstrap.db'}"
    os.environ["THUMBS_REDIS_URL"] = ""
    os.environ["THUMBS_LOG_FORMAT"] = "console"


_ensure_test_keys()

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from thumbs.auth.jwt import create_access_token, reset_keys  # noqa: E402
from thumbs.charts.service import create_chart, join_chart  # noqa: E402
from thumbs.config import get_settings  # noqa: E402
from thumbs.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from thumbs.db.models import Base, User  # noqa: E402
from thumbs.main import create_app  # noqa: E402
from thumbs.users.service import create_user  # noqa: E402
from thumbs.ws.broadcaster import Broadcaster  # noqa: E402
from thumbs.ws.registry import ClientConnection, ConnectionRegistry  # noqa: E402


@pytest.fixture
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    url = f"sqlite+aiosqlite:///{tmp_path / 'thumbs.db'}"
    monkeypatch.setenv("THUMBS_DATABASE_URL", url)
    get_settings.cache_clear()
    reset_keys()
    yield url
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialize a fresh database with every table and yield the session factory."""
    await init_db(database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest.fixture
def sync_database(database_url: str) -> Iterator[str]:
    """Create the schema synchronously for tests driving the app through TestClient."""
    engine = create_engine(database_url.replace("+aiosqlite", ""))
    Base.metadata.create_all(engine)
    yield database_url
    engine.dispose()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry: ConnectionRegistry) -> Broadcaster:
    return Broadcaster(registry)


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app. The database is initialized by ``session_factory``."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.app = app  # type: ignore[attr-defined]
        yield ac


@pytest.fixture
def make_user(session_factory) -> Callable[..., Awaitable[User]]:
    """Factory creating a committed user with an optional starting balance."""

    async def _make(username: str, balance: int = 0, display_name: str | None = None) -> User:
        async with session_factory() as db:
            user = await create_user(db, username, display_name=display_name, initial_balance=balance)
            await db.commit()
            return user

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers


@pytest.fixture
def connect(registry: ConnectionRegistry) -> Callable[[int], AsyncMock]:
    """Register a fake live session for a user; returns its mocked socket."""

    def _connect(user_id: int) -> AsyncMock:
        socket = AsyncMock()
        registry.register(user_id, ClientConnection(websocket=socket, conn_id=f"conn-{user_id}"))
        return socket

    return _connect


def sent_messages(socket: AsyncMock) -> list[dict]:
    """Decode every frame written to a mocked socket, in order."""
    return [json.loads(call.args[0]) for call in socket.send_text.call_args_list]


@pytest.fixture
def received() -> Callable[[AsyncMock], list[dict]]:
    return sent_messages


@pytest_asyncio.fixture
async def live_arena(session_factory, make_user, registry) -> SimpleNamespace:
    """Two players (alice created the chart, bob filled it) in a live arena. Fee 20 each."""
    alice = await make_user("alice", balance=100, display_name="Alice")
    bob = await make_user("bob", balance=100, display_name="Bob")
    async with session_factory() as db:
        chart = await create_chart(
            db, alice.id, title="Speed Chess", game="chess", entry_fee=20, max_participants=2,
        )
    async with session_factory() as db:
        result = await join_chart(db, registry, chart.id, bob.id)
    return SimpleNamespace(alice=alice, bob=bob, chart_id=chart.id, arena_id=result.arena_id)
