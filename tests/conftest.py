import os
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing credhub modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-testing-only")
os.environ.setdefault("TWITCH_AUTH_URL", "https://id.twitch.test/oauth2")
os.environ.setdefault("TWITCH_HELIX_URL", "https://api.twitch.test/helix")

OWNER = "user-alice"
OTHER_OWNER = "user-bob"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture(scope="function")
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async session on a fresh in-memory SQLite database.

    StaticPool keeps the single in-memory connection alive for the whole test.
    """
    from credhub.database import Base, enable_sqlite_savepoints
    import credhub.models  # noqa: F401 - Import to register models with Base

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def codec():
    """The codec built from the test ENCRYPTION_KEY (same one the services use)."""
    from credhub.services.secret_codec import get_secret_codec

    return get_secret_codec()


@pytest.fixture
def twitch_client():
    """A TwitchAuthClient pointed at the test base URL.

    It never reaches the network -- tests patch ``_client.request``.
    """
    from credhub.twitch_gateway.client import TwitchAuthClient

    return TwitchAuthClient()


@pytest.fixture
def eventsub_client():
    from credhub.twitch_gateway.eventsub import EventSubClient

    return EventSubClient()


@pytest_asyncio.fixture
async def twitch_config(test_db: AsyncSession, codec):
    """A config owned by OWNER with client secret ``shh``."""
    from credhub.services import records

    return await records.create_config(test_db, OWNER, "abc123", codec.encrypt("shh"), name="Main app")


@pytest_asyncio.fixture(scope="function")
async def test_app(test_db: AsyncSession):
    """Provide a FastAPI app instance with test database override."""
    from credhub.main import app
    from credhub.database import get_db

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing with test database."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_auth_headers(sub: str = OWNER) -> dict[str, str]:
    """Create Authorization headers with a valid access token."""
    from credhub.services.auth_service import create_access_token

    token = create_access_token(data={"sub": sub})
    return {"Authorization": f"Bearer {token}"}


def make_response(json_data: dict | list | None = None, status_code: int = 200) -> httpx.Response:
    """Build a fake Twitch response with the given JSON body."""
    if json_data is None:
        return httpx.Response(status_code=status_code, request=httpx.Request("GET", "http://fake"))
    return httpx.Response(
        status_code=status_code,
        json=json_data,
        request=httpx.Request("GET", "http://fake"),
    )
