"""
Test infrastructure for blogcms.

- SQLite in-memory via aiosqlite with StaticPool so every session shares
  the one connection (an in-memory database is connection-scoped).
- Foreign keys are switched on for that connection; the comment/reply
  cascade depends on them.
- ``get_db`` is overridden with the test session factory.
- Tables are created before and dropped after each test.
- Redis is disabled via ``cache._redis = None``; the cache degrades to
  no-ops.
- Rate-limit windows are reset per test, and uploads are written under a
  temporary ``PUBLIC_DIR``.
- Feed discovery talks to an in-process fake web (``httpx.MockTransport``)
  where any path ending in "feed", "rss" or ".xml" serves an RSS document.
"""
import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blogcms import feeds
from blogcms.cache import cache
from blogcms.config import settings
from blogcms.database import Base, enable_sqlite_foreign_keys, get_db
from blogcms.main import app
from blogcms.middleware import install_query_counter
from blogcms.ratelimit import comment_limiter, view_limiter

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)
enable_sqlite_foreign_keys(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    view_limiter.reset()
    comment_limiter.reset()
    yield
    view_limiter.reset()
    comment_limiter.reset()


@pytest.fixture(autouse=True)
def public_dir(tmp_path, monkeypatch):
    """Point uploads at a per-test directory."""
    monkeypatch.setattr(settings, "PUBLIC_DIR", str(tmp_path))
    return tmp_path


SAMPLE_RSS = (
    '<?xml version="1.0"?><rss version="2.0"><channel><title>Sample</title></channel></rss>'
)


def default_feed_site(request: httpx.Request) -> httpx.Response:
    if request.url.path.rstrip("/").endswith(("feed", "rss", ".xml")):
        return httpx.Response(200, headers={"content-type": "application/rss+xml"}, text=SAMPLE_RSS)
    return httpx.Response(404)


@pytest.fixture(autouse=True)
def feed_web(monkeypatch):
    """Route feed discovery to a fake web; call the fixture value to swap the handler."""
    state = {"handler": default_feed_site}

    def _client() -> httpx.AsyncClient:
        transport = httpx.MockTransport(lambda request: state["handler"](request))
        return httpx.AsyncClient(transport=transport, follow_redirects=True)

    def use(handler) -> None:
        state["handler"] = handler

    monkeypatch.setattr(feeds, "build_client", _client)
    return use


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


