"""
Test infrastructure for the threaded comments API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance.  SQLite understands the recursive CTEs used for subtree reads
  and cascading deletes, so those paths run for real.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- All tables are created fresh before each test and dropped after.
- Tests about what concurrent sessions can see use ``file_db``, a
  file-backed database where each session has its own connection.
- The Redis cache is disabled (``cache._redis = None``) before every test;
  the services treat that as a cache outage and serve from the database.
  Tests that exercise caching request the ``fake_redis`` fixture, which
  plugs an in-memory stand-in for the redis client into the singleton.
"""
import fnmatch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.background import detached
from app.cache import cache
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Register the per-request SQL query counter on the test engine.
install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override: replace production get_db with the test session factory
# ---------------------------------------------------------------------------

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
# In-memory Redis double
# ---------------------------------------------------------------------------

class FakeRedis:
    """
    The subset of ``redis.asyncio.Redis`` that CacheManager uses.

    Set ``fail = True`` to make every call raise a redis ConnectionError,
    simulating an outage.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match: str | None = None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        pass

    def keys_matching(self, pattern: str) -> list[str]:
        return sorted(k for k in self.data if fnmatch.fnmatchcase(k, pattern))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(autouse=True)
async def reset_cache():
    """Start every test with the cache disabled and fresh counters."""
    cache._redis = None
    cache._hits = 0
    cache._misses = 0
    yield
    await detached.drain()
    cache._redis = None


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Enable the cache singleton on top of an in-memory Redis double."""
    fake = FakeRedis()
    cache._redis = fake
    return fake


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (repositories, services, seeding rows).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def file_db(tmp_path) -> async_sessionmaker:
    """
    Session factory over a file-backed SQLite database.

    Unlike the shared in-memory connection, every session gets its own
    connection, so one session cannot see another's uncommitted rows.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'comments.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
