from typing import AsyncIterator, Dict

import httpx
import pytest
from fakeredis import FakeAsyncRedis

from infrapulse.core import security
from infrapulse.core.cache import SummaryCache
from infrapulse.core.config import Settings
from infrapulse.core.database import Database
from infrapulse.models.server import Server, ServerStatus
from infrapulse.models.user import User, UserRole

class FakeProbe:
    """Probe whose answer is set per server id. Unknown servers are healthy."""

    def __init__(self):
        self.results: Dict[int, bool] = {}
        self.calls = 0

    def set(self, server_id: int, healthy: bool):
        self.results[server_id] = healthy

    async def __call__(self, server) -> bool:
        self.calls += 1
        return self.results.get(server.id, True)

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'infrapulse-test.db'}",
        REDIS_URL="redis://localhost:6379/15",
        SECRET_KEY="test-secret-key",
        LOG_FILE=str(tmp_path / "logs" / "app.log"),
        LOG_LEVEL="INFO",
        HEALTH_CHECK_ENABLED=False,
        HEALTH_CHECK_INTERVAL=60,
        HEALTH_CHECK_JITTER=0,
        HEALTH_CHECK_WORKER_COUNT=4,
        HEALTH_PROBE_TIMEOUT=0.5,
        SUMMARY_CACHE_TTL=30,
    )

@pytest.fixture
async def database(settings) -> AsyncIterator[Database]:
    db = Database(settings)
    await db.create_all()
    yield db
    await db.dispose()

@pytest.fixture
async def session(database):
    async with database.session() as s:
        yield s

@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()

@pytest.fixture
def cache(redis_client) -> SummaryCache:
    return SummaryCache(redis_client)

@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()

@pytest.fixture
def app(settings, database, cache, probe):
    """
    Application wired to the test store, fake redis and fake probe.

    httpx.ASGITransport does not run the lifespan, so tables come from the
    database fixture and the sampler is never started.
    """
    from infrapulse.main import create_app

    return create_app(settings=settings, database=database, cache=cache, probe=probe)

@pytest.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

async def _add_user(database: Database, username: str, role: UserRole, password: str = "secret123") -> User:
    async with database.session() as s:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=security.get_password_hash(password),
            role=role,
            is_active=True,
        )
        s.add(user)
        await s.commit()
        await s.refresh(user)
        return user

@pytest.fixture
async def users(database) -> Dict[str, User]:
    return {
        "admin": await _add_user(database, "admin", UserRole.ADMIN),
        "operator": await _add_user(database, "operator", UserRole.OPERATOR),
        "viewer": await _add_user(database, "viewer", UserRole.VIEWER),
    }

@pytest.fixture
def auth_headers(settings, users):
    """auth_headers("operator") -> Authorization header for that seeded user"""
    def _headers(name: str) -> Dict[str, str]:
        user = users[name]
        token = security.create_access_token(settings, user.id, user.username, UserRole(user.role).value)
        return {"Authorization": f"Bearer {token}"}
    return _headers

@pytest.fixture
def make_server(database):
    async def _make(hostname: str = "web-01", ip_address: str = "10.0.0.1", status: ServerStatus = ServerStatus.ONLINE):
        async with database.session() as s:
            server = Server(name=hostname.upper(), hostname=hostname, ip_address=ip_address, status=status)
            s.add(server)
            await s.commit()
            await s.refresh(server)
            return server
    return _make
