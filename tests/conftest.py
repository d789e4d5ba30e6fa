"""
Shared fixtures: frozen clock, temporary SQLite database, auth components
and an httpx client bound to the ASGI app.
"""
import os

# Settings are read at import time, so the test environment goes in first
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("EMAIL_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from config import AuthConfig
from app.core.clock import Clock
from app.core.database import Base, build_session_factory
from app.core.jwt import TokenIssuer
from app.core.password import PasswordHasher
from app.models.user import User
from app.services.device_info import DeviceInfo
from app.services.email_service import EmailService
from app.services.lockout import AccountLockoutPolicy
from app.services.session_manager import SessionManager

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class FrozenClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class InMemoryRedis:
    """The handful of redis.asyncio commands the rate limiter issues"""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    async def exists(self, key):
        return int(key in self.values)

    async def ttl(self, key):
        return self.ttls.get(key, -1) if key in self.values else -2

    async def get(self, key):
        return self.values.get(key)

    async def incr(self, key):
        self.values[key] = str(int(self.values.get(key, 0)) + 1)
        return int(self.values[key])

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def setex(self, key, seconds, value):
        self.values[key] = value
        self.ttls[key] = seconds
        return True


def make_config(**overrides) -> AuthConfig:
    values = {
        "access_secret": "access-secret-for-tests-0123456789abcdef",
        "refresh_secret": "refresh-secret-for-tests-0123456789abcdef",
    }
    values.update(overrides)
    return AuthConfig(**values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def auth_config() -> AuthConfig:
    return make_config()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """Cheap argon2 parameters; hashing cost is irrelevant to behaviour"""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def issuer(auth_config, clock) -> TokenIssuer:
    return TokenIssuer(auth_config, clock)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session_manager(auth_config, issuer, session_factory, clock) -> SessionManager:
    return SessionManager(auth_config, issuer, session_factory, clock)


@pytest.fixture
def lockout(auth_config, clock) -> AccountLockoutPolicy:
    return AccountLockoutPolicy(auth_config, clock)


@pytest.fixture
def make_user(session_factory, hasher, clock) -> Callable:
    """Insert a user directly, bypassing the HTTP layer"""

    async def _make_user(email: str = "user@example.com", password: str = "Str0ng!1") -> User:
        user = User(
            email=email,
            password_hash=hasher.hash_password(password),
            created_at=clock.now(),
        )
        async with session_factory() as db:
            db.add(user)
            await db.commit()
            await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def web_device() -> DeviceInfo:
    return DeviceInfo(user_agent=CHROME_UA, ip_address="10.0.0.1", device_type="web", device_name="Chrome")


@pytest.fixture
def make_app(session_factory, clock, hasher, auth_config) -> Callable:
    from main import create_app

    def _make_app(config: AuthConfig = None, rate_limiter=None):
        return create_app(
            session_factory=session_factory,
            clock=clock,
            hasher=hasher,
            mailer=EmailService(enabled=False),
            auth_config=config or auth_config,
            rate_limiter=rate_limiter,
        )

    return _make_app


@pytest.fixture
def app(make_app):
    return make_app()


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def register(client: httpx.AsyncClient, email: str = "a@x.com", password: str = "Str0ng!1"):
    return await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password},
        headers={"User-Agent": CHROME_UA},
    )


async def login(client: httpx.AsyncClient, email: str = "a@x.com", password: str = "Str0ng!1", user_agent: str = CHROME_UA):
    return await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers={"User-Agent": user_agent},
    )


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
