"""Throttling of the credential endpoints."""
import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from app.middleware.rate_limit import RateLimiter
from app.models.user import User
from tests.conftest import CHROME_UA, InMemoryRedis, login, register


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(InMemoryRedis(), rate_limit=3, max_violations=3, ban_duration_minutes=10, clock=clock)


class TestRateLimiter:
    """Fixed window per minute, shrinking allowance, then a ban."""

    @pytest.mark.asyncio
    async def test_allows_up_to_the_limit(self, limiter):
        results = [await limiter.check_rate_limit("login:ip:1.2.3.4") for _ in range(4)]

        assert [allowed for allowed, _ in results] == [True, True, True, False]
        assert results[0][1]["remaining"] == 2
        assert results[3][1]["retry_after"] == 60
        assert results[3][1]["reason"] == "rate_limit_exceeded"

    @pytest.mark.asyncio
    async def test_identifiers_are_counted_separately(self, limiter):
        for _ in range(3):
            await limiter.check_rate_limit("login:ip:1.2.3.4")

        allowed, _ = await limiter.check_rate_limit("login:ip:5.6.7.8")
        assert allowed is True

    @pytest.mark.asyncio
    async def test_violations_shrink_the_next_window(self, limiter, clock):
        for _ in range(4):
            await limiter.check_rate_limit("login:ip:1.2.3.4")

        clock.advance(minutes=1)
        allowed, metadata = await limiter.check_rate_limit("login:ip:1.2.3.4")
        assert allowed is True
        assert metadata["limit"] == 1
        assert (await limiter.check_rate_limit("login:ip:1.2.3.4"))[0] is False

    @pytest.mark.asyncio
    async def test_repeated_violations_ban(self, limiter):
        for _ in range(3):
            await limiter.check_rate_limit("login:ip:1.2.3.4")
        for _ in range(2):
            await limiter.check_rate_limit("login:ip:1.2.3.4")

        allowed, metadata = await limiter.check_rate_limit("login:ip:1.2.3.4")
        assert allowed is False
        assert metadata["banned"] is True
        assert metadata["retry_after"] == 600

        allowed, metadata = await limiter.check_rate_limit("login:ip:1.2.3.4")
        assert allowed is False
        assert metadata["reason"] == "repeated_violations"


class UnreachableRedis(InMemoryRedis):

    async def exists(self, key):
        raise RedisConnectionError("connection refused")


async def client_for(app):
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


class TestCredentialEndpointThrottling:
    """Login and register are throttled per client address, before any password work."""

    @pytest.mark.asyncio
    async def test_login_is_throttled(self, make_app, limiter):
        async with await client_for(make_app(rate_limiter=limiter)) as client:
            await register(client)
            codes = [(await login(client, password="Wr0ng!pass")).status_code for _ in range(3)]
            response = await login(client, password="Wr0ng!pass")

        assert codes == [401, 401, 401]
        assert response.status_code == 429
        assert response.json()["code"] == "rate_limited"
        assert response.headers["retry-after"] == "60"
        assert response.headers["x-ratelimit-remaining"] == "0"

    @pytest.mark.asyncio
    async def test_throttled_attempts_do_not_touch_the_account(self, make_app, limiter, session_factory):
        async with await client_for(make_app(rate_limiter=limiter)) as client:
            await register(client)
            for _ in range(6):
                await login(client, password="Wr0ng!pass")

        async with session_factory() as db:
            user = (await db.execute(select(User).where(User.email == "a@x.com"))).scalar_one()
        assert user.failed_login_attempts == 3

    @pytest.mark.asyncio
    async def test_each_address_and_endpoint_has_its_own_budget(self, make_app, limiter):
        async with await client_for(make_app(rate_limiter=limiter)) as client:
            await register(client)
            for _ in range(3):
                await login(client)
            assert (await login(client)).status_code == 429

            other = await client.post(
                "/api/v1/auth/login",
                json={"email": "a@x.com", "password": "Str0ng!1"},
                headers={"User-Agent": CHROME_UA, "X-Forwarded-For": "198.51.100.9"},
            )
            assert other.status_code == 200

            assert (await register(client, email="b@x.com")).status_code == 201

    @pytest.mark.asyncio
    async def test_redis_outage_lets_requests_through(self, make_app, clock):
        limiter = RateLimiter(UnreachableRedis(), rate_limit=1, clock=clock)
        async with await client_for(make_app(rate_limiter=limiter)) as client:
            await register(client)
            codes = [(await login(client)).status_code for _ in range(3)]

        assert codes == [200, 200, 200]

    @pytest.mark.asyncio
    async def test_token_endpoints_are_not_throttled(self, make_app, limiter):
        async with await client_for(make_app(rate_limiter=limiter)) as client:
            await register(client)
            codes = [(await client.post("/api/v1/auth/refresh")).status_code for _ in range(5)]

        assert codes == [200] * 5
