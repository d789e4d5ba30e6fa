"""Access control and best-effort rolling refresh in AuthenticationMiddleware."""
from datetime import timedelta

import pytest

from config import settings
from app.core.jwt import ACCESS
from tests.conftest import CHROME_UA, bearer, login, make_config, register

HEADER = "X-Access-Token"


async def signed_in(client):
    """Register and return (access token, refresh cookie)"""
    response = await register(client)
    return response.json()["access_token"], response.cookies.get("refresh_token")


class TestMandatoryCheck:
    """Protected routes need a valid access token; public ones do not."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/auth/sessions")

        assert response.status_code == 401
        assert response.json()["code"] == "token_invalid"
        assert response.json()["path"] == "/api/v1/auth/sessions"
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_malformed_header(self, client):
        response = await client.get("/api/v1/auth/sessions", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, client):
        _, cookie = await signed_in(client)
        response = await client.get("/api/v1/auth/sessions", headers=bearer(cookie))

        assert response.status_code == 401
        assert response.json()["code"] == "token_invalid"

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected_without_refresh(self, client, clock):
        token, _ = await signed_in(client)
        clock.advance(minutes=15)

        # The refresh cookie is in the jar but is never consulted
        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))
        assert response.status_code == 401
        assert response.json()["code"] == "token_expired"
        assert HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_public_routes_bypass(self, client):
        assert (await client.get("/health")).status_code == 200
        assert (await client.post("/api/v1/auth/logout")).status_code == 200

    @pytest.mark.asyncio
    async def test_fresh_token_has_no_side_effects(self, client):
        token, cookie = await signed_in(client)
        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))

        assert response.status_code == 200
        assert HEADER not in response.headers
        assert "set-cookie" not in response.headers
        assert response.json()[0]["last_used_at"] is None


class TestRollingRefresh:
    """Near-expiry tokens are renewed through the response header."""

    @pytest.mark.asyncio
    async def test_near_expiry_token_is_renewed(self, client, app, issuer, clock):
        token, cookie = await signed_in(client)
        clock.advance(minutes=14, seconds=30)

        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))
        assert response.status_code == 200
        assert "set-cookie" not in response.headers

        renewed = issuer.verify(response.headers[HEADER], ACCESS)
        original = issuer.verify(token, ACCESS)
        assert renewed.subject == original.subject
        assert renewed.email == original.email
        assert renewed.expires_at == clock.now() + timedelta(minutes=15)

        # Existing session reused and touched
        assert await app.state.session_manager.find_valid(cookie) is not None
        assert response.json()[0]["last_used_at"] is not None

    @pytest.mark.asyncio
    async def test_threshold_boundary(self, client, clock):
        token, _ = await signed_in(client)

        clock.advance(minutes=13, seconds=59)
        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))
        assert HEADER not in response.headers

        clock.advance(seconds=1)
        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))
        assert HEADER in response.headers

    @pytest.mark.asyncio
    async def test_renewed_token_is_usable(self, client, clock):
        token, _ = await signed_in(client)
        clock.advance(minutes=14, seconds=30)
        renewed = (await client.get("/api/v1/auth/me", headers=bearer(token))).headers[HEADER]

        clock.advance(minutes=5)
        response = await client.get("/api/v1/auth/me", headers=bearer(renewed))
        assert response.status_code == 200
        assert HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_without_cookie_the_request_still_succeeds(self, client, clock):
        token, _ = await signed_in(client)
        client.cookies.clear()
        clock.advance(minutes=14, seconds=30)

        response = await client.get("/api/v1/auth/me", headers=bearer(token))
        assert response.status_code == 200
        assert HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_revoked_cookie_is_ignored(self, client, app, clock):
        token, cookie = await signed_in(client)
        await app.state.session_manager.revoke(cookie)
        clock.advance(minutes=14, seconds=30)

        response = await client.get("/api/v1/auth/me", headers=bearer(token))
        assert response.status_code == 200
        assert HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_cookie_of_another_user_is_ignored(self, client, app, clock):
        token, _ = await signed_in(client)
        other = await register(client, email="b@x.com")
        clock.advance(minutes=14, seconds=30)

        response = await client.get(
            "/api/v1/auth/me",
            headers={**bearer(token), "Cookie": f"refresh_token={other.cookies.get('refresh_token')}"},
        )
        assert response.status_code == 200
        assert response.json()["email"] == "a@x.com"
        assert HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_store_outage_fails_open(self, client, app, clock):
        token, _ = await signed_in(client)
        clock.advance(minutes=14, seconds=30)

        async def store_down(cookie):
            raise ConnectionError("session store unavailable")

        app.state.session_manager.find_valid = store_down
        response = await client.get("/api/v1/auth/me", headers=bearer(token))

        assert response.status_code == 200
        assert HEADER not in response.headers


class TestRollingRotation:
    """Sessions close to their own expiry are rotated during rolling refresh."""

    @pytest.fixture
    def app(self, make_app):
        return make_app(make_config(refresh_ttl=timedelta(hours=12)))

    @pytest.mark.asyncio
    async def test_rotation_sets_a_new_cookie(self, client, app, clock):
        token, old_cookie = await signed_in(client)
        clock.advance(minutes=14, seconds=30)

        response = await client.get("/api/v1/auth/me", headers=bearer(token))
        assert response.status_code == 200
        assert HEADER in response.headers

        new_cookie = response.cookies.get("refresh_token")
        assert new_cookie and new_cookie != old_cookie
        assert "path=/api/v1" in response.headers["set-cookie"].lower()

        sessions = app.state.session_manager
        assert await sessions.find_valid(old_cookie) is None
        assert await sessions.find_valid(new_cookie) is not None

    @pytest.mark.asyncio
    async def test_listing_marks_the_rotated_session_current(self, client, clock):
        token, _ = await signed_in(client)
        clock.advance(minutes=14, seconds=30)

        response = await client.get("/api/v1/auth/sessions", headers=bearer(token))
        listed = response.json()
        assert len(listed) == 1
        assert listed[0]["is_current"] is True

    @pytest.mark.asyncio
    async def test_second_request_with_the_superseded_cookie_is_not_renewed(self, client, clock):
        token, old_cookie = await signed_in(client)
        clock.advance(minutes=14, seconds=30)

        first = await client.get("/api/v1/auth/me", headers=bearer(token))
        assert HEADER in first.headers

        second = await client.get(
            "/api/v1/auth/me",
            headers={**bearer(token), "Cookie": f"refresh_token={old_cookie}"},
        )
        assert second.status_code == 200
        assert HEADER not in second.headers

    @pytest.mark.asyncio
    async def test_explicit_refresh_always_rotates_inside_the_window(self, client):
        await login_after_register(client)
        response = await client.post("/api/v1/auth/refresh")

        assert response.status_code == 200
        assert response.json()["rotated"] is True


async def login_after_register(client):
    await register(client)
    return await login(client, user_agent=CHROME_UA)


class TestCors:

    @pytest.mark.asyncio
    async def test_preflight_is_answered_without_a_token(self, client):
        origin = settings.CORS_ORIGINS[0]
        response = await client.options(
            "/api/v1/auth/sessions",
            headers={"Origin": origin, "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == origin

    @pytest.mark.asyncio
    async def test_access_token_header_is_exposed(self, client):
        origin = settings.CORS_ORIGINS[0]
        response = await client.get("/health", headers={"Origin": origin})
        assert HEADER in response.headers["access-control-expose-headers"]
