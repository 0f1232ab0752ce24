"""Токены сессии, пароли и ограничение частоты запросов."""

import jwt
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request
from starlette.responses import Response

from config.settings import get_settings
from portal.middlewares import ThrottlingMiddleware, register_error_handlers
from portal.utils.security import (
    decode_session_token,
    hash_password,
    issue_session_token,
    verify_password,
)


class TestSessionTokens:
    def test_token_carries_partner_id(self):
        payload = decode_session_token(issue_session_token(42, "ib@example.com"))
        assert payload["partner_id"] == 42
        assert payload["sub"] == "42"
        assert payload["email"] == "ib@example.com"

    def test_foreign_signature_is_rejected(self):
        token = jwt.encode({"sub": "1"}, "another-secret", algorithm="HS256")
        with pytest.raises(ValueError):
            decode_session_token(token)

    def test_token_without_subject_is_rejected(self):
        secret = get_settings().security.jwt_secret.get_secret_value()
        token = jwt.encode({"email": "x@example.com"}, secret, algorithm="HS256")
        with pytest.raises(ValueError):
            decode_session_token(token)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        assert hashed.startswith("$2")
        assert verify_password("secret123", hashed)
        assert not verify_password("secret124", hashed)

    def test_broken_hash_never_matches(self):
        assert not verify_password("secret123", "not-a-bcrypt-hash")
        assert not verify_password("", "")


class TestThrottling:
    @pytest.fixture
    async def client(self):
        app = FastAPI()
        register_error_handlers(app)
        app.add_middleware(ThrottlingMiddleware, limit=2, window_sec=60)

        @app.get("/api/ping")
        async def ping():
            return {"success": True}

        @app.get("/static")
        async def static():
            return {"success": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client

    async def test_limit_per_window(self, client):
        assert (await client.get("/api/ping")).status_code == 200
        assert (await client.get("/api/ping")).status_code == 200
        resp = await client.get("/api/ping")
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.json()["success"] is False

    async def test_non_api_paths_are_free(self, client):
        for _ in range(5):
            assert (await client.get("/static")).status_code == 200


def api_request(host):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "path": "/api/ping",
            "root_path": "",
            "query_string": b"",
            "headers": [],
            "client": (host, 5000),
            "server": ("test", 80),
        }
    )


async def reply(request):
    return Response("ok")


class TestThrottlingWindows:
    async def test_expired_windows_are_evicted_over_bound(self):
        middleware = ThrottlingMiddleware(FastAPI(), limit=5, window_sec=60, max_clients=2)
        clock = [0.0]
        middleware._clock = lambda: clock[0]

        for host in ("10.0.0.1", "10.0.0.2"):
            await middleware.dispatch(api_request(host), reply)
        clock[0] = 30.0
        await middleware.dispatch(api_request("10.0.0.3"), reply)
        assert middleware.tracked_clients == 3

        clock[0] = 95.0
        await middleware.dispatch(api_request("10.0.0.4"), reply)
        assert middleware.tracked_clients == 1

    async def test_known_client_does_not_trigger_eviction(self):
        middleware = ThrottlingMiddleware(FastAPI(), limit=5, window_sec=60, max_clients=1)
        clock = [0.0]
        middleware._clock = lambda: clock[0]

        await middleware.dispatch(api_request("10.0.0.1"), reply)
        clock[0] = 100.0
        resp = await middleware.dispatch(api_request("10.0.0.1"), reply)

        assert resp.status_code == 200
        assert middleware.tracked_clients == 1
