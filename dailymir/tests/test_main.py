"""Tests for the FastAPI app: health, CORS, auth dependency, error envelopes.

Covers: health endpoint, CORS headers, the bearer/cookie dependency,
exception handlers (HTTPException, validation, domain errors, unhandled)
and request logging.

Uses httpx.AsyncClient with ASGITransport. All tests use explicit
@pytest.mark.asyncio per strict mode.
"""

import logging

import httpx
import pytest
from fastapi import APIRouter, Depends
from httpx import ASGITransport
from pydantic import BaseModel

from dailymir.api.deps import SESSION_COOKIE, get_current_session
from dailymir.errors import (
    ApiRequestError,
    ClientValidationError,
    ConfigError,
    SessionExpiredError,
    TransientApiError,
)
from dailymir.main import app
from dailymir.schemas import Session


@pytest.fixture
def client() -> httpx.AsyncClient:
    """Async test client wired to the app, no credentials attached."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


# ---------------------------------------------------------------------------
# Helper: a tiny test router for auth and error mapping
# ---------------------------------------------------------------------------

_test_router = APIRouter(prefix="/api/v1/test")


@_test_router.get("/protected")
async def protected_route(session: Session = Depends(get_current_session)) -> dict:
    return {"user_id": session.user.id, "token": session.access_token}


class _BodyModel(BaseModel):
    name: str
    age: int


@_test_router.post("/validated")
async def validated_route(body: _BodyModel) -> dict:
    return {"name": body.name}


@_test_router.get("/explode")
async def exploding_route() -> dict:
    raise RuntimeError("Something went terribly wrong")


@_test_router.get("/expired")
async def expired_route() -> dict:
    raise SessionExpiredError()


@_test_router.get("/invalid")
async def invalid_route() -> dict:
    raise ClientValidationError("Opción inválida.")


@_test_router.get("/upstream-4xx")
async def upstream_4xx_route() -> dict:
    raise ApiRequestError(409, "Ya existe")


@_test_router.get("/upstream-5xx")
async def upstream_5xx_route() -> dict:
    raise TransientApiError(503, "Mantenimiento")


@_test_router.get("/unreachable")
async def unreachable_route() -> dict:
    raise httpx.ConnectError("refused")


@_test_router.get("/misconfigured")
async def misconfigured_route() -> dict:
    raise ConfigError("Falta API_BASE_URL.")


app.include_router(_test_router)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    """GET /api/v1/health answers without any configuration."""

    @pytest.mark.asyncio
    async def test_health_returns_200(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/health")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_health_returns_api_response(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/health")
        body = resp.json()
        assert body["ok"] is True
        assert body["data"]["status"] == "healthy"
        assert body["error"] is None

    @pytest.mark.asyncio
    async def test_health_reports_api_configuration(self, app_client: httpx.AsyncClient) -> None:
        resp = await app_client.get("/api/v1/health")
        assert resp.json()["data"]["api_configured"] is True


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


class TestCORS:
    """CORS middleware: allows configured origins, blocks others."""

    @pytest.mark.asyncio
    async def test_allowed_origin_gets_cors_header(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.options(
                "/api/v1/health",
                headers={
                    "Origin": "http://localhost:3000",
                    "Access-Control-Request-Method": "GET",
                },
            )
        assert resp.headers.get("access-control-allow-origin") == "http://localhost:3000"

    @pytest.mark.asyncio
    async def test_disallowed_origin_no_cors_header(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.options(
                "/api/v1/health",
                headers={
                    "Origin": "http://evil.example.com",
                    "Access-Control-Request-Method": "GET",
                },
            )
        assert "access-control-allow-origin" not in resp.headers


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------


class TestAuthDependency:
    """get_current_session: bearer header, cookie fallback, validation."""

    @pytest.mark.asyncio
    async def test_valid_bearer_token(self, app_client: httpx.AsyncClient) -> None:
        resp = await app_client.get("/api/v1/test/protected")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "fake-user-1", "token": "token-1"}

    @pytest.mark.asyncio
    async def test_cookie_fallback(self, app_client: httpx.AsyncClient) -> None:
        resp = await app_client.get(
            "/api/v1/test/protected",
            headers={"Authorization": "", "Cookie": f"{SESSION_COOKIE}=cookie-token"},
        )
        assert resp.status_code == 200
        assert resp.json()["token"] == "cookie-token"

    @pytest.mark.asyncio
    async def test_missing_header_returns_401(self, app_client: httpx.AsyncClient) -> None:
        resp = await app_client.get("/api/v1/test/protected", headers={"Authorization": ""})
        assert resp.status_code == 401
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["Bearer ", "Basic abc123", "just-a-token"])
    async def test_malformed_header_returns_401(
        self, app_client: httpx.AsyncClient, header: str
    ) -> None:
        resp = await app_client.get("/api/v1/test/protected", headers={"Authorization": header})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_revoked_token_returns_401(self, app_client: httpx.AsyncClient, auth) -> None:
        await auth.sign_out("token-1")
        resp = await app_client.get("/api/v1/test/protected")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid or expired token."


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


class TestExceptionHandlers:
    """Global exception handling: consistent ApiResponse envelopes."""

    @pytest.mark.asyncio
    async def test_unhandled_exception_returns_500(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/explode")
        assert resp.status_code == 500
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert body["error"]["message"] == "An unexpected error occurred."

    @pytest.mark.asyncio
    async def test_unhandled_exception_no_traceback_in_body(
        self, client: httpx.AsyncClient
    ) -> None:
        async with client:
            resp = await client.get("/api/v1/test/explode")
        body_text = resp.text
        assert "RuntimeError" not in body_text
        assert "traceback" not in body_text.lower()
        assert "went terribly wrong" not in body_text

    @pytest.mark.asyncio
    async def test_validation_error_returns_422(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.post("/api/v1/test/validated", json={"name": "test"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_404_returns_api_response(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/nonexistent")
        assert resp.status_code == 404
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_session_expired_carries_redirect(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/expired")
        assert resp.status_code == 401
        body = resp.json()
        assert body["error"]["code"] == "SESSION_EXPIRED"
        assert body["data"] == {"redirect_to": "/auth"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path, status, code",
        [
            ("/api/v1/test/invalid", 422, "VALIDATION_ERROR"),
            ("/api/v1/test/upstream-4xx", 409, "UPSTREAM_REJECTED"),
            ("/api/v1/test/upstream-5xx", 502, "UPSTREAM_ERROR"),
            ("/api/v1/test/unreachable", 502, "UPSTREAM_UNREACHABLE"),
            ("/api/v1/test/misconfigured", 503, "CONFIG_ERROR"),
        ],
    )
    async def test_domain_errors_mapped(
        self, client: httpx.AsyncClient, path: str, status: int, code: str
    ) -> None:
        async with client:
            resp = await client.get(path)
        assert resp.status_code == status
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == code

    @pytest.mark.asyncio
    async def test_upstream_message_relayed(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/upstream-4xx")
        assert resp.json()["error"]["message"] == "Ya existe"


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------


class TestRequestLogging:
    """Request logging middleware: captures method, path, status, duration."""

    @pytest.mark.asyncio
    async def test_request_is_logged(
        self, client: httpx.AsyncClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="dailymir"):
            async with client:
                await client.get("/api/v1/health")

        log_messages = [r.message for r in caplog.records if r.name == "dailymir"]
        assert any("GET" in msg and "/api/v1/health" in msg and "200" in msg for msg in log_messages)

    @pytest.mark.asyncio
    async def test_query_string_not_logged(
        self, client: httpx.AsyncClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="dailymir"):
            async with client:
                await client.get("/api/v1/health?code=secret-code")

        log_messages = [r.message for r in caplog.records if r.name == "dailymir"]
        assert log_messages
        assert not any("secret-code" in msg for msg in log_messages)
