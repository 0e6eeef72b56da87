"""FastAPI application: entry point, middleware, and health endpoint.

Creates the dailymir BFF with:
- API versioning via router prefix (/api/v1/)
- CORS middleware (origins from settings)
- Request logging middleware (raw ASGI, no response body buffering)
- Global exception handlers (HTTPException, validation, domain errors,
  catch-all)
- Health endpoint
- Auth callback routes at the root (/auth/...)

Run with: uvicorn dailymir.main:app --reload

Tier 3 orchestration module: imports from config (Tier 2), deps (Tier 3),
errors and schemas (Tier 1).
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from dailymir.config import get_settings
from dailymir.errors import (
    ApiRequestError,
    ClientValidationError,
    ConfigError,
    SessionExpiredError,
)
from dailymir.schemas import ApiError, ApiResponse

logger = logging.getLogger("dailymir")


# ---------------------------------------------------------------------------
# Request logging middleware (raw ASGI)
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware:
    """Logs method, path, status code, and duration for every request.

    Uses raw ASGI to avoid response body buffering. Does NOT log
    request/response bodies, query params (the auth callback carries a
    one-time code), auth headers, or client IPs.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Wraps the ASGI call to measure timing and capture status code."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "?")
        path = scope.get("path", "?")
        start = time.monotonic()
        status_code = 0

        async def logging_send(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
            await send(message)

        try:
            await self.app(scope, receive, logging_send)
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "%s %s %d %.1fms", method, path, status_code, duration_ms
            )


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(
            ok=False,
            data=data,
            error=ApiError(code=code, message=message),
        ).model_dump(),
    )


def _http_exception_response(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wraps HTTPException in ApiResponse envelope.

    If the detail is already an ApiResponse dict (from deps.py auth),
    returns it directly. Otherwise wraps in a generic error.
    """
    if isinstance(exc.detail, dict) and "ok" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return _error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


def _validation_error_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Wraps Pydantic validation errors in ApiResponse envelope.

    Returns a human-readable summary without leaking internal details.
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = " -> ".join(str(part) for part in first.get("loc", []))
        msg = first.get("msg", "Validation error")
        detail = f"{loc}: {msg}" if loc else msg
    else:
        detail = "Request validation failed."
    return _error_response(422, "VALIDATION_ERROR", detail)


def _session_expired_response(request: Request, exc: SessionExpiredError) -> JSONResponse:
    """401 carrying the login redirect. The session was already signed out."""
    return _error_response(
        401, "SESSION_EXPIRED", exc.message, data={"redirect_to": exc.redirect_to}
    )


def _client_validation_response(request: Request, exc: ClientValidationError) -> JSONResponse:
    return _error_response(422, "VALIDATION_ERROR", exc.message)


def _api_request_error_response(request: Request, exc: ApiRequestError) -> JSONResponse:
    """Relays upstream 4xx as-is; upstream 5xx becomes a 502."""
    if 400 <= exc.status_code < 500:
        return _error_response(exc.status_code, "UPSTREAM_REJECTED", exc.message)
    logger.warning("Upstream error %d on %s: %s", exc.status_code, request.url.path, exc.message)
    return _error_response(502, "UPSTREAM_ERROR", exc.message)


def _transport_error_response(request: Request, exc: httpx.TransportError) -> JSONResponse:
    logger.warning("Upstream unreachable on %s: %s", request.url.path, exc)
    return _error_response(502, "UPSTREAM_UNREACHABLE", "No se pudo contactar con el servidor.")


def _config_error_response(request: Request, exc: ConfigError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return _error_response(503, "CONFIG_ERROR", str(exc))


def _unhandled_exception_response(request: Request, exc: Exception) -> JSONResponse:
    """Catches all unhandled exceptions: never leaks internals to client.

    Logs the full traceback server-side. Returns a generic 500 response.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# App creation
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Closes every user workspace and the auth client on shutdown."""
    from dailymir.api import deps

    yield
    await deps.shutdown()


def create_app() -> FastAPI:
    """Creates and configures the FastAPI application."""
    settings = get_settings()

    # Configure logging level
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    if not settings.api_base_url:
        logger.warning("API_BASE_URL is not set; authenticated endpoints will answer 503.")

    application = FastAPI(
        title="dailymir",
        description="Backend-for-frontend for the MIR daily quiz study app",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --

    # CORS: must be outermost to handle preflight before auth
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_middleware(RequestLoggingMiddleware)

    # -- Exception handlers --
    application.add_exception_handler(StarletteHTTPException, _http_exception_response)
    application.add_exception_handler(RequestValidationError, _validation_error_response)
    application.add_exception_handler(SessionExpiredError, _session_expired_response)
    application.add_exception_handler(ClientValidationError, _client_validation_response)
    application.add_exception_handler(ApiRequestError, _api_request_error_response)
    application.add_exception_handler(httpx.TransportError, _transport_error_response)
    application.add_exception_handler(ConfigError, _config_error_response)
    application.add_exception_handler(Exception, _unhandled_exception_response)

    # -- Routers --
    _register_routes(application)

    return application


def _register_routes(application: FastAPI) -> None:
    """Registers all API routers on the application."""
    v1 = APIRouter(prefix="/api/v1")

    @v1.get("/health")
    async def health() -> dict[str, Any]:
        return ApiResponse(
            ok=True,
            data={"status": "healthy", "api_configured": bool(get_settings().api_base_url)},
        ).model_dump()

    # Sub-routers (BEFORE including v1 into the app):
    from dailymir.api.daily import router as daily_router

    v1.include_router(daily_router, prefix="/daily", tags=["daily"])

    from dailymir.api.notifications import router as notifications_router

    v1.include_router(notifications_router, prefix="/notifications", tags=["notifications"])

    from dailymir.api.profile import router as profile_router

    v1.include_router(profile_router, prefix="/profile", tags=["profile"])

    from dailymir.api.stats import router as stats_router

    v1.include_router(stats_router, prefix="/stats", tags=["stats"])

    from dailymir.api.studio import router as studio_router

    v1.include_router(studio_router, prefix="/studio", tags=["studio"])

    from dailymir.api.account import router as account_router

    v1.include_router(account_router, prefix="/account", tags=["account"])

    application.include_router(v1)

    from dailymir.api.auth import router as auth_router

    application.include_router(auth_router, tags=["auth"])


app = create_app()
