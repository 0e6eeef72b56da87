"""Shared FastAPI dependencies: auth, workspace store, per-user workspace.

Module-level singletons for the auth collaborator and the workspace store.
Route handlers access them via FastAPI's Depends() system: never by
importing them directly. Swapping an implementation means changing the
assignment here; every downstream handler picks it up automatically.

The auth client is built lazily from settings on first use, so the app
starts (and /health answers) even when AUTH_URL is not configured yet.

TEAM: AUTH_BACKEND=fake selects FakeAuthClient for local development.
Tests call install_auth_client() and set _api_transport to a
httpx.MockTransport standing in for the remote study API.

Tier 3 orchestration module: imports from hooks/* (Tier 2), config (Tier 2),
workspace (Tier 3), schemas and errors (Tier 1).

Usage:
    from dailymir.api.deps import get_workspace

    @router.get("/something")
    async def do_thing(workspace: UserWorkspace = Depends(get_workspace)): ...
"""

import asyncio
import logging

import httpx
from fastapi import Cookie, Depends, Header, HTTPException

from dailymir.config import get_settings
from dailymir.errors import ConfigError
from dailymir.hooks.auth import FakeAuthClient
from dailymir.hooks.gotrue import GoTrueAuthClient
from dailymir.hooks.interfaces import AuthClient, AuthEvent, WorkspaceStore
from dailymir.hooks.sessions import InMemoryWorkspaceStore
from dailymir.schemas import ApiError, ApiResponse, Session
from dailymir.workspace import UserWorkspace

logger = logging.getLogger("dailymir")

# ---------------------------------------------------------------------------
# Service singletons: the swap point
# ---------------------------------------------------------------------------

_auth_client: AuthClient | None = None
_unsubscribe_auth = None  # Set to the auth client's unsubscribe callable
_workspace_store: WorkspaceStore = InMemoryWorkspaceStore()
_api_transport: httpx.AsyncBaseTransport | None = None
_background: set[asyncio.Task] = set()

SESSION_COOKIE = "dailymir-access-token"


def error_detail(code: str, message: str) -> dict:
    return ApiResponse(ok=False, error=ApiError(code=code, message=message)).model_dump()


def _build_auth_client() -> AuthClient:
    """Builds the configured auth backend.

    Raises:
        ConfigError: If the gotrue backend lacks AUTH_URL or AUTH_ANON_KEY.
    """
    settings = get_settings()
    if settings.auth_backend == "fake":
        return FakeAuthClient()
    return GoTrueAuthClient(
        base_url=settings.auth_url,
        anon_key=settings.auth_anon_key,
        service_role_key=settings.auth_service_role_key,
        timeout=settings.http_timeout_seconds,
    )


async def _on_auth_event(event: AuthEvent, session: Session | None) -> None:
    """Drops the workspace of a user who signed out or was deleted.

    The close runs as a background task: the event usually fires from inside
    a request that is still using the workspace.
    """
    if event not in ("SIGNED_OUT", "USER_DELETED") or session is None:
        return
    task = asyncio.ensure_future(_workspace_store.delete_workspace(session.user.id))
    _background.add(task)
    task.add_done_callback(_background.discard)


def install_auth_client(client: AuthClient) -> None:
    """Replaces the auth client and moves the sign-out subscription to it."""
    global _auth_client, _unsubscribe_auth
    if _unsubscribe_auth is not None:
        _unsubscribe_auth()
    _auth_client = client
    _unsubscribe_auth = client.on_auth_state_change(_on_auth_event)


# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def get_auth_client() -> AuthClient:
    """Returns the auth client singleton, building it on first use.

    Raises HTTPException(503) when the auth backend is not configured.
    """
    if _auth_client is None:
        try:
            install_auth_client(_build_auth_client())
        except ConfigError as exc:
            raise HTTPException(
                status_code=503,
                detail=error_detail("SERVICE_UNAVAILABLE", str(exc)),
            ) from exc
    return _auth_client


def get_workspace_store() -> WorkspaceStore:
    """Returns the workspace store singleton."""
    return _workspace_store


async def get_bearer_token(
    authorization: str | None = Header(default=None),
    session_cookie: str | None = Cookie(default=None, alias=SESSION_COOKIE),
) -> str:
    """Extracts the Bearer token from the Authorization header.

    Falls back to the session cookie set by the auth callback when the
    header is absent.

    Raises:
        HTTPException: 401 with ApiResponse envelope on a missing or
            malformed header.
    """
    if not authorization:
        if session_cookie:
            return session_cookie
        raise HTTPException(
            status_code=401,
            detail=error_detail("UNAUTHORIZED", "Missing authorization header."),
        )

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(
            status_code=401,
            detail=error_detail("UNAUTHORIZED", "Invalid authorization header format."),
        )
    return parts[1].strip()


async def get_current_session(
    token: str = Depends(get_bearer_token),
    auth: AuthClient = Depends(get_auth_client),
) -> Session:
    """Resolves the bearer token to a session via the auth collaborator.

    Raises:
        HTTPException: 401 when the token maps to no session.
    """
    session = await auth.get_session(token)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail=error_detail("UNAUTHORIZED", "Invalid or expired token."),
        )
    return session


async def get_workspace(
    session: Session = Depends(get_current_session),
    auth: AuthClient = Depends(get_auth_client),
    store: WorkspaceStore = Depends(get_workspace_store),
) -> UserWorkspace:
    """Returns the caller's live workspace, creating it on first use.

    Raises:
        HTTPException: 503 when API_BASE_URL is not configured.
    """
    workspace = await store.get_workspace(session.user.id)
    if workspace is not None:
        workspace.adopt_token(session.access_token)
        return workspace

    try:
        workspace = UserWorkspace.create(
            session.user.id,
            session.access_token,
            auth,
            get_settings(),
            transport=_api_transport,
        )
    except ConfigError as exc:
        raise HTTPException(
            status_code=503,
            detail=error_detail("CONFIG_ERROR", str(exc)),
        ) from exc
    await store.save_workspace(session.user.id, workspace)
    logger.info("Workspace created for %s", session.user.id)
    return workspace


async def shutdown() -> None:
    """Closes every live workspace and the auth client's HTTP pool."""
    global _auth_client, _unsubscribe_auth
    if _background:
        await asyncio.gather(*_background, return_exceptions=True)
    if isinstance(_workspace_store, InMemoryWorkspaceStore):
        await _workspace_store.close_all()
    if _unsubscribe_auth is not None:
        _unsubscribe_auth()
        _unsubscribe_auth = None
    if isinstance(_auth_client, GoTrueAuthClient):
        await _auth_client.aclose()
    _auth_client = None
