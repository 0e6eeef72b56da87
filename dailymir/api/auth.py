"""Auth routes: OAuth start, callback code exchange, password reset.

Mounted at the root (not under /api/v1) because the auth server redirects
the browser to /auth/callback directly.

Callback behaviour:
- ``app_origin`` naming a localhost host other than the current one
  bounces the whole callback there, query string intact. Lets a deployed
  auth redirect land on a developer's local server.
- No code → back to the login page.
- A valid code → session cookie set, redirect to /dashboard.
- A rejected code → back to the login page.
"""

import logging
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from dailymir.api.deps import SESSION_COOKIE, get_auth_client
from dailymir.config import get_settings
from dailymir.errors import LOGIN_PATH, ApiRequestError, SessionExpiredError
from dailymir.hooks.interfaces import AuthClient
from dailymir.profile.onboarding import DASHBOARD_PATH
from dailymir.schemas import ApiResponse

logger = logging.getLogger(__name__)

router = APIRouter()

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


class PasswordResetRequest(BaseModel):
    email: str
    redirect_to: str = "/auth/reset-password"


def is_localhost_origin(origin: str) -> bool:
    """True for an absolute URL whose host is localhost or 127.0.0.1."""
    try:
        return urlsplit(origin).hostname in _LOCAL_HOSTS
    except ValueError:
        return False


def local_callback_url(request: Request, app_origin: str | None) -> str | None:
    """The URL to bounce the callback to, or None to handle it here."""
    if not app_origin or not is_localhost_origin(app_origin):
        return None
    if urlsplit(app_origin).hostname == request.url.hostname:
        return None
    parts = urlsplit(app_origin)
    query = urlencode(list(request.query_params.multi_items()))
    return f"{parts.scheme}://{parts.netloc}/auth/callback?{query}"


@router.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    app_origin: str | None = None,
    auth: AuthClient = Depends(get_auth_client),
) -> RedirectResponse:
    bounce = local_callback_url(request, app_origin)
    if bounce is not None:
        return RedirectResponse(bounce, status_code=307)

    if not code:
        return RedirectResponse(LOGIN_PATH, status_code=307)

    try:
        session = await auth.exchange_code(code)
    except SessionExpiredError as exc:
        logger.info("Callback code rejected: %s", exc.message)
        return RedirectResponse(LOGIN_PATH, status_code=307)

    response = RedirectResponse(DASHBOARD_PATH, status_code=307)
    response.set_cookie(
        SESSION_COOKIE,
        session.access_token,
        httponly=True,
        samesite="lax",
        secure=get_settings().app_env == "production",
    )
    return response


@router.get("/auth/oauth/{provider}")
async def oauth_start(
    provider: str,
    request: Request,
    auth: AuthClient = Depends(get_auth_client),
) -> RedirectResponse:
    """Sends the browser to the provider's consent page."""
    redirect_to = str(request.url_for("auth_callback"))
    return RedirectResponse(auth.oauth_authorize_url(provider, redirect_to), status_code=307)


@router.post("/auth/password-reset")
async def password_reset(
    body: PasswordResetRequest,
    auth: AuthClient = Depends(get_auth_client),
) -> dict:
    """Requests a reset email. Always answers ok so emails cannot be probed."""
    try:
        await auth.send_password_reset(body.email.strip(), body.redirect_to)
    except ApiRequestError as exc:
        logger.warning("Password reset refused (%s): %s", exc.status_code, exc.message)
    return ApiResponse(ok=True, data={"sent": True}).model_dump()


@router.post("/auth/sign-out")
async def sign_out(
    request: Request,
    response: Response,
    auth: AuthClient = Depends(get_auth_client),
) -> dict:
    """Revokes the cookie session (if any) and clears the cookie."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        await auth.sign_out(token)
    response.delete_cookie(SESSION_COOKIE)
    return ApiResponse(ok=True, data={"redirect_to": LOGIN_PATH}).model_dump()
