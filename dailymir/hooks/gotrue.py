"""GoTrue auth client: production AuthClient over the GoTrue REST API.

Talks to a GoTrue-compatible auth server (the one behind Supabase projects)
with httpx. Every request carries the project's anon key in the ``apikey``
header; user-scoped calls add ``Authorization: Bearer <token>``; the admin
deletion uses the service-role key instead.

Tier 2 service module: imports from dailymir.hooks.interfaces (Tier 1),
dailymir.schemas (Tier 1), dailymir.errors (Tier 1) + httpx.

Usage:
    from dailymir.hooks.gotrue import GoTrueAuthClient

    auth = GoTrueAuthClient(
        base_url=settings.auth_url,
        anon_key=settings.auth_anon_key,
        service_role_key=settings.auth_service_role_key,
    )
"""

import inspect
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

from dailymir.errors import ApiRequestError, ConfigError, SessionExpiredError
from dailymir.hooks.interfaces import AuthClient, AuthEvent, AuthStateCallback
from dailymir.schemas import Session, SessionUser

logger = logging.getLogger(__name__)

_AUTH_PREFIX = "/auth/v1"


def _session_from_token_payload(payload: dict[str, Any]) -> Session:
    """Builds a Session from a GoTrue /token response body."""
    user = payload.get("user") or {}
    expires_at = payload.get("expires_at")
    return Session(
        access_token=str(payload.get("access_token", "")),
        expires_at=(
            datetime.fromtimestamp(expires_at, tz=timezone.utc)
            if isinstance(expires_at, (int, float))
            else None
        ),
        user=SessionUser(id=str(user.get("id", "")), email=str(user.get("email") or "")),
    )


def _error_message(response: httpx.Response) -> str:
    """Extracts GoTrue's error text (msg, error_description, error, message)."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("msg", "error_description", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return response.text or f"Error ({response.status_code})"


class GoTrueAuthClient(AuthClient):
    """AuthClient backed by a GoTrue server.

    Args:
        base_url: Project URL (e.g. "https://xyz.supabase.co").
        anon_key: Public anon key sent as ``apikey``.
        service_role_key: Admin key for account deletion. Empty disables it.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        service_role_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        if not base_url or not anon_key:
            raise ConfigError("El servicio de autenticación no está configurado.")
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}{_AUTH_PREFIX}",
            headers={"apikey": anon_key},
            transport=transport,
            timeout=timeout,
        )
        self._listeners: list[AuthStateCallback] = []

    async def aclose(self) -> None:
        """Closes the underlying HTTP client."""
        await self._client.aclose()

    async def get_session(self, access_token: str) -> Session | None:
        """Validates the token with GET /user. 401/403 map to None."""
        if not access_token:
            return None
        response = await self._client.get(
            "/user", headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.status_code in (401, 403):
            return None
        if response.is_error:
            raise ApiRequestError(response.status_code, _error_message(response))
        user = response.json()
        return Session(
            access_token=access_token,
            user=SessionUser(id=str(user.get("id", "")), email=str(user.get("email") or "")),
        )

    async def sign_out(self, access_token: str) -> None:
        """POST /logout. Failures are logged, never raised."""
        session = None
        try:
            session = await self.get_session(access_token)
            response = await self._client.post(
                "/logout", headers={"Authorization": f"Bearer {access_token}"}
            )
            if response.is_error and response.status_code not in (401, 403):
                logger.warning("GoTrue logout returned %d", response.status_code)
        except httpx.HTTPError:
            logger.warning("GoTrue logout failed", exc_info=True)
        await self._emit("SIGNED_OUT", session)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Registers a listener; returns its unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def oauth_authorize_url(self, provider: str, redirect_to: str) -> str:
        """Builds GET /authorize?provider=...&redirect_to=..."""
        query = urlencode({"provider": provider, "redirect_to": redirect_to})
        return f"{self._base_url}{_AUTH_PREFIX}/authorize?{query}"

    async def send_password_reset(self, email: str, redirect_to: str) -> None:
        """POST /recover with the redirect target as query parameter."""
        response = await self._client.post(
            "/recover",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )
        if response.is_error:
            raise ApiRequestError(response.status_code, _error_message(response))

    async def exchange_code(self, code: str, code_verifier: str = "") -> Session:
        """POST /token?grant_type=pkce. Rejected codes raise SessionExpiredError."""
        if not code:
            raise SessionExpiredError("Código de acceso inválido.")
        response = await self._client.post(
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": code_verifier},
        )
        if response.status_code in (400, 401, 403, 404):
            raise SessionExpiredError(_error_message(response))
        if response.is_error:
            raise ApiRequestError(response.status_code, _error_message(response))
        session = _session_from_token_payload(response.json())
        await self._emit("SIGNED_IN", session)
        return session

    async def admin_delete_user(self, user_id: str) -> None:
        """DELETE /admin/users/{id} with the service-role key."""
        if not self._service_role_key:
            raise ConfigError("Falta AUTH_SERVICE_ROLE_KEY.")
        response = await self._client.delete(
            f"/admin/users/{user_id}",
            headers={
                "apikey": self._service_role_key,
                "Authorization": f"Bearer {self._service_role_key}",
            },
        )
        if response.is_error:
            raise ApiRequestError(response.status_code, _error_message(response))
        await self._emit(
            "USER_DELETED",
            Session(access_token="", user=SessionUser(id=user_id)),
        )

    async def _emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            result = listener(event, session)
            if inspect.isawaitable(result):
                await result
