"""Authenticated access to the remote study API.

Two layers:
- SessionAccessor: wraps the auth collaborator for one user. Exposes the
  current bearer token and the "sign out on invalid session" step.
- AuthenticatedClient: an httpx.AsyncClient that decorates every request
  with ``Authorization: Bearer <token>``. A 401 from the API signs the user
  out, records the redirect to the login view and raises
  SessionExpiredError.

Payload helpers (read_payload, error_message, raise_for_status) implement the
error-text precedence every caller relies on: ``error`` → ``message`` → raw
text → caller fallback.

Tier 2 service module: imports from hooks/interfaces, schemas, errors + httpx.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from dailymir.errors import (
    LOGIN_PATH,
    ApiRequestError,
    SessionExpiredError,
    TransientApiError,
)
from dailymir.hooks.interfaces import AuthClient
from dailymir.schemas import Session

logger = logging.getLogger(__name__)

_NO_SESSION_MESSAGE = "No hay sesion activa."


# ---------------------------------------------------------------------------
# Session accessor
# ---------------------------------------------------------------------------


class SessionAccessor:
    """Read-only view of one user's session, backed by the auth collaborator.

    The token is replaced (update_token) whenever the browser presents a
    newer one; only the auth collaborator ever mutates the session itself.

    Args:
        auth: The auth collaborator.
        access_token: The bearer token currently presented by the browser.
        on_redirect: Called with the login path after the session is dropped.
    """

    def __init__(
        self,
        auth: AuthClient,
        access_token: str = "",
        on_redirect: Callable[[str], None] | None = None,
    ) -> None:
        self._auth = auth
        self._token = access_token
        self._session: Session | None = None
        self._on_redirect = on_redirect
        self.redirect_to: str | None = None

    @property
    def access_token(self) -> str:
        return self._token

    def update_token(self, access_token: str) -> None:
        """Adopts a newer token. Clears the cached session if it changed."""
        if access_token != self._token:
            self._token = access_token
            self._session = None
            self.redirect_to = None

    async def get_session(self) -> Session | None:
        """Returns the current session, or None when there is none."""
        if self._session is not None and self._session.access_token == self._token:
            return self._session
        if not self._token:
            return None
        self._session = await self._auth.get_session(self._token)
        return self._session

    async def require_token(self) -> str:
        """Returns a usable bearer token or drops the session.

        Raises:
            SessionExpiredError: If no valid session exists.
        """
        session = await self.get_session()
        if session is None:
            await self.invalidate()
            raise SessionExpiredError(_NO_SESSION_MESSAGE)
        return session.access_token

    async def invalidate(self) -> None:
        """Signs out and schedules the redirect to the login view."""
        if self._token:
            await self._auth.sign_out(self._token)
        self._session = None
        self.redirect_to = LOGIN_PATH
        if self._on_redirect is not None:
            self._on_redirect(LOGIN_PATH)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def read_payload(response: httpx.Response) -> Any:
    """Decodes a response body: JSON when declared (None if malformed), else text."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return None
    return response.text


def error_message(payload: Any, fallback: str) -> str:
    """Picks the user-facing error text out of an error payload."""
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return fallback
    if isinstance(payload, str) and payload.strip():
        return payload
    return fallback


def raise_for_status(response: httpx.Response, fallback: str | None = None) -> Any:
    """Returns the decoded payload of a 2xx response, raises otherwise.

    Args:
        response: The API response.
        fallback: Message used when the server gives none. Defaults to
            "Error (<status>)".

    Returns:
        The decoded payload (dict/list for JSON, str otherwise).

    Raises:
        TransientApiError: For 5xx answers.
        ApiRequestError: For any other non-2xx answer.
    """
    payload = read_payload(response)
    if response.is_success:
        return payload
    message = error_message(payload, fallback or f"Error ({response.status_code})")
    if response.status_code >= 500:
        raise TransientApiError(response.status_code, message, payload)
    raise ApiRequestError(response.status_code, message, payload)


# ---------------------------------------------------------------------------
# Authenticated client
# ---------------------------------------------------------------------------


class AuthenticatedClient:
    """Bearer-decorated httpx client for the remote study API.

    Args:
        base_url: API base URL (from Settings.require_api_base_url()).
        accessor: The user's session accessor.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        accessor: SessionAccessor,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.accessor = accessor
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        """Closes the underlying HTTP client."""
        await self._http.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Sends one authenticated request.

        The response is returned whatever its status, except 401, which
        drops the session.

        Raises:
            SessionExpiredError: If there is no session or the API answered 401.
            httpx.TransportError: On network failures.
        """
        token = await self.accessor.require_token()
        response = await self._http.request(
            method,
            path,
            json=json,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 401:
            logger.info("API rejected the session on %s %s", method, path)
            await self.accessor.invalidate()
            raise SessionExpiredError()
        return response

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None) -> httpx.Response:
        return await self.request("POST", path, json=json)

    async def fetch_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        fallback: str | None = None,
    ) -> Any:
        """Sends a request and returns the 2xx payload (see raise_for_status)."""
        response = await self.request(method, path, json=json, params=params)
        return raise_for_status(response, fallback)

    async def fetch_with_retry(
        self,
        method: str,
        path: str,
        *,
        retries: int,
        backoff_seconds: float,
        json: Any = None,
        params: dict[str, Any] | None = None,
        fallback: str | None = None,
    ) -> Any:
        """fetch_json with a fixed linear backoff between attempts.

        Attempt n (0-based) that fails sleeps ``backoff_seconds * (n + 1)``
        before the next one, for at most ``retries`` extra attempts. Session
        expiry and cancellation are never retried. The last error propagates.
        """
        for attempt in range(retries + 1):
            try:
                return await self.fetch_json(
                    method, path, json=json, params=params, fallback=fallback
                )
            except (ApiRequestError, httpx.TransportError) as exc:
                if attempt >= retries:
                    raise
                delay = backoff_seconds * (attempt + 1)
                logger.warning(
                    "%s %s failed (%s), retry %d/%d in %.2fs",
                    method,
                    path,
                    exc,
                    attempt + 1,
                    retries,
                    delay,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")
