"""Fake auth client: development stub for AuthClient.

Accepts any non-empty token and returns a configurable test session. Empty
or signed-out tokens return None (simulates a missing/invalid session).

TEAM: Production uses GoTrueAuthClient from dailymir.hooks.gotrue. Select
it with AUTH_BACKEND=gotrue (the default).

Tier 2 service module: imports from dailymir.hooks.interfaces (Tier 1)
and dailymir.schemas (Tier 1).

Usage:
    from dailymir.hooks.auth import FakeAuthClient

    auth = FakeAuthClient()                       # user "fake-user-1"
    auth = FakeAuthClient(user_id="student-42")   # custom user id
"""

import inspect
import logging
from collections.abc import Callable
from urllib.parse import urlencode

from dailymir.errors import ConfigError, SessionExpiredError
from dailymir.hooks.interfaces import AuthClient, AuthEvent, AuthStateCallback
from dailymir.schemas import Session, SessionUser

logger = logging.getLogger(__name__)

_DEFAULT_EMAIL = "estudiante@example.com"


class FakeAuthClient(AuthClient):
    """STUB: returns a test session for any non-empty token.

    Does not perform real authentication. Tokens passed to sign_out are
    remembered and rejected afterwards, so the 401 → sign-out → redirect path
    can be exercised locally. Deleted users are rejected the same way.

    TEAM: Replace with GoTrueAuthClient or your own AuthClient.
    """

    def __init__(
        self,
        user_id: str = "fake-user-1",
        email: str = _DEFAULT_EMAIL,
        can_delete_users: bool = True,
    ) -> None:
        """Initialises the fake auth client.

        Args:
            user_id: The id of the user every valid token maps to.
            email: The email of that user.
            can_delete_users: False simulates a missing service-role key.
        """
        self._user = SessionUser(id=user_id, email=email)
        self._can_delete_users = can_delete_users
        self._revoked: set[str] = set()
        self._deleted: set[str] = set()
        self._listeners: list[AuthStateCallback] = []
        self.password_resets: list[tuple[str, str]] = []

    async def get_session(self, access_token: str) -> Session | None:
        """Returns a test session for any non-empty, non-revoked token."""
        if not access_token or access_token in self._revoked:
            return None
        if self._user.id in self._deleted:
            return None
        return Session(access_token=access_token, user=self._user)

    async def sign_out(self, access_token: str) -> None:
        """Revokes the token and notifies listeners. Idempotent."""
        if access_token in self._revoked:
            return
        session = await self.get_session(access_token)
        self._revoked.add(access_token)
        await self._emit("SIGNED_OUT", session)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Registers a listener; returns its unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def oauth_authorize_url(self, provider: str, redirect_to: str) -> str:
        """Returns a local URL that stands in for the provider's consent page."""
        query = urlencode({"provider": provider, "redirect_to": redirect_to})
        return f"/auth/fake-authorize?{query}"

    async def send_password_reset(self, email: str, redirect_to: str) -> None:
        """Records the request instead of sending an email."""
        self.password_resets.append((email, redirect_to))

    async def exchange_code(self, code: str, code_verifier: str = "") -> Session:
        """Turns any non-empty code into a session whose token is the code."""
        if not code:
            raise SessionExpiredError("Código de acceso inválido.")
        session = Session(access_token=f"fake-token-{code}", user=self._user)
        await self._emit("SIGNED_IN", session)
        return session

    async def admin_delete_user(self, user_id: str) -> None:
        """Marks the user as deleted; their tokens stop resolving."""
        if not self._can_delete_users:
            raise ConfigError("Falta AUTH_SERVICE_ROLE_KEY.")
        self._deleted.add(user_id)
        await self._emit(
            "USER_DELETED",
            Session(access_token="", user=SessionUser(id=user_id)),
        )

    async def _emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            result = listener(event, session)
            if inspect.isawaitable(result):
                await result
