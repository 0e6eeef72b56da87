"""Hook interfaces: abstract base classes for all swappable services.

These ABCs define the contracts between the quiz/notification controllers
and the infrastructure layer. Each one has a stub implementation that lets
the BFF run end-to-end without real infrastructure, and (for auth) a
production implementation.

Tier 1 leaf module: imports only from abc, typing (stdlib) and
dailymir.schemas (also Tier 1). No project services, no orchestration.

TEAM: To implement a real service, subclass the relevant ABC and implement
every abstract method. Python will raise TypeError at instantiation if
any method is missing: you'll know immediately what's left to do.

Usage:
    from dailymir.hooks.interfaces import AuthClient, WorkspaceStore
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from dailymir.schemas import Session

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_DELETED"]
AuthStateCallback = Callable[[AuthEvent, Session | None], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Auth collaborator
# ---------------------------------------------------------------------------


class AuthClient(ABC):
    """The external auth collaborator (session issuance, refresh, sign-out).

    The BFF never decodes or refreshes tokens itself. It asks the AuthClient
    whether a bearer token still maps to a session and gets a Session back.

    TEAM: GoTrueAuthClient (hooks/gotrue.py) talks to a GoTrue-compatible
    auth server. FakeAuthClient (hooks/auth.py) accepts any non-empty token.
    """

    @abstractmethod
    async def get_session(self, access_token: str) -> Session | None:
        """Resolves a bearer token to the current session.

        Args:
            access_token: Bearer token from the browser.

        Returns:
            The Session if the token is valid, None otherwise.
        """
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """Invalidates the session behind a token.

        Must not raise for an already-invalid token: sign-out is used as the
        cleanup step after the API rejected the session.

        Args:
            access_token: Bearer token to revoke.
        """
        ...

    @abstractmethod
    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Subscribes to sign-in/sign-out events.

        Args:
            callback: Called with the event name and the session the event
                concerns (the ended session on SIGNED_OUT/USER_DELETED, None
                when unknown). May be sync or async.

        Returns:
            A callable that removes the subscription.
        """
        ...

    @abstractmethod
    def oauth_authorize_url(self, provider: str, redirect_to: str) -> str:
        """Builds the URL that starts an OAuth redirect flow.

        Args:
            provider: OAuth provider name (e.g. "google").
            redirect_to: Where the provider should send the user back.

        Returns:
            Absolute URL for the browser to navigate to.
        """
        ...

    @abstractmethod
    async def send_password_reset(self, email: str, redirect_to: str) -> None:
        """Dispatches a password-reset email.

        Args:
            email: Account email.
            redirect_to: Page the reset link should land on.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str = "") -> Session:
        """Exchanges an OAuth/magic-link callback code for a session.

        Args:
            code: The ?code= query value from the callback.
            code_verifier: PKCE verifier, when the flow used one.

        Returns:
            The new Session.

        Raises:
            SessionExpiredError: If the code is invalid or expired.
        """
        ...

    @abstractmethod
    async def admin_delete_user(self, user_id: str) -> None:
        """Deletes a user account with admin privileges.

        Requires a service-role credential. Only the account-deletion
        endpoint calls this.

        Args:
            user_id: The auth user id to delete.

        Raises:
            ConfigError: If no service-role credential is configured.
            ApiRequestError: If the auth server refuses the deletion.
        """
        ...


# ---------------------------------------------------------------------------
# Per-user controller storage (ephemeral, idle TTL)
# ---------------------------------------------------------------------------


class WorkspaceStore(ABC):
    """Ephemeral storage for each signed-in user's live controllers.

    A workspace bundles the quiz flow, results aggregator, notification feed
    and unread counter of one user. They hold asyncio tasks, so the store
    only makes sense in-process. The store enforces the idle TTL:
    get_workspace returns None for expired workspaces and closes them.

    TEAM: InMemoryWorkspaceStore (hooks/sessions.py) is the only
    implementation; pin users to a worker (sticky sessions) when scaling out.
    """

    @abstractmethod
    async def get_workspace(self, user_id: str) -> Any | None:
        """Retrieves a live workspace, touching its idle timer.

        Args:
            user_id: The auth user id.

        Returns:
            The workspace if present and not expired, None otherwise.
        """
        ...

    @abstractmethod
    async def save_workspace(self, user_id: str, workspace: Any) -> None:
        """Stores or replaces a user's workspace.

        Args:
            user_id: The auth user id.
            workspace: The workspace object (must provide async aclose()).
        """
        ...

    @abstractmethod
    async def delete_workspace(self, user_id: str) -> None:
        """Closes and removes a workspace. No-op if missing.

        Args:
            user_id: The auth user id.
        """
        ...
