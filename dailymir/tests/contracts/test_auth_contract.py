"""Contract tests for AuthClient implementations.

Verifies that any AuthClient implementation satisfies the session, sign-out,
event and account-deletion contracts the BFF relies on:
- a token from exchange_code resolves to a Session until it is signed out
- sign_out never raises, even for a token that is already invalid
- listeners hear SIGNED_IN, SIGNED_OUT and USER_DELETED
- a deployment without the service-role credential raises ConfigError

Run against registered implementations:
    python -m pytest dailymir/tests/contracts/test_auth_contract.py -v
"""

import pytest

from dailymir.errors import ConfigError, SessionExpiredError
from dailymir.schemas import Session


class TestAuthContract:
    """Behavioral contract for AuthClient implementations."""

    # -- Sessions ----------------------------------------------------------

    @pytest.mark.asyncio
    async def test_exchanged_token_resolves(self, auth_client) -> None:
        """A token issued by exchange_code must resolve to the same user."""
        issued = await auth_client.exchange_code("contract")
        assert isinstance(issued, Session)
        assert issued.access_token

        session = await auth_client.get_session(issued.access_token)
        assert session is not None
        assert session.user.id == issued.user.id
        assert session.user.id

    @pytest.mark.asyncio
    async def test_empty_token_returns_none(self, auth_client) -> None:
        """Empty token must return None (missing auth)."""
        assert await auth_client.get_session("") is None

    @pytest.mark.asyncio
    async def test_empty_code_rejected(self, auth_client) -> None:
        """An empty callback code must raise SessionExpiredError."""
        with pytest.raises(SessionExpiredError):
            await auth_client.exchange_code("")

    # -- Sign-out ----------------------------------------------------------

    @pytest.mark.asyncio
    async def test_signed_out_token_stops_resolving(self, auth_client) -> None:
        issued = await auth_client.exchange_code("contract")
        await auth_client.sign_out(issued.access_token)
        assert await auth_client.get_session(issued.access_token) is None

    @pytest.mark.asyncio
    async def test_sign_out_twice_does_not_raise(self, auth_client) -> None:
        """Sign-out is the cleanup after a 401, so it must tolerate dead tokens."""
        issued = await auth_client.exchange_code("contract")
        await auth_client.sign_out(issued.access_token)
        await auth_client.sign_out(issued.access_token)

    # -- Events ------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_listeners_hear_sign_in_and_out(self, auth_client) -> None:
        events: list[str] = []
        auth_client.on_auth_state_change(lambda event, session: events.append(event))

        issued = await auth_client.exchange_code("contract")
        await auth_client.sign_out(issued.access_token)

        assert events == ["SIGNED_IN", "SIGNED_OUT"]

    @pytest.mark.asyncio
    async def test_async_listener_awaited(self, auth_client) -> None:
        seen: list[str | None] = []

        async def _listener(event, session) -> None:
            seen.append(session.user.id if session else None)

        auth_client.on_auth_state_change(_listener)
        issued = await auth_client.exchange_code("contract")
        assert seen == [issued.user.id]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_events(self, auth_client) -> None:
        events: list[str] = []
        unsubscribe = auth_client.on_auth_state_change(lambda event, session: events.append(event))
        unsubscribe()
        unsubscribe()
        await auth_client.exchange_code("contract")
        assert events == []

    # -- Redirect helpers --------------------------------------------------

    def test_oauth_url_names_provider(self, auth_client) -> None:
        url = auth_client.oauth_authorize_url("google", "http://app.test/auth/callback")
        assert "provider=google" in url
        assert "redirect_to=http%3A%2F%2Fapp.test%2Fauth%2Fcallback" in url

    @pytest.mark.asyncio
    async def test_password_reset_accepted(self, auth_client) -> None:
        await auth_client.send_password_reset("ana@example.com", "/auth/reset-password")

    # -- Account deletion --------------------------------------------------

    @pytest.mark.asyncio
    async def test_deleted_user_sessions_stop_resolving(self, auth_client) -> None:
        events: list[str] = []
        auth_client.on_auth_state_change(lambda event, session: events.append(event))
        issued = await auth_client.exchange_code("contract")

        await auth_client.admin_delete_user(issued.user.id)

        assert await auth_client.get_session(issued.access_token) is None
        assert events[-1] == "USER_DELETED"

    @pytest.mark.asyncio
    async def test_deletion_without_service_key(self, restricted_auth_client) -> None:
        """No service-role credential must raise ConfigError before any call."""
        issued = await restricted_auth_client.exchange_code("contract")
        with pytest.raises(ConfigError):
            await restricted_auth_client.admin_delete_user(issued.user.id)
        assert await restricted_auth_client.get_session(issued.access_token) is not None
