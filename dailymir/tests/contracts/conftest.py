"""Fixtures for contract tests: one parameterized fixture per hook interface.

Each fixture yields a fresh implementation instance. The auth contract runs
against the stub and against GoTrueAuthClient talking to an in-memory GoTrue
server (httpx.MockTransport). The workspace store has a single in-memory
implementation.

TEAM: To test your implementation against the contracts:
    1. Add your param string (e.g., "keycloak") to the params list.
    2. Add an elif branch that yields your implementation instance.
    3. Run: python -m pytest dailymir/tests/contracts/ -v
    All tests should pass. If any fail, your implementation doesn't satisfy
    the contract: read the failing test's docstring for what's expected.

Uses @pytest_asyncio.fixture (not @pytest.fixture) for async fixture support
in strict mode.
"""

import json
import secrets

import httpx
import pytest
import pytest_asyncio

from dailymir.hooks.auth import FakeAuthClient
from dailymir.hooks.gotrue import GoTrueAuthClient
from dailymir.hooks.sessions import InMemoryWorkspaceStore

GOTRUE_URL = "http://gotrue.test"
ANON_KEY = "anon-key"
SERVICE_KEY = "service-key"
IDLE_TTL = 60.0


# ---------------------------------------------------------------------------
# In-memory GoTrue server
# ---------------------------------------------------------------------------


class FakeGoTrueServer:
    """Minimal GoTrue: PKCE code exchange, /user, /logout, /recover, admin delete."""

    def __init__(self) -> None:
        self.tokens: dict[str, str] = {}
        self.deleted: set[str] = set()
        self.recover_requests: list[str] = []

    def _user_for(self, request: httpx.Request) -> str | None:
        header = request.headers.get("Authorization", "")
        token = header.removeprefix("Bearer ")
        user_id = self.tokens.get(token)
        if user_id is None or user_id in self.deleted:
            return None
        return user_id

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("apikey") not in (ANON_KEY, SERVICE_KEY):
            return httpx.Response(401, json={"msg": "Invalid API key"})
        path = request.url.path.removeprefix("/auth/v1")

        if path == "/token" and request.method == "POST":
            code = json.loads(request.content).get("auth_code", "")
            if code.startswith("expired"):
                return httpx.Response(400, json={"error_description": "invalid grant"})
            token = f"gt-{secrets.token_hex(8)}"
            user_id = f"user-{code}"
            self.tokens[token] = user_id
            return httpx.Response(
                200,
                json={
                    "access_token": token,
                    "expires_at": 1_900_000_000,
                    "user": {"id": user_id, "email": f"{code}@example.com"},
                },
            )
        if path == "/user":
            user_id = self._user_for(request)
            if user_id is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json={"id": user_id, "email": f"{user_id}@example.com"})
        if path == "/logout":
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if self.tokens.pop(token, None) is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(204)
        if path == "/recover":
            self.recover_requests.append(json.loads(request.content)["email"])
            return httpx.Response(200, json={})
        if path.startswith("/admin/users/") and request.method == "DELETE":
            if request.headers.get("apikey") != SERVICE_KEY:
                return httpx.Response(403, json={"msg": "not admin"})
            self.deleted.add(path.rsplit("/", 1)[-1])
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"msg": "not found"})


def _gotrue(service_role_key: str = SERVICE_KEY) -> GoTrueAuthClient:
    server = FakeGoTrueServer()
    return GoTrueAuthClient(
        GOTRUE_URL,
        ANON_KEY,
        service_role_key=service_role_key,
        transport=httpx.MockTransport(server.handle),
    )


# ---------------------------------------------------------------------------
# Interface fixtures (parameterized per implementation)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(params=["stub", "gotrue"])
async def auth_client(request):
    """Yields an AuthClient implementation with admin deletion enabled.

    TEAM: Add your auth provider here:
        @pytest_asyncio.fixture(params=["stub", "gotrue", "keycloak"])
        async def auth_client(request):
            ...
            elif request.param == "keycloak":
                yield YourKeycloakClient(test_config)
    """
    if request.param == "stub":
        yield FakeAuthClient()
    elif request.param == "gotrue":
        client = _gotrue()
        yield client
        await client.aclose()


@pytest_asyncio.fixture(params=["stub", "gotrue"])
async def restricted_auth_client(request):
    """Yields an AuthClient deployed without the service-role credential."""
    if request.param == "stub":
        yield FakeAuthClient(can_delete_users=False)
    elif request.param == "gotrue":
        client = _gotrue(service_role_key="")
        yield client
        await client.aclose()


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(params=["memory"])
async def workspace_store(request, clock):
    """Yields a WorkspaceStore whose idle TTL is IDLE_TTL seconds on ``clock``."""
    if request.param == "memory":
        store = InMemoryWorkspaceStore(idle_ttl_seconds=IDLE_TTL, clock=clock)
        yield store
        await store.close_all()


# ---------------------------------------------------------------------------
# Helper fixtures (shared test data)
# ---------------------------------------------------------------------------


class RecordingWorkspace:
    """Stands in for a UserWorkspace; counts aclose() calls."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.closed = 0

    async def aclose(self) -> None:
        self.closed += 1


@pytest.fixture
def make_workspace():
    """Returns a factory for RecordingWorkspace instances."""

    def _make(name: str = "ws") -> RecordingWorkspace:
        return RecordingWorkspace(name)

    return _make
