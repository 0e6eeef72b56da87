"""Shared test fixtures for the dailymir test suite.

Factory-pattern fixtures that return callables accepting **overrides, plus a
scripted stand-in for the remote study API built on httpx.MockTransport.

Fixtures:
    fake_api: FakeApi with per-route scripted responses and a call log
    auth: FakeAuthClient for user "fake-user-1"
    make_client: Factory for AuthenticatedClient instances wired to fake_api
    make_question: Factory for raw daily-question records (API shape)
    make_profile_payload: Factory for raw GET /api/profile payloads
    app_client: httpx.AsyncClient on the FastAPI app, deps wired to fakes
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

import dailymir.config as config_module
from dailymir.api import deps
from dailymir.client import AuthenticatedClient, SessionAccessor
from dailymir.hooks.auth import FakeAuthClient
from dailymir.hooks.sessions import InMemoryWorkspaceStore

API_BASE = "http://api.test"
TOKEN = "token-1"

Reply = httpx.Response | Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


# ---------------------------------------------------------------------------
# Fake remote API
# ---------------------------------------------------------------------------


def reply(status: int = 200, body: Any = None, text: str | None = None) -> httpx.Response:
    """Builds a canned response: JSON by default, plain text when ``text`` is set."""
    if text is not None:
        return httpx.Response(status, text=text)
    return httpx.Response(status, json=body if body is not None else {})


class FakeApi:
    """Scripted remote API. Routes are keyed by (method, path).

    Each route holds a queue of replies; the last one repeats. Unscripted
    routes answer 404 with an error body. Every request is recorded.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[Reply]] = {}
        self.calls: list[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Reply) -> "FakeApi":
        self._routes[(method.upper(), path)] = list(replies)
        return self

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for request in self.calls
            if request.method == method.upper() and request.url.path == path
        )

    def bodies(self, method: str, path: str) -> list[Any]:
        return [
            json.loads(request.content) if request.content else None
            for request in self.calls
            if request.method == method.upper() and request.url.path == path
        ]

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return reply(404, {"error": f"no route {request.method} {request.url.path}"})
        step = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(step, httpx.Response):
            return httpx.Response(
                step.status_code, headers=step.headers, content=step.content
            )
        result = step(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


@pytest.fixture
def fake_api() -> FakeApi:
    """A fresh scripted remote API."""
    return FakeApi()


@pytest.fixture
def auth() -> FakeAuthClient:
    """The fake auth collaborator. Every token maps to user fake-user-1."""
    return FakeAuthClient()


@pytest_asyncio.fixture
async def make_client(fake_api, auth):
    """Returns a factory for AuthenticatedClient instances on fake_api.

    Clients are closed at teardown.
    """
    created: list[AuthenticatedClient] = []

    def _make(token: str = TOKEN, **overrides) -> AuthenticatedClient:
        accessor = SessionAccessor(overrides.pop("auth", auth), token)
        client = AuthenticatedClient(API_BASE, accessor, transport=fake_api.transport, **overrides)
        created.append(client)
        return client

    yield _make
    for client in created:
        await client.aclose()


# ---------------------------------------------------------------------------
# Payload factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_question():
    """Returns a factory for raw daily-question records.

    Defaults produce a valid four-option question. Override any field.
    """

    def _make(question_id: int | str = 1, **overrides) -> dict:
        data = {
            "id": question_id,
            "subject": "Cardiología",
            "statement": f"Pregunta {question_id}",
            "options": ["A", "B", "C", "D"],
            "correct_answer": 2,
            "explanation": "Porque sí.",
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def make_profile_payload():
    """Returns a factory for raw GET /api/profile payloads (snake_case)."""

    def _make(**overrides) -> dict:
        data = {
            "id": "fake-user-1",
            "email": "estudiante@example.com",
            "display_name": "Ana",
            "username": "ana.mir",
            "avatar_id": 3,
            "main_goal": "prepare_mir",
            "onboarding_completed": True,
            "must_update_display_name": False,
            "created_at": "2026-01-10T09:00:00Z",
        }
        data.update(overrides)
        return data

    return _make


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def app_client(monkeypatch: pytest.MonkeyPatch, fake_api, auth):
    """Async client on the FastAPI app with the remote API and auth faked.

    The workspace store is fresh per test and closed at teardown.
    """
    from dailymir.main import app

    monkeypatch.setenv("API_BASE_URL", API_BASE)
    monkeypatch.setattr(config_module, "_settings", None)
    store = InMemoryWorkspaceStore()
    monkeypatch.setattr(deps, "_workspace_store", store)
    monkeypatch.setattr(deps, "_api_transport", fake_api.transport)
    monkeypatch.setattr(deps, "_auth_client", None)
    monkeypatch.setattr(deps, "_unsubscribe_auth", None)
    deps.install_auth_client(auth)

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {TOKEN}"},
    ) as client:
        yield client

    await store.close_all()
    if deps._unsubscribe_auth is not None:
        deps._unsubscribe_auth()
