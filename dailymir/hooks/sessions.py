"""In-memory workspace store: the only WorkspaceStore implementation.

Dict-backed storage for each signed-in user's live controllers. The idle TTL
is enforced on read: get_workspace checks when the workspace was last used
and closes expired entries. No background sweeper; an idle workspace holds
no running tasks once its debouncers have fired.

TEAM: Workspaces own asyncio tasks and an open HTTP client, so they cannot
live in Redis. When running several workers, pin users to one (sticky
sessions) or accept that each worker rebuilds the workspace on first use.

Tier 2 service module: imports from dailymir.hooks.interfaces (Tier 1).

Usage:
    from dailymir.hooks.sessions import InMemoryWorkspaceStore

    store = InMemoryWorkspaceStore(idle_ttl_seconds=1800)
    await store.save_workspace("user-1", workspace)
    await store.get_workspace("user-1")  # None once idle for 30 minutes
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from dailymir.hooks.interfaces import WorkspaceStore

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TTL_SECONDS = 30 * 60


class InMemoryWorkspaceStore(WorkspaceStore):
    """Dict-backed workspace storage, lost on restart.

    Workspaces are keyed by auth user id. Each read touches the entry's idle
    timer; an entry idle for longer than the TTL is closed and dropped.
    """

    def __init__(
        self,
        idle_ttl_seconds: float = DEFAULT_IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialises an empty store.

        Args:
            idle_ttl_seconds: Seconds of inactivity before a workspace expires.
            clock: Monotonic time source (tests pass a fake one).
        """
        self._ttl = idle_ttl_seconds
        self._clock = clock
        self._workspaces: dict[str, tuple[Any, float]] = {}

    async def get_workspace(self, user_id: str) -> Any | None:
        """Retrieves a workspace, returning None if expired or missing.

        Args:
            user_id: The auth user id.

        Returns:
            The workspace if present and used within the TTL, None otherwise.
        """
        entry = self._workspaces.get(user_id)
        if entry is None:
            return None
        workspace, last_used = entry
        now = self._clock()
        if now - last_used > self._ttl:
            logger.info("Workspace for %s idle past TTL, closing", user_id)
            await self.delete_workspace(user_id)
            return None
        self._workspaces[user_id] = (workspace, now)
        return workspace

    async def save_workspace(self, user_id: str, workspace: Any) -> None:
        """Stores a workspace, closing any previous one for the same user.

        Args:
            user_id: The auth user id.
            workspace: The workspace to store.
        """
        previous = self._workspaces.get(user_id)
        self._workspaces[user_id] = (workspace, self._clock())
        if previous is not None and previous[0] is not workspace:
            await previous[0].aclose()

    async def delete_workspace(self, user_id: str) -> None:
        """Closes and removes a workspace. No-op if not found (idempotent).

        Args:
            user_id: The auth user id.
        """
        entry = self._workspaces.pop(user_id, None)
        if entry is not None:
            await entry[0].aclose()

    async def close_all(self) -> None:
        """Closes every workspace (app shutdown)."""
        for user_id in list(self._workspaces):
            await self.delete_workspace(user_id)
