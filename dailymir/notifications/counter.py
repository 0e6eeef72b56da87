"""UnreadCounter: the single per-user owner of the unread-notification badge.

Every view reads the same counter and asks it to refresh; nothing polls on
its own. refresh(debounced=True) waits 0.22 s of quiet before hitting
GET /api/notifications/unread-count; refresh() goes immediately. A newer
fetch cancels the one in flight. Failures keep the last known value.
"""

import logging

import httpx

from dailymir.errors import ApiRequestError, SessionExpiredError
from dailymir.notifications.api import NotificationsApi
from dailymir.scheduling import Debouncer, LatestTask

logger = logging.getLogger(__name__)

UNREAD_DEBOUNCE_SECONDS = 0.22


class UnreadCounter:
    def __init__(self, api: NotificationsApi, debounce: float = UNREAD_DEBOUNCE_SECONDS) -> None:
        self._api = api
        self._debouncer = Debouncer(debounce, "unread count refresh")
        self._fetch = LatestTask("unread count")
        self.value = 0
        self.loading = False

    def refresh(self, *, debounced: bool = False) -> None:
        """Schedules a refresh from the server (background task)."""
        if debounced:
            self._debouncer.schedule(self.refresh_now)
            return
        self._debouncer.schedule(self.refresh_now, delay=0)

    async def refresh_now(self) -> None:
        """Fetches the count and waits for it. Errors keep the last value."""
        await self._fetch.run(self._load)

    async def _load(self) -> None:
        self.loading = True
        try:
            self.value = await self._api.unread_count()
        except (ApiRequestError, SessionExpiredError, httpx.TransportError) as exc:
            logger.info("Unread count refresh failed, keeping %d: %s", self.value, exc)
        finally:
            self.loading = False

    def decrement(self) -> None:
        self.value = max(0, self.value - 1)

    def clear(self) -> None:
        self.value = 0

    @property
    def pending(self) -> bool:
        return self._debouncer.pending or self._fetch.running

    async def settle(self) -> None:
        """Waits for a scheduled refresh to finish."""
        await self._debouncer.flush()

    async def aclose(self) -> None:
        await self._debouncer.close()
        await self._fetch.close()
