"""NotificationFeed: paginated, filterable notification list for one user.

First page replaces the list, load_more() appends using the cursor. Filter
changes and mounts refetch after a 0.18 s debounce; a new first-page fetch
cancels the one in flight. Read-state changes are optimistic and modelled
as an OptimisticUpdate: apply() the change, then commit() or rollback() with
the inverse change.

The feed shares the user's UnreadCounter and keeps it in step:
single read ok → decrement + debounced refresh; mark-all ok on all/unread →
clear; anything failed → immediate refresh from the server.

An expired session is never turned into feed text: it propagates to the
caller, from settle() when the debounced fetch hit it.
"""

import logging

import httpx

from dailymir.errors import ApiRequestError, SessionExpiredError
from dailymir.notifications.api import DEFAULT_PAGE_SIZE, NotificationsApi
from dailymir.notifications.counter import UnreadCounter
from dailymir.optimistic import OptimisticUpdate
from dailymir.scheduling import Debouncer, LatestTask
from dailymir.schemas import NotificationFilter, NotificationItem

logger = logging.getLogger(__name__)

FEED_DEBOUNCE_SECONDS = 0.18
LOAD_ERROR = "No se pudieron cargar notificaciones."
LOAD_MORE_ERROR = "No se pudieron cargar mas notificaciones."

_FAILURES = (ApiRequestError, httpx.TransportError)


def _with_unread(
    items: list[NotificationItem], ids: set[str] | None, unread: bool
) -> list[NotificationItem]:
    """Copies ``items`` with the matching ones (all when ids is None) flipped."""
    return [
        item.model_copy(update={"unread": unread})
        if item.unread != unread and (ids is None or item.id in ids)
        else item
        for item in items
    ]


class NotificationFeed:
    """One user's notification list.

    Args:
        api: Notification endpoints.
        counter: The user's shared unread counter.
        limit: Page size.
        debounce: Seconds of quiet before a first-page refetch.
    """

    def __init__(
        self,
        api: NotificationsApi,
        counter: UnreadCounter,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        debounce: float = FEED_DEBOUNCE_SECONDS,
    ) -> None:
        self._api = api
        self.counter = counter
        self.limit = limit
        self._debouncer = Debouncer(debounce, "notification refetch")
        self._first_page = LatestTask("notifications first page")
        self._expired: SessionExpiredError | None = None

        self.filter: NotificationFilter = "all"
        self.items: list[NotificationItem] = []
        self.next_cursor: str | None = None
        self.loading = False
        self.refreshing = False
        self.loading_more = False
        self.error: str | None = None

    @property
    def unread_in_view(self) -> int:
        return sum(1 for item in self.items if item.unread)

    def _set_items(self, items: list[NotificationItem]) -> None:
        self.items = items

    # -- fetching -------------------------------------------------------------

    def mount(self) -> None:
        """Schedules the debounced first-page fetch."""
        self._debouncer.schedule(self._debounced_refresh)

    def set_filter(self, filter: NotificationFilter) -> None:
        """Switches the filter and schedules a debounced refetch."""
        self.filter = filter
        self._debouncer.schedule(self._debounced_refresh)

    async def settle(self) -> None:
        """Waits for a scheduled refetch to finish.

        Raises:
            SessionExpiredError: If that refetch hit an expired session.
        """
        await self._debouncer.flush()
        expired, self._expired = self._expired, None
        if expired is not None:
            raise expired

    async def _debounced_refresh(self) -> None:
        try:
            await self.refresh()
        except SessionExpiredError as exc:
            logger.info("Debounced feed fetch found the session expired")
            self._expired = exc

    async def refresh(self) -> None:
        """Fetches the first page now, replacing the list."""
        await self._first_page.run(self._load_first_page)

    async def _load_first_page(self) -> None:
        if self.items:
            self.refreshing = True
        else:
            self.loading = True
        self.error = None
        try:
            page = await self._api.fetch_page(self.filter, self.limit)
        except _FAILURES as exc:
            self.error = str(exc) or LOAD_ERROR
            return
        finally:
            self.loading = False
            self.refreshing = False
        self.items = list(page.items)
        self.next_cursor = page.next_cursor

    async def load_more(self) -> None:
        """Appends the next page. No-op without a cursor or while loading."""
        if not self.next_cursor or self.loading_more:
            return
        self.loading_more = True
        self.error = None
        try:
            page = await self._api.fetch_page(self.filter, self.limit, self.next_cursor)
        except _FAILURES as exc:
            self.error = str(exc) or LOAD_MORE_ERROR
            return
        finally:
            self.loading_more = False
        self.items = [*self.items, *page.items]
        self.next_cursor = page.next_cursor

    # -- read state -----------------------------------------------------------

    async def mark_one_read(self, notification_id: str) -> bool:
        """Marks one item read, optimistically. Returns whether the server agreed.

        Items that are already read are left alone and return True.
        """
        target = next((item for item in self.items if item.id == notification_id), None)
        if target is not None and not target.unread:
            return True

        ids = {notification_id}
        update = OptimisticUpdate(
            lambda: self.items,
            self._set_items,
            lambda items: _with_unread(items, ids, unread=False),
            lambda items: _with_unread(items, ids, unread=True),
        ).apply()
        try:
            await self._api.mark_read(notification_id)
        except _FAILURES as exc:
            logger.info("Mark read %s failed, reverting: %s", notification_id, exc)
            update.rollback()
            self.counter.refresh()
            return False
        except SessionExpiredError:
            update.rollback()
            raise
        update.commit()
        self.counter.decrement()
        self.counter.refresh(debounced=True)
        return True

    async def mark_all_read(self) -> bool:
        """Marks every item read, optimistically. Returns whether the server agreed.

        A failure marks unread again only the items this call flipped, so a
        list replaced meanwhile keeps its fresher state.
        """
        flipped = {item.id for item in self.items if item.unread}
        update = OptimisticUpdate(
            lambda: self.items,
            self._set_items,
            lambda items: _with_unread(items, None, unread=False),
            lambda items: _with_unread(items, flipped, unread=True),
        ).apply()
        try:
            await self._api.mark_all_read(self.filter)
        except _FAILURES as exc:
            logger.info("Mark all read failed, reverting: %s", exc)
            update.rollback()
            self.counter.refresh()
            return False
        except SessionExpiredError:
            update.rollback()
            raise
        update.commit()
        if self.filter in ("all", "unread"):
            self.counter.clear()
        else:
            self.counter.refresh(debounced=True)
        return True

    async def aclose(self) -> None:
        await self._debouncer.close()
        await self._first_page.close()
