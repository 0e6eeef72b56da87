"""Notification endpoints of the remote API, plus display helpers.

Every call goes through AuthenticatedClient.fetch_with_retry: up to two
retries with a 0.18 s linear backoff. Items arrive camelCase and are mapped
to NotificationItem.

Tier 2 service module: imports from client, schemas, quiz.normalize.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from dailymir.client import AuthenticatedClient
from dailymir.quiz.normalize import first_of
from dailymir.schemas import NotificationFilter, NotificationItem, NotificationPage

NOTIFICATIONS_RETRIES = 2
NOTIFICATIONS_BACKOFF_SECONDS = 0.18
DEFAULT_PAGE_SIZE = 20

_ICON_NAME = re.compile(r"^[a-z0-9_]+$")


def parse_notification(record: Any) -> NotificationItem | None:
    """Maps one raw notification. Records without an id are dropped."""
    if not isinstance(record, dict):
        return None
    item_id = first_of(record, ("id",), (str, int))
    if item_id is None or not str(item_id).strip():
        return None
    metric = first_of(record, ("metricValue", "metric_value"), (int, float, str))
    return NotificationItem(
        id=str(item_id),
        title=str(record.get("title") or ""),
        body=str(record.get("body") or ""),
        kind=first_of(record, ("kind",), (str,)),
        icon=first_of(record, ("icon",), (str,)),
        unread=bool(record.get("unread")),
        created_at=first_of(record, ("createdAt", "created_at"), (str,)),
        action_url=first_of(record, ("actionUrl", "action_url"), (str,)),
        metric_value=metric,
        metric_unit=first_of(record, ("metricUnit", "metric_unit"), (str,)),
    )


def parse_page(payload: Any) -> NotificationPage:
    """Maps ``{items, nextCursor}``; anything else is an empty last page."""
    if not isinstance(payload, dict):
        return NotificationPage()
    raw_items = payload.get("items")
    items = []
    for record in raw_items if isinstance(raw_items, list) else []:
        item = parse_notification(record)
        if item is not None:
            items.append(item)
    cursor = payload.get("nextCursor")
    return NotificationPage(items=items, next_cursor=cursor if isinstance(cursor, str) else None)


def parse_unread_count(payload: Any) -> int:
    """``{unreadCount}`` as a non-negative int. Garbage counts as 0."""
    raw = payload.get("unreadCount", 0) if isinstance(payload, dict) else 0
    if raw is None:
        raw = 0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


class NotificationsApi:
    """Thin wrapper over the notification endpoints.

    Args:
        client: The user's authenticated API client.
        backoff_seconds: Base linear backoff between retries.
    """

    def __init__(
        self,
        client: AuthenticatedClient,
        backoff_seconds: float = NOTIFICATIONS_BACKOFF_SECONDS,
    ) -> None:
        self._client = client
        self._backoff = backoff_seconds

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._client.fetch_with_retry(
            method,
            path,
            retries=NOTIFICATIONS_RETRIES,
            backoff_seconds=self._backoff,
            json=json,
            params=params,
        )

    async def fetch_page(
        self,
        filter: NotificationFilter = "all",
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> NotificationPage:
        params: dict[str, Any] = {"filter": filter, "limit": str(limit)}
        if cursor:
            params["cursor"] = cursor
        return parse_page(await self._call("GET", "/api/notifications", params=params))

    async def unread_count(self) -> int:
        return parse_unread_count(await self._call("GET", "/api/notifications/unread-count"))

    async def mark_read(self, notification_id: str) -> None:
        await self._call("POST", f"/api/notifications/{notification_id}/read")

    async def mark_all_read(self, filter: NotificationFilter | None = None) -> None:
        await self._call(
            "POST",
            "/api/notifications/read-all",
            json={"filter": filter} if filter else {},
        )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_notification_time(value: str | None, now: datetime | None = None) -> str:
    """Relative Spanish label for a notification timestamp.

    Under an hour: "Hace unos minutos"; under a day: "Hace N h"; the previous
    calendar day: "Ayer"; otherwise dd/mm/yyyy. Unparseable input gives "".
    """
    if not value:
        return ""
    created = _parse_timestamp(value)
    if created is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    created = created.astimezone(now.tzinfo)

    hours = (now - created) // timedelta(hours=1)
    if hours < 1:
        return "Hace unos minutos"
    if hours < 24:
        return f"Hace {hours} h"
    if created.date() == (now - timedelta(days=1)).date():
        return "Ayer"
    return created.strftime("%d/%m/%Y")


def resolve_notification_icon(item: NotificationItem) -> str:
    """Material icon name for an item: daily/study items get "mail"."""
    icon = (item.icon or "").strip().lower()
    kind = (item.kind or "").strip().lower()
    title = item.title.strip().lower()
    if "daily" in icon or "daily" in title or kind == "study":
        return "mail"
    if icon and _ICON_NAME.match(icon):
        return icon
    return "notifications"
