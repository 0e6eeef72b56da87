"""Notification API routes: feed, filter, pagination, read state, badge.

The feed and the unread badge are per-user controllers in the workspace.
Feed fetches triggered by mount and filter changes are debounced; the
``settle`` query flag waits for the debounced fetch so the response
already carries the new page.

Tier 3 orchestration module: imports from deps, workspace, notifications,
schemas.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dailymir.api.deps import get_workspace
from dailymir.notifications.api import format_notification_time, resolve_notification_icon
from dailymir.notifications.feed import NotificationFeed
from dailymir.schemas import ApiResponse, NotificationFilter
from dailymir.workspace import UserWorkspace

logger = logging.getLogger(__name__)

router = APIRouter()


class FilterRequest(BaseModel):
    """Request body for POST /filter."""

    filter: NotificationFilter


def _feed_state(feed: NotificationFeed) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    items = []
    for item in feed.items:
        entry = item.model_dump()
        entry["time_label"] = format_notification_time(item.created_at, now)
        entry["icon_name"] = resolve_notification_icon(item)
        items.append(entry)
    return {
        "filter": feed.filter,
        "items": items,
        "next_cursor": feed.next_cursor,
        "has_more": feed.next_cursor is not None,
        "loading": feed.loading,
        "refreshing": feed.refreshing,
        "loading_more": feed.loading_more,
        "error": feed.error,
        "unread_in_view": feed.unread_in_view,
        "unread_count": feed.counter.value,
    }


def _ok(data: Any) -> dict:
    return ApiResponse(ok=True, data=data).model_dump()


@router.get("")
async def get_feed(
    settle: bool = False,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    """Mounts the feed (debounced first-page fetch) and returns its state."""
    workspace.feed.mount()
    if settle:
        await workspace.feed.settle()
    return _ok(_feed_state(workspace.feed))


@router.post("/filter")
async def set_filter(
    body: FilterRequest,
    settle: bool = False,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    workspace.feed.set_filter(body.filter)
    if settle:
        await workspace.feed.settle()
    return _ok(_feed_state(workspace.feed))


@router.post("/refresh")
async def refresh_feed(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Fetches the first page now (pull-to-refresh)."""
    await workspace.feed.refresh()
    return _ok(_feed_state(workspace.feed))


@router.post("/more")
async def load_more(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    await workspace.feed.load_more()
    return _ok(_feed_state(workspace.feed))


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    confirmed = await workspace.feed.mark_one_read(notification_id)
    return _ok({"confirmed": confirmed, **_feed_state(workspace.feed)})


@router.post("/read-all")
async def mark_all_read(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    confirmed = await workspace.feed.mark_all_read()
    return _ok({"confirmed": confirmed, **_feed_state(workspace.feed)})


@router.get("/unread-count")
async def unread_count(
    refresh: bool = True,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    """The badge value. refresh=true fetches it first; errors keep the last value."""
    if refresh:
        await workspace.unread.refresh_now()
    return _ok({"unread_count": workspace.unread.value, "loading": workspace.unread.loading})
