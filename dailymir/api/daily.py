"""Daily-quiz API routes: open, answer, submit, results, close.

Every endpoint drives the caller's DailyQuizFlow and answers with the flow's
JSON snapshot inside the ApiResponse envelope. Expected outcomes (already
completed, no questions, server-side refusals) are part of the snapshot,
not HTTP errors; only a local validation failure (422) or an expired
session (401) change the status code.

Tier 3 orchestration module: imports from deps, workspace, results.insights,
schemas.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dailymir.api.deps import get_workspace
from dailymir.results.insights import percentile_tier, summarize_percentile
from dailymir.schemas import ApiResponse
from dailymir.workspace import UserWorkspace

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class SelectRequest(BaseModel):
    """Request body for POST /select. option_index is 0-based."""

    option_index: int


class GoToRequest(BaseModel):
    """Request body for POST /go-to."""

    index: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _state(workspace: UserWorkspace) -> dict[str, Any]:
    """The flow snapshot plus the percentile wording when a percentile exists."""
    state = workspace.flow.snapshot()
    results = state.get("results")
    insight = None
    if results and results.get("percentile") is not None:
        summary = summarize_percentile(
            results["percentile"],
            workspace.user_id,
            z_score=results.get("z_score"),
        )
        insight = {
            "tier": percentile_tier(results["percentile"]),
            "lead": summary.lead,
            "quote": summary.quote,
            "closing": summary.closing,
        }
    state["insight"] = insight
    return ApiResponse(ok=True, data=state).model_dump()


# ---------------------------------------------------------------------------
# Flow endpoints
# ---------------------------------------------------------------------------


@router.get("/state")
async def get_state(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Current flow state. Never triggers a request to the remote API."""
    return _state(workspace)


@router.post("/open")
async def open_daily(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Opens today's quiz: status check, then questions or results."""
    await workspace.flow.open()
    return _state(workspace)


@router.post("/select")
async def select_option(
    body: SelectRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    workspace.flow.select(body.option_index)
    return _state(workspace)


@router.post("/next")
async def next_question(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Advances one question; on the last one this submits."""
    await workspace.flow.next()
    return _state(workspace)


@router.post("/previous")
async def previous_question(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    workspace.flow.previous()
    return _state(workspace)


@router.post("/go-to")
async def go_to_question(
    body: GoToRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    workspace.flow.go_to(body.index)
    return _state(workspace)


@router.post("/submit")
async def submit_answers(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    await workspace.flow.submit()
    return _state(workspace)


@router.post("/close")
async def close_daily(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    workspace.flow.close()
    return _state(workspace)


@router.post("/exit")
async def exit_daily(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Closes after the exit delay; a new open before then cancels it."""
    workspace.flow.exit()
    return _state(workspace)


@router.get("/most-failed-week")
async def most_failed_week(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """The week's most-failed question (retried up to twice)."""
    await workspace.flow.load_most_failed_week()
    snapshot = workspace.flow.snapshot()
    return ApiResponse(ok=True, data=snapshot["most_failed_week"]).model_dump()
