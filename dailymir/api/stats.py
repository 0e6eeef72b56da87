"""Stats panel API routes: summary, time series, heatmap, ranking.

Plain reads with no caching. Upstream failures surface through the
ApiRequestError handler in main.py; the ranking endpoint instead reports
its partial failures inline, the way the results screen shows them.
"""

from fastapi import APIRouter, Depends

from dailymir.api.deps import get_workspace
from dailymir.schemas import ApiResponse
from dailymir.stats import fetch_activity_heatmap, fetch_summary, fetch_timeseries
from dailymir.workspace import UserWorkspace

router = APIRouter()


@router.get("/summary")
async def summary(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    data = await fetch_summary(workspace.client)
    return ApiResponse(ok=True, data=data.model_dump()).model_dump()


@router.get("/timeseries")
async def timeseries(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    data = await fetch_timeseries(workspace.client)
    return ApiResponse(ok=True, data=data.model_dump()).model_dump()


@router.get("/activity-heatmap")
async def activity_heatmap(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    data = await fetch_activity_heatmap(workspace.client)
    return ApiResponse(ok=True, data=data.model_dump()).model_dump()


@router.get("/ranking")
async def ranking(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Today's ranking and score distribution, fetched concurrently."""
    results = workspace.results
    await results.refresh(include_today=False)
    distribution = results.distribution
    return ApiResponse(
        ok=True,
        data={
            "ranking": [entry.model_dump() for entry in results.ranking],
            "distribution": distribution.model_dump() if distribution else None,
            "ranking_error": results.ranking_error,
            "distribution_error": results.distribution_error,
        },
    ).model_dump()
