"""Stats panel reads: summary, score/time series and the activity heatmap.

Plain reads with no retry and no caching; the panel refetches on demand.
The summary endpoint has renamed its average-time field several times, so
every known alias is accepted.

Tier 2 service module: imports from client, schemas, results.aggregator.
"""

import math
from typing import Any

from dailymir.client import AuthenticatedClient, raise_for_status
from dailymir.results.aggregator import to_finite
from dailymir.schemas import (
    ActivityHeatmap,
    HeatmapDay,
    PanelSummary,
    TimeSeries,
    TimeSeriesPoint,
)

AVG_TIME_ALIASES = (
    "avgTimeSeconds",
    "avgTime",
    "averageTimeSeconds",
    "averageTime",
    "meanTimeSeconds",
    "meanTime",
)


def _number(value: Any) -> float | None:
    number = to_finite(value, math.nan)
    return None if math.isnan(number) else number


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def normalize_summary(payload: Any) -> PanelSummary:
    source = payload if isinstance(payload, dict) else {}
    avg_time = next(
        (n for n in (_number(source.get(key)) for key in AVG_TIME_ALIASES) if n is not None),
        None,
    )
    return PanelSummary(
        avg_percentage=_number(source.get("avgPercentage")),
        total_questions=_number(source.get("totalQuestions")),
        trend=_number(source.get("trend")),
        avg_time_seconds=avg_time,
        state=_text(source.get("state")),
        trend_type=_text(source.get("trendType")),
    )


def normalize_timeseries(payload: Any) -> TimeSeries:
    """Maps the camelCase series. Points without a date or score are dropped."""
    source = payload if isinstance(payload, dict) else {}
    points = []
    for raw in source.get("points") or []:
        if not isinstance(raw, dict) or not isinstance(raw.get("date"), str):
            continue
        score = _number(raw.get("score"))
        if score is None:
            continue
        correct = _number(raw.get("correct"))
        points.append(
            TimeSeriesPoint(
                date=raw["date"],
                score=score,
                avg_time=_number(raw.get("avgTime")) or 0,
                correct=int(correct) if correct is not None else None,
            )
        )
    status = source.get("status")
    total = _number(source.get("totalPoints"))
    return TimeSeries(
        status=status if status in ("ok", "insufficient_data") else None,
        points=points,
        total_points=int(total) if total is not None else None,
        avg_score_30=_number(source.get("avgScore30")),
        avg_time_30=_number(source.get("avgTime30")),
    )


def normalize_heatmap(payload: Any) -> ActivityHeatmap:
    source = payload if isinstance(payload, dict) else {}
    days_range = source.get("range") if isinstance(source.get("range"), dict) else {}
    stats = source.get("stats") if isinstance(source.get("stats"), dict) else {}
    days = [
        HeatmapDay(date=day["date"], level=day["level"])
        for day in source.get("days") or []
        if isinstance(day, dict) and isinstance(day.get("date"), str) and day.get("level") in (0, 1, 2)
    ]
    return ActivityHeatmap(
        range_from=_text(days_range.get("from")),
        range_to=_text(days_range.get("to")),
        days=days,
        current_streak=int(_number(stats.get("currentStreak")) or 0),
        longest_streak=int(_number(stats.get("longestStreak")) or 0),
        total_active_days=int(_number(stats.get("totalActiveDays")) or 0),
        total_daily_days=int(_number(stats.get("totalDailyDays")) or 0),
    )


async def fetch_summary(client: AuthenticatedClient) -> PanelSummary:
    payload = await client.fetch_json(
        "GET", "/api/stats/summary", fallback="No se pudo cargar el resumen."
    )
    return normalize_summary(payload)


async def fetch_timeseries(client: AuthenticatedClient) -> TimeSeries:
    response = await client.get("/api/stats/timeseries")
    return normalize_timeseries(
        raise_for_status(response, f"Timeseries error ({response.status_code})")
    )


async def fetch_activity_heatmap(client: AuthenticatedClient) -> ActivityHeatmap:
    response = await client.get("/api/stats/activity-heatmap")
    return normalize_heatmap(
        raise_for_status(response, f"Error al cargar actividad ({response.status_code})")
    )
