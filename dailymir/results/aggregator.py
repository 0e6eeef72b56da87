"""Results aggregator: merges every results source into one ResultsView.

Sources, richest first:
1. today's-results payload (GET /api/results/today): meToday, breakdown,
   byQuestion, reviewQuestions, z-score/mean/std-dev.
2. the immediate QuizResult returned by the submission.
3. computed defaults (accuracy from counts, knowledge score = correct × 200).

The ranking (GET /api/ranking) and score distribution
(GET /api/stats/score-distribution) snapshots are fetched independently by
refresh(); a failure in one never blocks the others or the core result.

Tier 2 service module: imports from client, schemas, errors, quiz.normalize,
results.insights.
"""

import asyncio
import logging
import math
import re
from collections.abc import Sequence
from typing import Any

import httpx

from dailymir.client import AuthenticatedClient
from dailymir.errors import ApiRequestError
from dailymir.quiz.normalize import (
    first_of,
    normalize_review_questions,
    review_from_daily,
)
from dailymir.results.insights import percentile_tier
from dailymir.scheduling import LatestTask
from dailymir.schemas import (
    DailyQuestion,
    DistributionCurve,
    KdePoint,
    QuizResult,
    RankingEntry,
    ResultsView,
    ScoreBreakdown,
    ScoreDistribution,
)

logger = logging.getLogger(__name__)

RANKING_MAX_COUNT = 25
TOP_TEN = 10
KDE_SAMPLES = 60
DEFAULT_DISPLAY_NAME = "Tu Nombre"
POINTS_PER_CORRECT = 200

_NUMERIC_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_NUMBER = (int, float)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def finite_number(value: Any) -> float | None:
    """Returns value as a finite float, or None (bools are not numbers here)."""
    if isinstance(value, bool) or not isinstance(value, _NUMBER):
        return None
    return float(value) if math.isfinite(value) else None


def to_finite(value: Any, fallback: float) -> float:
    """Numbers and numeric strings pass through; anything else is ``fallback``."""
    number = finite_number(value)
    if number is not None:
        return number
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return fallback
        return parsed if math.isfinite(parsed) else fallback
    return fallback


def _first_number(sources: Sequence[dict[str, Any]], keys: Sequence[str]) -> float | None:
    for source in sources:
        for key in keys:
            number = finite_number(source.get(key))
            if number is not None:
                return number
    return None


def _first_text(sources: Sequence[dict[str, Any]], keys: Sequence[str]) -> str | None:
    for source in sources:
        value = first_of(source, keys, (str,))
        if value:
            return value
    return None


def coerce_percentile(raw: Any) -> float | None:
    """Coerces a percentile to [0, 100], or None when it is unavailable.

    Numbers pass through; strings use the first comma as decimal separator
    ("45,5" → 45.5) and parse the leading number. None, empty and
    non-finite values are unavailable, never 0.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, _NUMBER):
        value = float(raw)
    elif isinstance(raw, str):
        match = _NUMERIC_PREFIX.match(raw.replace(",", ".", 1))
        if match is None:
            return None
        value = float(match.group(0))
    else:
        return None
    if not math.isfinite(value):
        return None
    return max(0.0, min(100.0, value))


def build_kde_curve(scores: Sequence[float], samples: int = KDE_SAMPLES) -> DistributionCurve:
    """Gaussian KDE sampled across the padded score domain.

    The domain is [min, max] widened by 10% of the span on each side (±1
    when every score is equal). Bandwidth is max(span / 10, 1). Fewer than
    two scores yield an empty curve.
    """
    values = [float(score) for score in scores if finite_number(score) is not None]
    if len(values) < 2:
        return DistributionCurve()

    low, high = min(values), max(values)
    padding = (high - low) * 0.1
    domain_min, domain_max = low - padding, high + padding
    if domain_max == domain_min:
        domain_min, domain_max = domain_min - 1, domain_max + 1

    span = domain_max - domain_min
    bandwidth = max(span / 10, 1.0)
    step = span / (samples - 1)
    count = len(values)

    points = []
    for idx in range(samples):
        x = domain_min + idx * step
        density = sum(math.exp(-0.5 * ((x - value) / bandwidth) ** 2) for value in values) / count
        points.append(KdePoint(x=x, density=density))

    max_density = max(point.density for point in points) or 1.0
    return DistributionCurve(
        points=points,
        max_density=max_density,
        bandwidth=bandwidth,
        domain_min=domain_min,
        domain_max=domain_max,
    )


def parse_ranking(payload: Any) -> list[RankingEntry]:
    """Maps the ranking payload ({ranking: [...]} or a bare list) to entries."""
    rows = payload.get("ranking") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        return []
    entries = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        rank = _first_number([row], ("rank", "position"))
        avatar = _first_number([row], ("avatarId", "avatar_id"))
        user_id = first_of(row, ("userId", "user_id"), (str, int))
        entries.append(
            RankingEntry(
                rank=int(rank) if rank is not None else None,
                score=_first_number([row], ("score", "points")),
                display_name=_first_text([row], ("displayName", "name", "username")),
                avatar_id=int(avatar) if avatar is not None else None,
                is_bot=bool(row.get("isBot") or row.get("is_bot")),
                user_id=str(user_id) if user_id is not None else None,
            )
        )
    return entries


def parse_distribution(payload: Any) -> ScoreDistribution:
    """Maps the score-distribution payload. The percentile stays raw."""
    if not isinstance(payload, dict):
        return ScoreDistribution()
    scores = payload.get("scores")
    same_score = finite_number(payload.get("sameScoreCount", payload.get("same_score_count")))
    total_users = finite_number(payload.get("totalUsers", payload.get("total_users")))
    raw_percentile = payload.get("percentile")
    return ScoreDistribution(
        date=payload.get("date") if isinstance(payload.get("date"), str) else None,
        scores=[float(s) for s in scores if finite_number(s) is not None]
        if isinstance(scores, list)
        else [],
        mean=finite_number(payload.get("mean")),
        median=finite_number(payload.get("median")),
        same_score_count=int(same_score) if same_score is not None else None,
        percentile=raw_percentile
        if isinstance(raw_percentile, (str, float, int)) and not isinstance(raw_percentile, bool)
        else None,
        total_users=int(total_users) if total_users is not None else None,
    )


def find_ranking_row(ranking: Sequence[RankingEntry], user_id: str | None) -> RankingEntry | None:
    if not user_id:
        return None
    for entry in ranking:
        if entry.user_id == user_id:
            return entry
    return None


def _count_correct(by_question: list[Any]) -> int:
    return sum(
        1
        for item in by_question
        if isinstance(item, dict)
        and (item.get("isCorrect") or item.get("correct") or item.get("is_correct"))
    )


def derive_view(
    *,
    today: dict[str, Any] | None,
    quiz_result: QuizResult | None,
    ranking: Sequence[RankingEntry],
    distribution: ScoreDistribution | None,
    user_id: str | None,
    questions: Sequence[DailyQuestion] = (),
) -> ResultsView:
    """Reconciles every source into the display-ready ResultsView."""
    today = today or {}
    me = today.get("meToday") if isinstance(today.get("meToday"), dict) else {}
    breakdown_raw = today.get("breakdown")
    if not isinstance(breakdown_raw, dict):
        breakdown_raw = me.get("breakdown") if isinstance(me.get("breakdown"), dict) else {}
    by_question = today.get("byQuestion") if isinstance(today.get("byQuestion"), list) else []

    total_questions = _first_number([me], ("totalQuestions",))
    if total_questions is None:
        if by_question:
            total_questions = len(by_question)
        elif quiz_result is not None:
            total_questions = quiz_result.total_questions
        else:
            total_questions = len(questions)

    correct = _first_number([me], ("correctCount",))
    if correct is None:
        if by_question:
            correct = _count_correct(by_question)
        elif quiz_result is not None:
            correct = quiz_result.correct_count
        else:
            correct = 0

    accuracy = _first_number([me], ("percentage",))
    if accuracy is None and quiz_result is not None:
        accuracy = quiz_result.percentage
    if accuracy is None:
        accuracy = round_half_up(correct / total_questions * 100) if total_questions else 0
    accuracy = max(0.0, min(100.0, float(accuracy)))

    knowledge = to_finite(breakdown_raw.get("knowledgeScore"), correct * POINTS_PER_CORRECT)
    time_bonus = to_finite(breakdown_raw.get("timeBonus"), 0)
    breakdown = ScoreBreakdown(
        knowledge_score=knowledge,
        time_bonus=time_bonus,
        judge_penalty=0,
        total=to_finite(breakdown_raw.get("total"), knowledge + time_bonus),
    )

    top_ranking = list(ranking[:RANKING_MAX_COUNT])
    row = find_ranking_row(ranking, user_id)
    row_fields = row.model_dump() if row is not None else {}

    rank = _first_number([me], ("rank", "position"))
    if rank is None:
        rank = row.rank if row is not None else None

    score = _first_number([me], ("score",))
    if score is None and row is not None:
        score = row.score
    if score is None:
        if finite_number(breakdown_raw.get("total")) is None and quiz_result is not None:
            score = quiz_result.score
        else:
            score = breakdown.total

    display_name = (
        _first_text([me], ("displayName", "name", "username"))
        or row_fields.get("display_name")
        or DEFAULT_DISPLAY_NAME
    )

    total_time = _first_number([me], ("totalTime",))
    if total_time is None and quiz_result is not None:
        total_time = quiz_result.total_time

    distribution = distribution or ScoreDistribution()
    percentile = coerce_percentile(distribution.percentile)

    reviews = normalize_review_questions(today.get("reviewQuestions"))
    if not reviews:
        reviews = normalize_review_questions(by_question)
    if not reviews:
        reviews = review_from_daily(questions)

    return ResultsView(
        correct_count=int(correct),
        total_questions=int(total_questions),
        accuracy=accuracy,
        score=score,
        total_time=total_time,
        breakdown=breakdown,
        percentile=percentile,
        percentile_tier=percentile_tier(percentile) if percentile is not None else None,
        z_score=_first_number([today, me], ("zScore", "z_score")),
        mean=_first_number([today, breakdown_raw], ("mean",)),
        std_dev=_first_number([today, breakdown_raw], ("stdDev", "std_dev")),
        rank=int(rank) if rank is not None else None,
        display_name=display_name,
        is_in_top_ten=(rank is not None and rank <= TOP_TEN)
        or (row is not None and row in top_ranking),
        top_ranking=top_ranking,
        distribution=build_kde_curve(distribution.scores),
        distribution_mean=distribution.mean,
        distribution_median=distribution.median,
        same_score_count=distribution.same_score_count,
        review_questions=reviews,
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class ResultsAggregator:
    """Holds the results snapshots of one user and refreshes them on demand.

    Args:
        client: The user's authenticated API client.
    """

    def __init__(self, client: AuthenticatedClient) -> None:
        self._client = client
        self._refresh = LatestTask("results refresh")
        self.today: dict[str, Any] | None = None
        self.ranking: list[RankingEntry] = []
        self.distribution: ScoreDistribution | None = None
        self.today_error: str | None = None
        self.ranking_error: str | None = None
        self.distribution_error: str | None = None
        self.loading = False
        self.refresh_count = 0

    def hold_today(self, payload: Any) -> None:
        """Keeps a today's-results payload obtained elsewhere (status check)."""
        self.today = payload if isinstance(payload, dict) else None

    def reset(self) -> None:
        self._refresh.cancel()
        self.today = None
        self.ranking = []
        self.distribution = None
        self.today_error = self.ranking_error = self.distribution_error = None
        self.loading = False

    async def refresh(self, *, include_today: bool) -> None:
        """Fetches ranking and distribution (and today's results if asked).

        The three calls run concurrently and fail independently. A newer
        refresh cancels one still in flight. SessionExpiredError propagates.
        """
        self.refresh_count += 1
        await self._refresh.run(lambda: self._refresh_all(include_today))

    async def _refresh_all(self, include_today: bool) -> None:
        self.loading = True
        try:
            jobs = [self._load_ranking(), self._load_distribution()]
            if include_today:
                jobs.append(self._load_today())
            await asyncio.gather(*jobs)
        finally:
            self.loading = False

    async def _load_today(self) -> None:
        self.today_error = None
        try:
            payload = await self._client.fetch_json(
                "GET", "/api/results/today", fallback="No hay resultados todavía"
            )
        except (ApiRequestError, httpx.TransportError) as exc:
            logger.info("Today's results unavailable: %s", exc)
            self.today_error = str(exc) or "No hay resultados todavía"
            return
        self.hold_today(payload)

    async def _load_ranking(self) -> None:
        self.ranking_error = None
        try:
            payload = await self._client.fetch_json("GET", "/api/ranking")
        except (ApiRequestError, httpx.TransportError) as exc:
            logger.info("Ranking unavailable: %s", exc)
            self.ranking_error = str(exc) or "No se pudo cargar el ranking"
            return
        self.ranking = parse_ranking(payload)

    async def _load_distribution(self) -> None:
        self.distribution_error = None
        try:
            payload = await self._client.fetch_json("GET", "/api/stats/score-distribution")
        except (ApiRequestError, httpx.TransportError) as exc:
            logger.info("Score distribution unavailable: %s", exc)
            self.distribution_error = str(exc) or "No se pudo cargar la distribucion"
            return
        self.distribution = parse_distribution(payload)

    def view(
        self,
        *,
        user_id: str | None,
        quiz_result: QuizResult | None,
        questions: Sequence[DailyQuestion] = (),
    ) -> ResultsView:
        """Derives the current view from held snapshots. Never fetches."""
        return derive_view(
            today=self.today,
            quiz_result=quiz_result,
            ranking=self.ranking,
            distribution=self.distribution,
            user_id=user_id,
            questions=questions,
        )

    async def close(self) -> None:
        await self._refresh.close()
