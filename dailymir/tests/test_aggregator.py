"""Tests for dailymir.results.aggregator: merging the results sources."""

import pytest

from dailymir.results.aggregator import (
    DEFAULT_DISPLAY_NAME,
    ResultsAggregator,
    build_kde_curve,
    coerce_percentile,
    derive_view,
    parse_distribution,
    parse_ranking,
    round_half_up,
    to_finite,
)
from dailymir.schemas import QuizResult, RankingEntry, ScoreDistribution
from dailymir.tests.conftest import reply


def _view(**overrides):
    kwargs = {
        "today": None,
        "quiz_result": None,
        "ranking": [],
        "distribution": None,
        "user_id": "fake-user-1",
    }
    kwargs.update(overrides)
    return derive_view(**kwargs)


class TestNumbers:
    def test_round_half_up(self) -> None:
        assert round_half_up(66.5) == 67
        assert round_half_up(2.5) == 3
        assert round_half_up(66.4) == 66

    def test_to_finite(self) -> None:
        assert to_finite("12.5", 0) == 12.5
        assert to_finite("abc", 7) == 7
        assert to_finite(float("nan"), 3) == 3
        assert to_finite(True, 1) == 1
        assert to_finite(None, 0) == 0


class TestCoercePercentile:
    """Unavailable is None, never 0."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (45, 45.0),
            ("45,5", 45.5),
            ("12.5%", 12.5),
            (140, 100.0),
            (-3, 0.0),
        ],
    )
    def test_coerced(self, raw, expected) -> None:
        assert coerce_percentile(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "n/a", float("nan"), True, [1]])
    def test_unavailable(self, raw) -> None:
        assert coerce_percentile(raw) is None


class TestKdeCurve:
    def test_fewer_than_two_scores_empty(self) -> None:
        assert build_kde_curve([]).points == []
        assert build_kde_curve([300]).points == []

    def test_domain_padded_ten_percent(self) -> None:
        curve = build_kde_curve([0, 100])
        assert curve.domain_min == pytest.approx(-10)
        assert curve.domain_max == pytest.approx(110)
        assert curve.bandwidth == pytest.approx(12)
        assert len(curve.points) == 60
        assert curve.points[0].x == pytest.approx(-10)
        assert curve.points[-1].x == pytest.approx(110)

    def test_equal_scores_widen_by_one(self) -> None:
        curve = build_kde_curve([50, 50, 50])
        assert curve.domain_min == 49
        assert curve.domain_max == 51
        assert curve.bandwidth == 1.0

    def test_max_density_matches_points(self) -> None:
        curve = build_kde_curve([100, 200, 200, 400])
        assert curve.max_density == max(p.density for p in curve.points)
        assert 0 < curve.max_density <= 1


class TestParsing:
    def test_ranking_aliases(self) -> None:
        entries = parse_ranking(
            {"ranking": [{"position": 2, "points": 900, "name": "Bea", "user_id": 7, "is_bot": True}, "x"]}
        )
        assert entries == [
            RankingEntry(rank=2, score=900, display_name="Bea", user_id="7", is_bot=True)
        ]

    def test_ranking_bare_list_and_junk(self) -> None:
        assert len(parse_ranking([{"rank": 1}])) == 1
        assert parse_ranking({"ranking": None}) == []

    def test_distribution_keeps_raw_percentile(self) -> None:
        dist = parse_distribution(
            {"scores": [1, "x", 3], "percentile": "45,5", "sameScoreCount": 4, "totalUsers": 80}
        )
        assert dist.scores == [1.0, 3.0]
        assert dist.percentile == "45,5"
        assert dist.same_score_count == 4
        assert dist.total_users == 80

    def test_distribution_non_dict(self) -> None:
        assert parse_distribution(None) == ScoreDistribution()


class TestDeriveView:
    """Richest source wins, computed defaults fill the rest."""

    def test_today_payload_wins(self) -> None:
        view = _view(
            today={
                "meToday": {"correctCount": 4, "totalQuestions": 5, "percentage": 80, "score": 950, "rank": 3},
                "breakdown": {"knowledgeScore": 800, "timeBonus": 150},
                "zScore": 1.2,
            },
            quiz_result=QuizResult(correct_count=1, total_questions=5, percentage=20, score=100),
        )
        assert view.correct_count == 4
        assert view.accuracy == 80
        assert view.score == 950
        assert view.breakdown.total == 950
        assert view.rank == 3
        assert view.is_in_top_ten is True
        assert view.z_score == 1.2

    def test_quiz_result_fallback(self) -> None:
        view = _view(quiz_result=QuizResult(correct_count=2, total_questions=3, percentage=67, score=450))
        assert view.accuracy == 67
        assert view.score == 450
        assert view.breakdown.knowledge_score == 400

    def test_accuracy_computed_from_by_question(self) -> None:
        view = _view(today={"byQuestion": [{"isCorrect": True}, {"correct": False}, {"is_correct": True}]})
        assert view.correct_count == 2
        assert view.total_questions == 3
        assert view.accuracy == 67

    def test_empty_everything(self) -> None:
        view = _view()
        assert view.accuracy == 0
        assert view.total_questions == 0
        assert view.display_name == DEFAULT_DISPLAY_NAME
        assert view.percentile is None
        assert view.percentile_tier is None
        assert view.rank is None
        assert view.is_in_top_ten is False

    def test_ranking_row_supplies_rank_and_name(self) -> None:
        ranking = [RankingEntry(rank=rank, user_id=f"u{rank}") for rank in range(1, 15)]
        ranking.append(RankingEntry(rank=15, user_id="fake-user-1", display_name="Ana", score=300))
        view = _view(ranking=ranking)
        assert view.rank == 15
        assert view.display_name == "Ana"
        assert view.score == 300
        assert view.is_in_top_ten is True
        assert len(view.top_ranking) == 15

    def test_percentile_tier(self) -> None:
        view = _view(distribution=ScoreDistribution(percentile="85,2"))
        assert view.percentile == pytest.approx(85.2)
        assert view.percentile_tier == "elite"


class TestAggregator:
    """refresh() loads every snapshot independently."""

    @pytest.mark.asyncio
    async def test_failures_are_independent(self, fake_api, make_client) -> None:
        fake_api.on("GET", "/api/ranking", reply(500, {"error": "ranking caído"}))
        fake_api.on("GET", "/api/stats/score-distribution", reply(200, {"scores": [1, 2]}))
        fake_api.on("GET", "/api/results/today", reply(200, {"meToday": {"percentage": 50}}))
        aggregator = ResultsAggregator(make_client())

        await aggregator.refresh(include_today=True)

        assert aggregator.ranking_error == "ranking caído"
        assert aggregator.distribution.scores == [1.0, 2.0]
        assert aggregator.today == {"meToday": {"percentage": 50}}
        assert aggregator.refresh_count == 1
        assert aggregator.loading is False

    @pytest.mark.asyncio
    async def test_today_skipped_when_not_requested(self, fake_api, make_client) -> None:
        fake_api.on("GET", "/api/ranking", reply(200, {"ranking": []}))
        fake_api.on("GET", "/api/stats/score-distribution", reply(200, {}))
        aggregator = ResultsAggregator(make_client())
        await aggregator.refresh(include_today=False)
        assert fake_api.count("GET", "/api/results/today") == 0

    @pytest.mark.asyncio
    async def test_reset_clears_snapshots(self, fake_api, make_client) -> None:
        aggregator = ResultsAggregator(make_client())
        aggregator.hold_today({"meToday": {}})
        aggregator.reset()
        assert aggregator.today is None
        assert aggregator.ranking == []
