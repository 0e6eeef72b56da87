"""Core data models: shared Pydantic types for the dailymir BFF.

Every profile, daily question, quiz result, ranking snapshot, notification and
API response flows through these types. Remote payloads are tolerant
(camelCase or snake_case, several envelopes); the normalizers in quiz/,
profile/ and notifications/ map them into these snake_case models.

This is a Tier 1 leaf module: it imports only from pydantic and the stdlib.
No project imports allowed: everything else imports from here.

Usage:
    from dailymir.schemas import Profile, DailyQuestion, QuizResult, ApiResponse
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MainGoal = Literal["prepare_mir", "reinforce_degree", "explore"]
NotificationFilter = Literal["all", "unread", "study", "system"]


# ---------------------------------------------------------------------------
# Identity (owned by the auth collaborator)
# ---------------------------------------------------------------------------


class SessionUser(BaseModel):
    """The auth collaborator's view of the signed-in user."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""


class Session(BaseModel):
    """Opaque bearer token plus expiry, as issued by the auth collaborator.

    Frozen: the app holds a read-only reference and never persists it.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime | None = None
    user: SessionUser


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class University(BaseModel):
    """A university the user can pick during onboarding."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    country: str


class MirSpecialty(BaseModel):
    """A MIR specialty the user can pick during onboarding."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class Profile(BaseModel):
    """The current user's profile as served by GET /api/profile.

    Created server-side on signup. Mutated only through explicit update
    calls (display name, avatar, username, onboarding).
    """

    id: str
    email: str = ""
    display_name: str = ""
    username: str = ""
    avatar_id: int = 1
    medical_year: int | None = None
    mir_specialty: MirSpecialty | None = None
    main_goal: MainGoal | None = None
    university: University | None = None
    profile_public: bool = False
    onboarding_completed: bool = False
    must_update_display_name: bool = False
    created_at: str = ""


class ProfileUpdateResult(BaseModel):
    """Outcome of a profile mutation, as returned to the browser.

    next_available_at is only set when a username change is rate-limited.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    error: str | None = None
    next_available_at: str | None = None


class OnboardingDraft(BaseModel):
    """The onboarding wizard's form state, as posted by the browser."""

    model_config = ConfigDict(frozen=True)

    display_name: str = ""
    username: str = ""
    main_goal: MainGoal | None = None
    university_id: int | None = None
    custom_university: str = Field(default="", max_length=80)
    use_custom_university: bool = False
    medical_year: int | None = None
    mir_specialty_id: int | None = None
    profile_public: bool = False


# ---------------------------------------------------------------------------
# Daily quiz
# ---------------------------------------------------------------------------


class DailyQuestion(BaseModel):
    """One question of today's quiz. Never mutated client-side."""

    model_config = ConfigDict(frozen=True)

    id: str | int
    subject: str = "General"
    statement: str
    options: list[str] = Field(min_length=2)
    correct_answer: str | int | None = None
    explanation: str = ""


class QuizSession(BaseModel):
    """Ephemeral in-memory quiz state for one attempt.

    Invariant: selected_answers, time_spent_seconds and questions always have
    the same length. Frozen: every transition returns a new instance (see
    dailymir.quiz.session).

    current_since is the clock reading when the current question became
    current; None once timing has been flushed for submission.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    questions: list[DailyQuestion]
    current_index: int = 0
    selected_answers: list[int | None]
    time_spent_seconds: list[int]
    current_since: float | None = None


class AnswerRecord(BaseModel):
    """One submitted answer. selected_option is 1-based on the wire."""

    model_config = ConfigDict(frozen=True)

    question_id: str | int
    selected_option: int
    time_spent: int

    def to_wire(self) -> dict[str, Any]:
        """Serializes to the camelCase shape POST /api/submit-answers expects."""
        return {
            "questionId": self.question_id,
            "selectedOption": self.selected_option,
            "timeSpent": self.time_spent,
        }


class QuizResult(BaseModel):
    """Immediate feedback returned by the submission endpoint."""

    model_config = ConfigDict(frozen=True)

    correct_count: int = 0
    total_questions: int = 0
    percentage: float = 0
    score: float = 0
    total_time: float = 0


class MostFailedWeek(BaseModel):
    """The most-failed question of the current week."""

    model_config = ConfigDict(frozen=True)

    week_start: str | None = None
    question_id: str | int | None = None
    wrong_percentage: float | None = None
    total_responses: int | None = None
    distribution: dict[str, float] = Field(default_factory=dict)
    statement: str = ""
    options: list[str] = Field(default_factory=list)
    correct_answer: int | None = None
    your_last_answer: int | None = None
    you_were_correct: bool | None = None
    answered_at: str | None = None
    explanation: str | None = None


# ---------------------------------------------------------------------------
# Results snapshots
# ---------------------------------------------------------------------------


class RankingEntry(BaseModel):
    """One row of today's ranking snapshot."""

    model_config = ConfigDict(frozen=True)

    rank: int | None = None
    score: float | None = None
    display_name: str | None = None
    avatar_id: int | None = None
    is_bot: bool = False
    user_id: str | None = None


class ScoreDistribution(BaseModel):
    """Today's score distribution snapshot.

    percentile is kept raw (number, comma-decimal string or None); the
    results aggregator coerces it.
    """

    model_config = ConfigDict(frozen=True)

    date: str | None = None
    scores: list[float] = Field(default_factory=list)
    mean: float | None = None
    median: float | None = None
    same_score_count: int | None = None
    percentile: float | str | None = None
    total_users: int | None = None


class ScoreBreakdown(BaseModel):
    """How today's score splits into knowledge points and time bonus."""

    model_config = ConfigDict(frozen=True)

    knowledge_score: float = 0
    time_bonus: float = 0
    judge_penalty: float = 0
    total: float = 0


class KdePoint(BaseModel):
    """One sample of the score density curve."""

    model_config = ConfigDict(frozen=True)

    x: float
    density: float


class DistributionCurve(BaseModel):
    """Gaussian KDE over today's scores. Empty points for fewer than 2 scores."""

    model_config = ConfigDict(frozen=True)

    points: list[KdePoint] = Field(default_factory=list)
    max_density: float = 0
    bandwidth: float = 1
    domain_min: float | None = None
    domain_max: float | None = None


class ReviewQuestion(BaseModel):
    """A question as shown in the post-quiz review carousel."""

    model_config = ConfigDict(frozen=True)

    review_id: str
    question_id: str
    category: str = "Daily"
    question: str = ""
    options: list[str] = Field(default_factory=list)
    correct_answer: str | int | None = None
    selected_answer: str | int | None = None
    is_correct: bool | None = None
    explanation: str = ""
    has_image: bool = False
    image_url: str | None = None


class ResultsView(BaseModel):
    """Display-ready results derived by the results aggregator."""

    model_config = ConfigDict(frozen=True)

    correct_count: int
    total_questions: int
    accuracy: float
    score: float
    total_time: float | None = None
    breakdown: ScoreBreakdown
    percentile: float | None = None
    percentile_tier: str | None = None
    z_score: float | None = None
    mean: float | None = None
    std_dev: float | None = None
    rank: int | None = None
    display_name: str
    is_in_top_ten: bool = False
    top_ranking: list[RankingEntry] = Field(default_factory=list)
    distribution: DistributionCurve = Field(default_factory=DistributionCurve)
    distribution_mean: float | None = None
    distribution_median: float | None = None
    same_score_count: int | None = None
    review_questions: list[ReviewQuestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class PanelSummary(BaseModel):
    """Normalized GET /api/stats/summary payload."""

    model_config = ConfigDict(frozen=True)

    avg_percentage: float | None = None
    total_questions: float | None = None
    trend: float | None = None
    avg_time_seconds: float | None = None
    state: str | None = None
    trend_type: str | None = None


class TimeSeriesPoint(BaseModel):
    """One day in the score/time series."""

    model_config = ConfigDict(frozen=True)

    date: str
    score: float
    avg_time: float
    correct: int | None = None


class TimeSeries(BaseModel):
    """Normalized GET /api/stats/timeseries payload."""

    model_config = ConfigDict(frozen=True)

    status: Literal["ok", "insufficient_data"] | None = None
    points: list[TimeSeriesPoint] = Field(default_factory=list)
    total_points: int | None = None
    avg_score_30: float | None = None
    avg_time_30: float | None = None


class HeatmapDay(BaseModel):
    """Activity level for one calendar day (0 none, 1 some, 2 daily done)."""

    model_config = ConfigDict(frozen=True)

    date: str
    level: Literal[0, 1, 2]


class ActivityHeatmap(BaseModel):
    """Normalized GET /api/stats/activity-heatmap payload."""

    model_config = ConfigDict(frozen=True)

    range_from: str | None = None
    range_to: str | None = None
    days: list[HeatmapDay] = Field(default_factory=list)
    current_streak: int = 0
    longest_streak: int = 0
    total_active_days: int = 0
    total_daily_days: int = 0


# ---------------------------------------------------------------------------
# Studio
# ---------------------------------------------------------------------------


class Deck(BaseModel):
    """A user-made study deck. Deleted decks keep deleted_at until restored."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    deleted_at: str | None = None

    @property
    def label(self) -> str:
        return self.name or f"Mazo {self.id}"


class DeckItem(BaseModel):
    """One question saved into a deck."""

    model_config = ConfigDict(frozen=True)

    id: str
    question_id: str | None = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationItem(BaseModel):
    """One entry of the notification feed.

    Frozen: optimistic read-state changes produce copies so a rollback can
    restore the exact previous instance.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    body: str = ""
    kind: str | None = None
    icon: str | None = None
    unread: bool = False
    created_at: str | None = None
    action_url: str | None = None
    metric_value: float | str | None = None
    metric_unit: str | None = None


class NotificationPage(BaseModel):
    """One page of the notification feed."""

    model_config = ConfigDict(frozen=True)

    items: list[NotificationItem] = Field(default_factory=list)
    next_cursor: str | None = None


# ---------------------------------------------------------------------------
# API envelope
# ---------------------------------------------------------------------------


class ApiError(BaseModel):
    """Error detail inside ApiResponse.error.

    code is an uppercase string like "SESSION_EXPIRED", "NO_QUESTIONS",
    "UPSTREAM_ERROR". Not an enum: error codes grow with features.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ApiResponse(BaseModel):
    """Universal response envelope: every BFF endpoint returns this shape."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    data: Any | None = None
    error: ApiError | None = None
