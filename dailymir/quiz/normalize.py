"""Tolerant parsing of daily-question and review payloads.

The remote API has shipped several envelopes for the same list over time.
Parsing is an ordered list of extractors; each returns the record list or
None, and the first hit wins. Records are then normalized field by field,
again through ordered alias lists, and anything without a usable id,
statement and at least two options is dropped.

Tier 1 module: imports only from dailymir.schemas.
"""

from collections.abc import Callable, Sequence
from typing import Any

from dailymir.schemas import DailyQuestion, MostFailedWeek, ReviewQuestion

Extractor = Callable[[Any], list[Any] | None]


def list_at(*path: str) -> Extractor:
    """Builds an extractor returning the list found at ``payload[path...]``."""

    def _extract(payload: Any) -> list[Any] | None:
        node = payload
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node if isinstance(node, list) else None

    return _extract


# Precedence order matters: {data: {questions}} must win over {data: [...]}.
QUESTION_ENVELOPES: tuple[Extractor, ...] = (
    list_at(),
    list_at("questions"),
    list_at("data", "questions"),
    list_at("data"),
    list_at("dailyQuestions"),
    list_at("daily_questions"),
    list_at("items"),
)


def extract_records(payload: Any, extractors: Sequence[Extractor] = QUESTION_ENVELOPES) -> list[Any]:
    """Returns the first list any extractor finds, or an empty list."""
    for extractor in extractors:
        records = extractor(payload)
        if records is not None:
            return records
    return []


def first_of(record: dict[str, Any], keys: Sequence[str], accept: tuple[type, ...]) -> Any:
    """Returns the first value under ``keys`` whose type is in ``accept``."""
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool) and bool not in accept:
            continue
        if isinstance(value, accept):
            return value
    return None


def _string_options(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [option for option in value if isinstance(option, str)]


def _column_options(record: dict[str, Any]) -> list[str]:
    columns = (record.get(f"option_{n}") for n in range(1, 5))
    return [option for option in columns if isinstance(option, str)]


def normalize_question(record: Any) -> DailyQuestion | None:
    """Maps one raw record to a DailyQuestion, or None if it is unusable.

    An ``options`` array is used when it holds at least two strings;
    otherwise the discrete ``option_1..option_4`` fields are used.
    """
    if not isinstance(record, dict):
        return None

    question_id = first_of(record, ("id", "questionId", "question_id"), (str, int))
    if question_id is None or not str(question_id).strip():
        return None

    statement = first_of(record, ("statement", "question"), (str,))
    if not statement:
        return None

    options = _string_options(record.get("options"))
    if len(options) < 2:
        options = _column_options(record)
    if len(options) < 2:
        return None

    subject = record.get("subject")
    explanation = record.get("explanation")
    return DailyQuestion(
        id=question_id,
        subject=subject if isinstance(subject, str) and subject else "General",
        statement=statement,
        options=options,
        correct_answer=first_of(record, ("correct_answer", "correctAnswer"), (str, int)),
        explanation=explanation if isinstance(explanation, str) else "",
    )


def normalize_questions(payload: Any) -> list[DailyQuestion]:
    """Extracts and normalizes every usable question in a payload."""
    questions = []
    for record in extract_records(payload):
        question = normalize_question(record)
        if question is not None:
            questions.append(question)
    return questions


def normalize_review_question(record: Any, index: int) -> ReviewQuestion | None:
    """Maps a review/byQuestion record to a ReviewQuestion.

    Unlike daily questions, a single option is enough; records with none
    are dropped.
    """
    if not isinstance(record, dict):
        return None
    options = _string_options(record.get("options")) or _column_options(record)
    if not options:
        return None

    question_id = str(record.get("questionId", record.get("id", index)))
    review_id = str(record.get("reviewId", question_id))
    image_url = first_of(record, ("imageUrl", "image_url"), (str,))

    return ReviewQuestion(
        review_id=review_id,
        question_id=question_id,
        category=str(record.get("subject") or record.get("category") or "Daily"),
        question=str(record.get("statement") or record.get("question") or ""),
        options=options,
        correct_answer=first_of(
            record,
            ("correctAnswer", "correct_answer", "correctOption", "correct_option"),
            (str, int),
        ),
        selected_answer=first_of(
            record,
            ("selectedAnswer", "selected_answer", "selectedOption", "selected_option"),
            (str, int),
        ),
        is_correct=first_of(record, ("isCorrect", "is_correct"), (bool,)),
        explanation=str(record.get("explanation") or ""),
        has_image=bool(record.get("hasImage") or record.get("has_image")),
        image_url=image_url if image_url and image_url.strip() else None,
    )


def normalize_review_questions(records: Any) -> list[ReviewQuestion]:
    """Normalizes a list of review records, dropping unusable ones."""
    if not isinstance(records, list):
        return []
    reviews = []
    for index, record in enumerate(records):
        review = normalize_review_question(record, index)
        if review is not None:
            reviews.append(review)
    return reviews


def normalize_option_index(value: Any, options_count: int) -> int | None:
    """Maps an answer that may be 1-based or 0-based to a 0-based index.

    1-based wins when both readings are valid.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if 1 <= value <= options_count:
        return value - 1
    if 0 <= value < options_count:
        return value
    return None


def normalize_most_failed_week(payload: dict[str, Any]) -> MostFailedWeek:
    """Maps the camelCase most-failed-week payload."""
    options = _string_options(payload.get("options"))
    distribution = payload.get("distribution")
    return MostFailedWeek(
        week_start=first_of(payload, ("weekStart", "week_start"), (str,)),
        question_id=first_of(payload, ("questionId", "question_id"), (str, int)),
        wrong_percentage=first_of(payload, ("wrongPercentage", "wrong_percentage"), (int, float)),
        total_responses=first_of(payload, ("totalResponses", "total_responses"), (int,)),
        distribution={
            str(key): value
            for key, value in (distribution or {}).items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        if isinstance(distribution, dict)
        else {},
        statement=str(payload.get("statement") or ""),
        options=options,
        correct_answer=first_of(payload, ("correctAnswer", "correct_answer"), (int,)),
        your_last_answer=first_of(payload, ("yourLastAnswer", "your_last_answer"), (int,)),
        you_were_correct=first_of(payload, ("youWereCorrect", "you_were_correct"), (bool,)),
        answered_at=first_of(payload, ("answeredAt", "answered_at"), (str,)),
        explanation=first_of(payload, ("explanation",), (str,)),
    )


def review_from_daily(questions: Sequence[DailyQuestion]) -> list[ReviewQuestion]:
    """Builds review cards from the session's own questions (last resort)."""
    return [
        ReviewQuestion(
            review_id=str(question.id),
            question_id=str(question.id),
            category=question.subject,
            question=question.statement,
            options=list(question.options),
            correct_answer=question.correct_answer,
            explanation=question.explanation,
        )
        for question in questions
    ]
