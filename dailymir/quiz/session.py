"""Pure state transitions for one daily-quiz attempt.

Every function takes a QuizSession and returns a new one; nothing here does
I/O or reads the clock. Callers pass ``now`` (a monotonic reading in
seconds) so timing is deterministic under test.

Time accounting: the current question accrues time from ``current_since``
until the index changes or the attempt is flushed for submission. Elapsed
time is rounded to whole seconds, halves up, and added to what the
question already had, so revisits accumulate.

Tier 1 module: imports only from dailymir.schemas and dailymir.errors.
"""

import logging
import math
import uuid
from collections.abc import Sequence

from dailymir.errors import ClientValidationError
from dailymir.schemas import AnswerRecord, DailyQuestion, QuizSession

logger = logging.getLogger(__name__)


def start_session(
    questions: Sequence[DailyQuestion],
    now: float,
    session_id: str | None = None,
) -> QuizSession:
    """Creates a fresh attempt positioned on the first question."""
    count = len(questions)
    return QuizSession(
        session_id=session_id or str(uuid.uuid4()),
        questions=list(questions),
        current_index=0,
        selected_answers=[None] * count,
        time_spent_seconds=[0] * count,
        current_since=now if count else None,
    )


def _accrue(session: QuizSession, now: float) -> list[int]:
    spent = list(session.time_spent_seconds)
    if session.current_since is not None and session.questions:
        delta = max(0, math.floor(now - session.current_since + 0.5))
        spent[session.current_index] += delta
    return spent


def navigate_to(session: QuizSession, new_index: int, now: float) -> QuizSession:
    """Moves to ``new_index``, flushing elapsed time for the previous question.

    Out-of-range indices and moves to the current index leave the session
    unchanged.
    """
    if not 0 <= new_index < len(session.questions):
        return session
    if new_index == session.current_index:
        return session
    return session.model_copy(
        update={
            "time_spent_seconds": _accrue(session, now),
            "current_index": new_index,
            "current_since": now,
        }
    )


def flush_time(session: QuizSession, now: float) -> QuizSession:
    """Closes the running timer, e.g. right before submission."""
    if session.current_since is None:
        return session
    return session.model_copy(
        update={"time_spent_seconds": _accrue(session, now), "current_since": None}
    )


def resume_timer(session: QuizSession, now: float) -> QuizSession:
    """Restarts the timer on the current question after a failed submission."""
    if session.current_since is not None or not session.questions:
        return session
    return session.model_copy(update={"current_since": now})


def select_answer(session: QuizSession, option_index: int) -> QuizSession:
    """Records the chosen option (0-based) for the current question.

    Raises:
        ClientValidationError: If the option does not exist.
    """
    if not session.questions:
        raise ClientValidationError("No hay pregunta activa.")
    question = session.questions[session.current_index]
    if not 0 <= option_index < len(question.options):
        raise ClientValidationError("Opción no válida.")
    answers = list(session.selected_answers)
    answers[session.current_index] = option_index
    return session.model_copy(update={"selected_answers": answers})


def is_complete(session: QuizSession) -> bool:
    """True when every question has an answer."""
    return bool(session.questions) and all(
        answer is not None for answer in session.selected_answers
    )


def is_last(session: QuizSession) -> bool:
    return session.current_index >= len(session.questions) - 1


def build_answers(session: QuizSession) -> list[AnswerRecord] | None:
    """Builds the submission payload, or None when a guard trips.

    Guards: every question answered, one answer per question, no duplicate
    question ids. A tripped guard is logged and no request should be sent.
    """
    if not is_complete(session):
        logger.warning("Submission refused: %s has unanswered questions", session.session_id)
        return None

    answers = [
        AnswerRecord(
            question_id=question.id,
            selected_option=answer + 1,
            time_spent=spent,
        )
        for question, answer, spent in zip(
            session.questions, session.selected_answers, session.time_spent_seconds
        )
        if answer is not None
    ]
    if len(answers) != len(session.questions):
        logger.warning(
            "Submission refused: %d answers for %d questions",
            len(answers),
            len(session.questions),
        )
        return None
    if len({answer.question_id for answer in answers}) != len(answers):
        logger.warning("Submission refused: duplicate question ids in %s", session.session_id)
        return None
    return answers
