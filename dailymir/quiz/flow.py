"""Daily-quiz flow controller: the per-user state machine behind the quiz.

Phases::

    IDLE → CHECKING_STATUS → (ALREADY_COMPLETED | FETCHING_QUESTIONS)
         → ANSWERING → SUBMITTING → RESULTS → CLOSED
    (any) → SESSION_EXPIRED on a 401

ALREADY_COMPLETED is transient and resolves straight into RESULTS. Errors
while checking status or fetching questions set ``error`` with
``retry_available`` and fall back to IDLE. Every entry into RESULTS triggers
exactly one aggregator refresh.

open() is cancel-and-replace: a second call while the first is in flight
cancels the first, which returns silently. exit() closes after a short
delay that a new open() cancels.

Tier 3 orchestration module: imports from client, results.aggregator,
quiz.session, quiz.normalize, schemas, errors.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx

from dailymir.client import AuthenticatedClient, read_payload
from dailymir.errors import LOGIN_PATH, ApiRequestError, SessionExpiredError
from dailymir.quiz import session as quiz_session
from dailymir.quiz.normalize import (
    normalize_most_failed_week,
    normalize_option_index,
    normalize_questions,
)
from dailymir.results.aggregator import ResultsAggregator, to_finite
from dailymir.scheduling import LatestTask
from dailymir.schemas import MostFailedWeek, QuizResult, QuizSession, ResultsView

logger = logging.getLogger(__name__)

EXIT_DELAY_SECONDS = 0.52
MOST_FAILED_RETRIES = 2
MOST_FAILED_BACKOFF_SECONDS = 0.24

ALREADY_COMPLETED_MESSAGE = "Daily ya completado"
NO_QUESTIONS_MESSAGE = "No hay preguntas disponibles para hoy."
NO_QUESTIONS_SERVER_MARKER = "No hay preguntas para hoy"
SIGN_IN_REQUIRED_MESSAGE = "Necesitas iniciar sesión para abrir el cuestionario."
QUESTIONS_FALLBACK = "No se pudieron cargar las preguntas del día."
STATUS_FALLBACK = "No se pudo comprobar estado del daily."
SUBMIT_FALLBACK = "No se pudieron enviar las respuestas."
SUBMISSION_REFUSED_MESSAGE = "No se pudieron preparar las respuestas. Revisa el cuestionario."
MOST_FAILED_FALLBACK = "No se pudo cargar la pregunta más fallada."


class FlowPhase(str, Enum):
    IDLE = "idle"
    CHECKING_STATUS = "checking_status"
    ALREADY_COMPLETED = "already_completed"
    FETCHING_QUESTIONS = "fetching_questions"
    ANSWERING = "answering"
    SUBMITTING = "submitting"
    RESULTS = "results"
    CLOSED = "closed"
    SESSION_EXPIRED = "session_expired"


_IN_QUIZ = (FlowPhase.ANSWERING, FlowPhase.SUBMITTING, FlowPhase.RESULTS)


def _already_completed(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload.get("alreadyCompleted"))


def _server_error(payload: Any) -> str:
    """The ``error`` string of a payload, or the payload itself when it is text."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return ""


class DailyQuizFlow:
    """Drives one user's daily quiz from opening to results.

    Args:
        client: The user's authenticated API client.
        results: The user's results aggregator.
        clock: Monotonic clock in seconds (tests inject a fake).
        exit_delay: Seconds exit() waits before closing.
        most_failed_backoff: Base backoff for the most-failed-week retries.
    """

    def __init__(
        self,
        client: AuthenticatedClient,
        results: ResultsAggregator,
        *,
        clock: Callable[[], float] = time.monotonic,
        exit_delay: float = EXIT_DELAY_SECONDS,
        most_failed_backoff: float = MOST_FAILED_BACKOFF_SECONDS,
    ) -> None:
        self._client = client
        self.results = results
        self._clock = clock
        self._exit_delay = exit_delay
        self._most_failed_backoff = most_failed_backoff
        self._open_runner = LatestTask("daily open")
        self._exit_task: asyncio.Task | None = None

        self.phase = FlowPhase.IDLE
        self.user_id: str | None = None
        self.session: QuizSession | None = None
        self.result: QuizResult | None = None
        self.message: str | None = None
        self.error: str | None = None
        self.retry_available = False
        self.redirect_to: str | None = None
        self.submitting = False
        self.exiting = False

        self.most_failed: MostFailedWeek | None = None
        self.most_failed_message: str | None = None
        self.most_failed_error: str | None = None
        self.most_failed_loading = False

    # -- open -----------------------------------------------------------------

    async def open(self) -> None:
        """Opens the daily quiz (explicit user action).

        Cancels a pending exit. While a quiz is already on screen this only
        keeps it open; otherwise it checks today's status and loads the
        questions. A newer call supersedes one still in flight.
        """
        was_exiting = self._cancel_exit()
        if self.phase in _IN_QUIZ and (was_exiting or not self._open_runner.running):
            return
        await self._open_runner.run(self._open_flow)

    async def _open_flow(self) -> None:
        self.error = None
        self.message = None
        self.retry_available = False
        self.redirect_to = None

        session = await self._client.accessor.get_session()
        if session is None:
            self.message = SIGN_IN_REQUIRED_MESSAGE
            self.redirect_to = LOGIN_PATH
            self.phase = FlowPhase.IDLE
            return
        self.user_id = session.user.id

        try:
            if await self._check_status():
                await self._fetch_questions()
        except SessionExpiredError:
            self._expire()

    async def _check_status(self) -> bool:
        """Returns True when no completion exists and questions should load."""
        self.phase = FlowPhase.CHECKING_STATUS
        try:
            response = await self._client.get("/api/results/today")
        except httpx.TransportError:
            logger.warning("Daily status check failed", exc_info=True)
            self._fail(STATUS_FALLBACK)
            return False

        payload = read_payload(response)
        if response.is_success:
            await self._enter_results(today=payload)
            return False
        if response.status_code == 403 and _already_completed(payload):
            self.message = ALREADY_COMPLETED_MESSAGE
            await self._enter_results(today=payload)
            return False
        if response.status_code != 404:
            self._fail(
                _server_error(payload)
                or f"No se pudo comprobar estado del daily ({response.status_code})"
            )
            return False
        return True

    async def _fetch_questions(self) -> None:
        self.phase = FlowPhase.FETCHING_QUESTIONS
        self.results.reset()
        try:
            response = await self._client.get("/api/daily-questions")
        except httpx.TransportError:
            logger.warning("Daily questions fetch failed", exc_info=True)
            self._fail(QUESTIONS_FALLBACK)
            return

        payload = read_payload(response)
        if response.is_success:
            questions = normalize_questions(payload)
        elif response.status_code == 403 and _already_completed(payload):
            self.message = ALREADY_COMPLETED_MESSAGE
            await self._enter_results()
            return
        else:
            server_message = _server_error(payload)
            if response.status_code == 404 and NO_QUESTIONS_SERVER_MARKER in server_message:
                questions = []
            else:
                self._fail(server_message or QUESTIONS_FALLBACK)
                return

        if not questions:
            self._fail(NO_QUESTIONS_MESSAGE)
            return

        self.session = quiz_session.start_session(questions, self._clock())
        self.result = None
        self.phase = FlowPhase.ANSWERING
        logger.info("Daily quiz %s started with %d questions", self.session.session_id, len(questions))

    # -- answering ------------------------------------------------------------

    def select(self, option_index: int) -> None:
        """Records the answer (0-based option) for the current question.

        Raises:
            ClientValidationError: If the option does not exist.
        """
        if self.phase is not FlowPhase.ANSWERING or self.session is None:
            return
        self.session = quiz_session.select_answer(self.session, option_index)

    def go_to(self, index: int) -> None:
        if self.phase is not FlowPhase.ANSWERING or self.session is None:
            return
        self.session = quiz_session.navigate_to(self.session, index, self._clock())

    def previous(self) -> None:
        if self.session is None or self.session.current_index == 0:
            return
        self.go_to(self.session.current_index - 1)

    async def next(self) -> None:
        """Advances; on the last question it submits instead."""
        if self.phase is not FlowPhase.ANSWERING or self.session is None:
            return
        if quiz_session.is_last(self.session):
            await self.submit()
            return
        self.go_to(self.session.current_index + 1)

    @property
    def can_submit(self) -> bool:
        return (
            self.phase is FlowPhase.ANSWERING
            and not self.submitting
            and self.session is not None
            and quiz_session.is_complete(self.session)
        )

    # -- submission -----------------------------------------------------------

    async def submit(self) -> None:
        """Submits the answers. A no-op while disabled (see can_submit)."""
        if not self.can_submit or self.session is None:
            return

        self.session = quiz_session.flush_time(self.session, self._clock())
        answers = quiz_session.build_answers(self.session)
        if answers is None:
            self.error = SUBMISSION_REFUSED_MESSAGE
            self.session = quiz_session.resume_timer(self.session, self._clock())
            return

        self.submitting = True
        self.phase = FlowPhase.SUBMITTING
        self.error = None
        body = {
            "sessionId": self.session.session_id,
            "answers": [answer.to_wire() for answer in answers],
        }
        try:
            response = await self._client.post("/api/submit-answers", json=body)
        except SessionExpiredError:
            self.submitting = False
            self._expire()
            return
        except httpx.TransportError:
            logger.warning("Submission failed", exc_info=True)
            self.submitting = False
            self._submission_failed(SUBMIT_FALLBACK)
            return
        self.submitting = False

        payload = read_payload(response)
        if not response.is_success:
            if _already_completed(payload):
                self.message = ALREADY_COMPLETED_MESSAGE
                await self._guarded_enter_results()
                return
            server_message = _server_error(payload) if isinstance(payload, dict) else ""
            self._submission_failed(
                server_message or f"Error enviando respuestas ({response.status_code})"
            )
            return

        data = payload if isinstance(payload, dict) else {}
        self.result = QuizResult(
            correct_count=int(to_finite(data.get("correctCount"), 0)),
            total_questions=int(to_finite(data.get("totalQuestions"), len(self.session.questions))),
            percentage=to_finite(data.get("percentage"), 0),
            score=to_finite(data.get("score"), 0),
            total_time=to_finite(data.get("totalTime"), 0),
        )
        logger.info(
            "Daily quiz %s submitted: %d/%d",
            self.session.session_id,
            self.result.correct_count,
            self.result.total_questions,
        )
        await self._guarded_enter_results()

    def _submission_failed(self, message: str) -> None:
        self.error = message
        self.phase = FlowPhase.ANSWERING
        if self.session is not None:
            self.session = quiz_session.resume_timer(self.session, self._clock())

    # -- results --------------------------------------------------------------

    async def _enter_results(self, today: Any = None) -> None:
        """Enters RESULTS and triggers the single refresh for this entry."""
        if self.phase is FlowPhase.CHECKING_STATUS:
            self.phase = FlowPhase.ALREADY_COMPLETED
        if today is not None:
            self.results.hold_today(today)
        self.phase = FlowPhase.RESULTS
        await self.results.refresh(include_today=self.results.today is None)

    async def _guarded_enter_results(self) -> None:
        try:
            await self._enter_results()
        except SessionExpiredError:
            self._expire()

    def view(self) -> ResultsView | None:
        """The results view, derived from held snapshots. None outside RESULTS."""
        if self.phase is not FlowPhase.RESULTS:
            return None
        return self.results.view(
            user_id=self.user_id,
            quiz_result=self.result,
            questions=self.session.questions if self.session is not None else (),
        )

    # -- close / exit -------------------------------------------------------

    def close(self) -> None:
        """Drops the attempt and its result. No network."""
        self._cancel_exit()
        self._open_runner.cancel()
        self.session = None
        self.result = None
        self.results.reset()
        self.submitting = False
        self.message = None
        self.error = None
        self.retry_available = False
        self.phase = FlowPhase.CLOSED

    def exit(self) -> None:
        """Closes after the exit delay. open() before it elapses cancels it."""
        self._cancel_exit()
        self.exiting = True
        self._exit_task = asyncio.ensure_future(self._close_after_delay())

    async def _close_after_delay(self) -> None:
        await asyncio.sleep(self._exit_delay)
        self._exit_task = None
        self.exiting = False
        self.close()

    def _cancel_exit(self) -> bool:
        pending = self._exit_task is not None and not self._exit_task.done()
        if pending:
            self._exit_task.cancel()
        self._exit_task = None
        self.exiting = False
        return pending

    # -- most failed question of the week ------------------------------------

    async def load_most_failed_week(self) -> None:
        """Fetches the week's most-failed question with bounded retries.

        A ``{message}`` body means there is no data this week and is shown as
        a message, not an error.
        """
        self.most_failed_loading = True
        self.most_failed_error = None
        try:
            payload = await self._client.fetch_with_retry(
                "GET",
                "/api/stats/most-failed-week",
                retries=MOST_FAILED_RETRIES,
                backoff_seconds=self._most_failed_backoff,
            )
        except SessionExpiredError:
            self._expire()
            return
        except (ApiRequestError, httpx.TransportError) as exc:
            self.most_failed = None
            self.most_failed_message = None
            self.most_failed_error = str(exc) or MOST_FAILED_FALLBACK
            return
        finally:
            self.most_failed_loading = False

        if not isinstance(payload, dict):
            self.most_failed = None
            self.most_failed_error = MOST_FAILED_FALLBACK
        elif "message" in payload:
            self.most_failed = None
            self.most_failed_message = str(payload["message"])
        else:
            self.most_failed = normalize_most_failed_week(payload)
            self.most_failed_message = None

    # -- helpers -------------------------------------------------------------

    def _fail(self, message: str) -> None:
        self.error = message
        self.retry_available = True
        self.phase = FlowPhase.IDLE

    def _expire(self) -> None:
        logger.info("Session expired during the daily flow")
        self.session = None
        self.result = None
        self.submitting = False
        self.redirect_to = self._client.accessor.redirect_to or LOGIN_PATH
        self.phase = FlowPhase.SESSION_EXPIRED

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready state for the BFF routes."""
        session = self.session
        current = None
        if session is not None and session.questions and self.phase is FlowPhase.ANSWERING:
            question = session.questions[session.current_index]
            current = {
                "index": session.current_index,
                "id": question.id,
                "subject": question.subject,
                "statement": question.statement,
                "options": question.options,
                "selected": session.selected_answers[session.current_index],
            }
        view = self.view()
        most_failed = None
        if self.most_failed is not None:
            most_failed = self.most_failed.model_dump()
            most_failed["last_answer_index"] = normalize_option_index(
                self.most_failed.your_last_answer, len(self.most_failed.options)
            )
        return {
            "phase": self.phase.value,
            "session_id": session.session_id if session is not None else None,
            "total_questions": len(session.questions) if session is not None else 0,
            "answered": sum(a is not None for a in session.selected_answers) if session else 0,
            "current": current,
            "can_submit": self.can_submit,
            "submitting": self.submitting,
            "exiting": self.exiting,
            "message": self.message,
            "error": self.error,
            "retry_available": self.retry_available,
            "redirect_to": self.redirect_to,
            "result": self.result.model_dump() if self.result is not None else None,
            "results": view.model_dump() if view is not None else None,
            "most_failed_week": {
                "question": most_failed,
                "message": self.most_failed_message,
                "error": self.most_failed_error,
                "loading": self.most_failed_loading,
            },
        }

    async def aclose(self) -> None:
        self._cancel_exit()
        await self._open_runner.close()
        await self.results.close()
