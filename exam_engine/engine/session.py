from __future__ import annotations

import asyncio
import logging
from typing import Optional

from exam_engine.engine.answers import AnswerStore
from exam_engine.engine.clock import Now, SessionClock, format_remaining, warning_level
from exam_engine.engine.navigator import Navigator
from exam_engine.engine.submission import SubmissionCoordinator
from exam_engine.errors import ConcurrencyError, ExamEngineError
from exam_engine.models import MockTest, SessionState, StudentAttempt, SubmissionResult
from exam_engine.settings import settings
from exam_engine.storage.anchors import AnchorStore
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


class ExamSession:
    """One student's live view of an attempt.

    Build with :meth:`open`. The presentation layer reads
    ``current_question_index``, ``remaining_seconds`` and
    ``answered_question_ids`` and drives ``navigate()``, ``record()`` and
    ``submit()``. Clock expiry triggers the same ``submit()``.
    """

    def __init__(
        self,
        mock_test: MockTest,
        answers: AnswerStore,
        navigator: Navigator,
        clock: SessionClock,
        coordinator: SubmissionCoordinator,
    ) -> None:
        self.mock_test = mock_test
        self.answers = answers
        self.navigator = navigator
        self.clock = clock
        self.coordinator = coordinator
        self.last_error: Optional[str] = None

    @classmethod
    async def open(
        cls,
        repo: ExamRepository,
        anchors: AnchorStore,
        attempt_id: str,
        *,
        now: Optional[Now] = None,
        tick_seconds: Optional[float] = None,
    ) -> "ExamSession":
        attempt = await repo.get_attempt(attempt_id)
        mock_test = await repo.get_mock_test(attempt.mock_test_id)
        questions = await repo.get_questions(mock_test.id)

        answers = AnswerStore(repo, questions)
        await answers.load(attempt.id)
        navigator = Navigator(questions, answers)
        clock = SessionClock(
            anchors,
            now=now,
            tick_seconds=settings.clock_tick_seconds if tick_seconds is None else tick_seconds,
        )
        coordinator = SubmissionCoordinator(repo, attempt, navigator.questions, answers, clock)
        session = cls(mock_test, answers, navigator, clock, coordinator)

        if not attempt.is_completed:
            await clock.initialize(attempt.id, attempt.started_at, mock_test.duration_seconds)
            clock.on_expired(session._on_expired)
        logger.info(f"Opened session for attempt {attempt.id} ({len(questions)} questions)")
        return session

    # ----- presentation contract -----

    @property
    def attempt(self) -> StudentAttempt:
        return self.coordinator.attempt

    @property
    def current_question_index(self) -> int:
        return self.navigator.current_question_index

    @property
    def remaining_seconds(self) -> int:
        if self.attempt.is_completed:
            return 0
        return self.clock.remaining_seconds

    @property
    def answered_question_ids(self) -> set[str]:
        return self.answers.answered_question_ids

    def navigate(self, index: int) -> None:
        self.navigator.navigate(index)

    def record(self, question_id: str, value: object) -> asyncio.Task:
        if self.attempt.is_completed or self.coordinator.in_flight:
            raise ConcurrencyError("attempt is no longer accepting answers", attempt_id=self.attempt.id)
        return self.answers.record(question_id, value)

    async def submit(self) -> SubmissionResult:
        try:
            result = await self.coordinator.submit()
        except ExamEngineError as exc:
            self.last_error = exc.message
            raise
        self.last_error = None
        return result

    def start(self) -> None:
        if not self.attempt.is_completed:
            self.clock.start()

    async def refresh(self) -> int:
        """Tick once outside the loop, e.g. when a client polls."""
        if self.attempt.is_completed:
            return 0
        return await self.clock.tick()

    def close(self) -> None:
        # Stops the countdown only. Answer writers keep running to completion.
        self.clock.stop()

    def state(self) -> SessionState:
        remaining = self.remaining_seconds
        return SessionState(
            attempt_id=self.attempt.id,
            mock_test_id=self.mock_test.id,
            status=self.attempt.status,
            current_question_index=self.current_question_index,
            current_question=self.navigator.current_question,
            remaining_seconds=remaining,
            remaining_display=format_remaining(remaining),
            time_warning=warning_level(remaining, settings.time_warning_seconds, settings.time_critical_seconds),
            answered_question_ids=sorted(self.answered_question_ids),
            unsaved_question_ids=sorted(self.answers.unsaved_question_ids),
            progress=self.navigator.progress(),
            questions=self.navigator.statuses(),
            last_error=self.last_error,
        )

    async def _on_expired(self, attempt_id: str) -> None:
        logger.info(f"Time is up for attempt {attempt_id}, auto-submitting")
        try:
            await self.submit()
        except ExamEngineError as exc:
            # Kept on the session; the expiry condition still holds so submit() can be retried.
            logger.error(f"Auto-submit failed for attempt {attempt_id}: {exc.message}")
