from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from exam_engine.engine.answers import AnswerStore
from exam_engine.engine.clock import SessionClock
from exam_engine.engine.scoring import score_attempt
from exam_engine.errors import ConcurrencyError
from exam_engine.models import Question, ScoreReport, StudentAttempt, SubmissionResult
from exam_engine.observability import get_tracer
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    """Drives the single in_progress -> completed transition of an attempt.

    An explicit submit and a clock expiry can both arrive for the same
    attempt. The attempt status plus the in-flight task form the idempotency
    guard: whoever claims it first completes the attempt, everyone else gets
    the same outcome back with ``duplicate=True``.
    """

    def __init__(
        self,
        repo: ExamRepository,
        attempt: StudentAttempt,
        questions: Sequence[Question],
        answers: AnswerStore,
        clock: SessionClock,
    ) -> None:
        self.repo = repo
        self.attempt = attempt
        self.questions = list(questions)
        self.answers = answers
        self.clock = clock
        self.report: Optional[ScoreReport] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def submit(self) -> SubmissionResult:
        try:
            task = self._claim()
        except ConcurrencyError as exc:
            logger.info(f"Duplicate submit for attempt {self.attempt.id} absorbed: {exc.message}")
            return await self._current_outcome()
        # Shielded so a cancelled caller does not abort a completion already under way.
        return await asyncio.shield(task)

    def _claim(self) -> asyncio.Task:
        if self.attempt.is_completed:
            raise ConcurrencyError("attempt already completed", attempt_id=self.attempt.id)
        if self.in_flight:
            raise ConcurrencyError("submission already in flight", attempt_id=self.attempt.id)
        self._in_flight = asyncio.create_task(self._complete(), name=f"submit-{self.attempt.id}")
        return self._in_flight

    async def _current_outcome(self) -> SubmissionResult:
        task = self._in_flight
        if task is not None and not task.done():
            result = await asyncio.shield(task)
            return result.model_copy(update={"duplicate": True})
        return SubmissionResult(attempt=self.attempt, report=self.report, duplicate=True)

    async def _complete(self) -> SubmissionResult:
        tracer = get_tracer("submission")
        attempt_id = self.attempt.id
        with tracer.start_as_current_span("attempt.submit") as span:
            span.set_attribute("attempt.id", attempt_id)

            current = await self.repo.get_attempt(attempt_id)
            if current.is_completed:
                self.attempt = current
                span.set_attribute("submit.duplicate", True)
                return SubmissionResult(attempt=current, report=self.report, duplicate=True)

            unsaved = await self.answers.flush(retry_failed=True)
            if unsaved:
                logger.warning(f"Attempt {attempt_id} submitting with unsaved answers: {sorted(unsaved)}")

            with tracer.start_as_current_span("attempt.score"):
                report = score_attempt(self.questions, self.answers.snapshot())
            span.set_attribute("score.total", report.total_score)
            span.set_attribute("score.percentage", report.percentage_score)

            try:
                completed = await self.repo.complete_attempt(attempt_id, report.total_score, report.percentage_score)
            except ConcurrencyError:
                self.attempt = await self.repo.get_attempt(attempt_id)
                span.set_attribute("submit.duplicate", True)
                return SubmissionResult(attempt=self.attempt, report=self.report, duplicate=True)

            self.attempt = completed
            self.report = report
            self.clock.stop()
            await self.clock.clear()

        logger.info(
            f"Attempt {attempt_id} completed: {report.total_score}/{report.total_possible_score} "
            f"({report.percentage_score}%), {len(report.pending_question_ids)} pending grading"
        )
        return SubmissionResult(attempt=completed, report=report, unsaved_question_ids=sorted(unsaved))
