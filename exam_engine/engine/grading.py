"""Manual (or external AI) grading of responses after submission."""

from __future__ import annotations

import logging

from exam_engine.engine.scoring import score_attempt
from exam_engine.errors import ConcurrencyError, NotFoundError, ValidationError
from exam_engine.models import ScoreReport
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


async def build_report(repo: ExamRepository, attempt_id: str) -> ScoreReport:
    attempt = await repo.get_attempt(attempt_id)
    questions = await repo.get_questions(attempt.mock_test_id)
    responses = await repo.get_responses(attempt_id)
    return score_attempt(sorted(questions, key=lambda q: q.order), responses)


async def grade_response(
    repo: ExamRepository,
    attempt_id: str,
    question_id: str,
    score: float,
    feedback: str = "",
    graded_by: str = "manual",
) -> ScoreReport:
    """Record a score for one response and recompute the attempt aggregate.

    Grading opens once the attempt is completed; only its
    ``total_score``/``percentage_score`` are refreshed, status and
    ``completed_at`` are left alone.
    """
    attempt = await repo.get_attempt(attempt_id)
    if not attempt.is_completed:
        raise ConcurrencyError("attempt is still in progress", attempt_id=attempt_id)
    questions = {q.id: q for q in await repo.get_questions(attempt.mock_test_id)}
    question = questions.get(question_id)
    if question is None:
        raise NotFoundError("question not found in this test", question_id=question_id)
    if not 0 <= score <= question.marks:
        raise ValidationError(f"score must be between 0 and {question.marks}", question_id=question_id)

    await repo.grade_response(attempt_id, question_id, score, feedback, graded_by)
    report = await build_report(repo, attempt_id)

    await repo.update_attempt_scores(attempt_id, report.total_score, report.percentage_score)
    logger.info(
        f"Graded {question_id} on attempt {attempt_id}: {score}/{question.marks} by {graded_by}; "
        f"aggregate now {report.total_score}/{report.total_possible_score}"
    )
    return report
