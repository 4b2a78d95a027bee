"""Score an attempt from its questions and responses.

Pure functions only: nothing here touches storage, so a report can be
recomputed at any time for display or audit.

Grading is table driven. ``GRADERS`` maps each question type to a function
``(question, response_value) -> bool | None`` where ``None`` means the type
is not auto-gradable and the question stays pending until a score is
recorded for it.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

from exam_engine.models import (
    GradeOutcome,
    Question,
    QuestionGrade,
    QuestionType,
    ResponseValue,
    ScoreReport,
    StudentResponse,
)

Grader = Callable[[Question, ResponseValue], Optional[bool]]


def grade_multiple_choice(question: Question, value: ResponseValue) -> bool:
    correct = question.correct_option
    return correct is not None and isinstance(value, str) and value == correct.text


def grade_exact_text(question: Question, value: ResponseValue) -> bool:
    # Exact match, case and whitespace sensitive.
    expected = question.correct_answer
    if expected is None or not isinstance(value, str):
        return False
    if isinstance(expected, str):
        return value == expected
    return value in expected


def not_auto_graded(question: Question, value: ResponseValue) -> None:
    return None


GRADERS: dict[QuestionType, Grader] = {
    QuestionType.multiple_choice: grade_multiple_choice,
    QuestionType.fill_blank: grade_exact_text,
    QuestionType.short_answer: grade_exact_text,
    QuestionType.essay: not_auto_graded,
    QuestionType.speaking: not_auto_graded,
}


def is_auto_gradable(question_type: QuestionType) -> bool:
    return GRADERS[question_type] is not not_auto_graded


def _is_blank(value: ResponseValue) -> bool:
    if isinstance(value, str):
        return value == ""
    return not value


def percentage(total_score: Union[int, float], total_possible: int) -> int:
    """``round(100 * total / possible)`` with halves rounded up; 0 if nothing is possible."""
    if total_possible <= 0:
        return 0
    ratio = Decimal(100) * Decimal(str(total_score)) / Decimal(total_possible)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def grade_question(question: Question, response: Optional[StudentResponse]) -> QuestionGrade:
    marks = question.marks
    if response is not None and response.score is not None:
        awarded = min(max(float(response.score), 0.0), float(marks))
        return QuestionGrade(
            question_id=question.id,
            question_type=question.question_type,
            marks=marks,
            outcome=GradeOutcome.graded,
            awarded=awarded,
        )

    grader = GRADERS[question.question_type]
    if grader is not_auto_graded:
        outcome = GradeOutcome.pending
    elif response is None or _is_blank(response.response):
        outcome = GradeOutcome.unanswered
    elif grader(question, response.response):
        outcome = GradeOutcome.correct
    else:
        outcome = GradeOutcome.incorrect

    return QuestionGrade(
        question_id=question.id,
        question_type=question.question_type,
        marks=marks,
        outcome=outcome,
        awarded=float(marks) if outcome == GradeOutcome.correct else 0.0,
    )


def score_attempt(
    questions: Sequence[Question],
    responses: Union[Iterable[StudentResponse], Mapping[str, StudentResponse]],
) -> ScoreReport:
    if isinstance(responses, Mapping):
        by_question = dict(responses)
    else:
        by_question = {r.question_id: r for r in responses}

    grades = [grade_question(q, by_question.get(q.id)) for q in questions]

    total_score = sum(g.awarded for g in grades if g.counts_toward_total)
    total_possible = sum(g.marks for g in grades if g.counts_toward_total)
    pending_marks = sum(g.marks for g in grades if not g.counts_toward_total)

    return ScoreReport(
        grades=grades,
        total_score=total_score,
        total_possible_score=total_possible,
        max_possible_score=total_possible + pending_marks,
        pending_marks=pending_marks,
        percentage_score=percentage(total_score, total_possible),
    )
