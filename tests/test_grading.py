from __future__ import annotations

from datetime import timedelta

import pytest

from exam_engine.engine.attempts import is_available, start_attempt
from exam_engine.engine.grading import build_report, grade_response
from exam_engine.engine.session import ExamSession
from exam_engine.errors import ConcurrencyError, NotFoundError, ValidationError
from exam_engine.models import AttemptStatus, GradeOutcome, MockTest, Question, QuestionType

from conftest import T0


async def test_start_attempt_creates_then_resumes(repo, two_mcq_test):
    first = await start_attempt(repo, "student-9", two_mcq_test.id)
    again = await start_attempt(repo, "student-9", two_mcq_test.id)

    assert first.status == AttemptStatus.in_progress
    assert again.id == first.id
    assert len(repo.attempts) == 1


async def test_start_attempt_after_completion_creates_a_new_one(repo, two_mcq_test):
    first = await start_attempt(repo, "student-9", two_mcq_test.id)
    await repo.complete_attempt(first.id, 0, 0)

    second = await start_attempt(repo, "student-9", two_mcq_test.id)
    assert second.id != first.id


async def test_start_attempt_requires_an_existing_available_test(repo):
    with pytest.raises(NotFoundError):
        await start_attempt(repo, "student-9", "nope")

    await repo.save_mock_test(MockTest(id="off", duration=10, is_active=False))
    with pytest.raises(ValidationError):
        await start_attempt(repo, "student-9", "off")


def test_availability_honours_schedule():
    scheduled = MockTest(duration=10, scheduled_date=T0 + timedelta(hours=1))
    assert not is_available(scheduled, now=T0)
    assert is_available(scheduled, now=T0 + timedelta(hours=1))
    assert is_available(MockTest(duration=10), now=T0)


@pytest.fixture
async def essay_attempt(repo, attempt, anchors, now):
    await repo.save_question(
        Question(id="q3", mock_test_id=attempt.mock_test_id, question_type=QuestionType.essay, marks=10, order=3)
    )
    session = await ExamSession.open(repo, anchors, attempt.id, now=now)
    session.record("q1", "Paris")
    session.record("q2", "Bonn")
    session.record("q3", "Capitals are where governments sit.")
    await session.submit()
    return attempt


async def test_manual_grade_updates_completed_attempt_scores(repo, essay_attempt):
    before = repo.attempts[essay_attempt.id]
    assert (before.total_score, before.percentage_score) == (5, 50)
    completed_at = before.completed_at

    report = await grade_response(repo, essay_attempt.id, "q3", 8, feedback="Good structure")

    assert report.total_score == 13
    assert report.total_possible_score == 20
    assert report.pending_question_ids == []
    after = repo.attempts[essay_attempt.id]
    assert (after.total_score, after.percentage_score) == (13, 65)
    assert after.completed_at == completed_at
    assert after.status == AttemptStatus.completed

    graded = repo.responses[(essay_attempt.id, "q3")]
    assert graded.graded_by == "manual" and graded.graded_at is not None


async def test_grade_must_fit_question_marks(repo, essay_attempt):
    with pytest.raises(ValidationError):
        await grade_response(repo, essay_attempt.id, "q3", 11)
    with pytest.raises(NotFoundError):
        await grade_response(repo, essay_attempt.id, "nope", 1)


async def test_grading_waits_for_submission(repo, attempt, anchors, now):
    await repo.save_question(
        Question(id="q3", mock_test_id=attempt.mock_test_id, question_type=QuestionType.essay, marks=10, order=3)
    )
    session = await ExamSession.open(repo, anchors, attempt.id, now=now)
    session.record("q1", "Paris")
    session.record("q3", "An essay.")
    await session.answers.flush()

    with pytest.raises(ConcurrencyError):
        await grade_response(repo, attempt.id, "q3", 8)
    assert repo.responses[(attempt.id, "q3")].score is None

    await session.submit()
    report = await grade_response(repo, attempt.id, "q3", 8)

    stored = repo.attempts[attempt.id]
    assert (stored.total_score, stored.percentage_score) == (13, 65)
    recomputed = await build_report(repo, attempt.id)
    assert (recomputed.total_score, recomputed.percentage_score) == (report.total_score, report.percentage_score)


async def test_build_report_recomputes_from_storage(repo, essay_attempt):
    report = await build_report(repo, essay_attempt.id)

    assert [g.outcome for g in report.grades] == [GradeOutcome.correct, GradeOutcome.incorrect, GradeOutcome.pending]
    assert report.percentage_score == repo.attempts[essay_attempt.id].percentage_score
