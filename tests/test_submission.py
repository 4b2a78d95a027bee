from __future__ import annotations

import asyncio

import pytest

from exam_engine.engine.session import ExamSession
from exam_engine.errors import TransientPersistenceError
from exam_engine.models import AttemptStatus, GradeOutcome, Question, QuestionType


async def open_session(repo, anchors, attempt, now) -> ExamSession:
    return await ExamSession.open(repo, anchors, attempt.id, now=now)


async def test_right_and_wrong_answer_submit_to_fifty_percent(repo, anchors, attempt, now):
    session = await open_session(repo, anchors, attempt, now)
    session.record("q1", "Paris")
    session.record("q2", "Bonn")

    result = await session.submit()

    assert not result.duplicate
    assert result.attempt.status == AttemptStatus.completed
    assert result.attempt.total_score == 5
    assert result.attempt.percentage_score == 50
    stored = repo.attempts[attempt.id]
    assert (stored.total_score, stored.percentage_score) == (5, 50)
    assert stored.completed_at is not None


async def test_submit_waits_for_answers_still_in_flight(repo, anchors, attempt, now):
    gate = repo.hold("create_response")
    session = await open_session(repo, anchors, attempt, now)
    session.record("q1", "Paris")
    session.record("q2", "Berlin")

    submitting = asyncio.create_task(session.submit())
    await asyncio.sleep(0)
    assert not submitting.done()

    gate.set()
    result = await submitting

    assert result.attempt.percentage_score == 100
    assert len(repo.responses) == 2
    assert result.unsaved_question_ids == []


async def test_two_immediate_submits_complete_once(repo, anchors, attempt, now):
    session = await open_session(repo, anchors, attempt, now)
    session.record("q1", "Paris")

    first, second = await asyncio.gather(session.submit(), session.submit())

    assert repo.calls["complete_attempt"] == 1
    assert [first.duplicate, second.duplicate] == [False, True]
    assert first.attempt.completed_at == second.attempt.completed_at

    completed_at = repo.attempts[attempt.id].completed_at
    third = await session.submit()
    assert third.duplicate
    assert repo.calls["complete_attempt"] == 1
    assert repo.attempts[attempt.id].completed_at == completed_at


async def test_submit_absorbs_completion_done_elsewhere(repo, anchors, attempt, now):
    session = await open_session(repo, anchors, attempt, now)
    await repo.complete_attempt(attempt.id, 10, 100)

    result = await session.submit()

    assert result.duplicate
    assert result.attempt.total_score == 10


async def test_failed_completion_stays_in_progress_and_can_be_retried(repo, anchors, attempt, now):
    repo.fail("complete_attempt")
    session = await open_session(repo, anchors, attempt, now)
    session.record("q1", "Paris")

    with pytest.raises(TransientPersistenceError):
        await session.submit()

    assert repo.attempts[attempt.id].status == AttemptStatus.in_progress
    assert session.last_error is not None
    assert anchors.values  # anchor kept until completion succeeds

    result = await session.submit()
    assert not result.duplicate
    assert result.attempt.status == AttemptStatus.completed
    assert session.last_error is None
    assert anchors.values == {}


async def test_unsaved_answers_still_count_and_are_reported(repo, anchors, attempt, now):
    repo.fail("create_response", times=3)
    session = await open_session(repo, anchors, attempt, now)
    await session.record("q1", "Paris")

    result = await session.submit()

    assert result.attempt.total_score == 5
    assert result.unsaved_question_ids == ["q1"]


async def test_essay_is_flagged_pending_at_submission(repo, anchors, attempt, now):
    await repo.save_question(
        Question(id="q3", mock_test_id=attempt.mock_test_id, question_type=QuestionType.essay, marks=10, order=3)
    )
    session = await open_session(repo, anchors, attempt, now)
    session.record("q1", "Paris")
    session.record("q2", "Berlin")
    session.record("q3", "An essay about capitals.")

    result = await session.submit()

    assert result.report.total_possible_score == 10
    assert result.report.pending_question_ids == ["q3"]
    assert result.report.count(GradeOutcome.incorrect) == 0
    assert result.attempt.percentage_score == 100
    assert result.attempt.total_score <= result.report.max_possible_score
