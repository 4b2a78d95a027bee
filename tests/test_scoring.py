from __future__ import annotations

import json

import pytest

from exam_engine.engine.scoring import GRADERS, is_auto_gradable, percentage, score_attempt
from exam_engine.models import GradeOutcome, Question, QuestionType, StudentResponse

from conftest import mcq


def answer(qid: str, value, score=None) -> StudentResponse:
    return StudentResponse(attempt_id="a1", question_id=qid, response=value, score=score)


def text_question(qid: str, qtype: QuestionType, correct, marks: int = 2) -> Question:
    return Question(id=qid, mock_test_id="mt", question_type=qtype, correct_answer=correct, marks=marks)


def essay(qid: str, marks: int = 10) -> Question:
    return Question(id=qid, mock_test_id="mt", question_type=QuestionType.essay, marks=marks)


def test_every_question_type_has_a_grader():
    assert set(GRADERS) == set(QuestionType)
    assert is_auto_gradable(QuestionType.multiple_choice)
    assert not is_auto_gradable(QuestionType.speaking)


def test_one_right_one_wrong_multiple_choice_scores_half():
    questions = [mcq("mt", "q1", "Paris", "Lyon"), mcq("mt", "q2", "Berlin", "Bonn")]
    report = score_attempt(questions, [answer("q1", "Paris"), answer("q2", "Bonn")])

    assert report.total_score == 5
    assert report.total_possible_score == 10
    assert report.percentage_score == 50
    assert [g.outcome for g in report.grades] == [GradeOutcome.correct, GradeOutcome.incorrect]


def test_serialized_options_are_decoded_before_comparison():
    raw_options = [
        json.dumps({"id": "o1", "text": "Paris", "isCorrect": True}),
        json.dumps({"id": "o2", "text": "Lyon", "isCorrect": False}),
        "not json at all",
    ]
    question = Question.model_validate(
        {"id": "q1", "mock_test_id": "mt", "question_type": "multiple_choice", "options": raw_options, "marks": 3}
    )

    assert question.correct_option is not None and question.correct_option.text == "Paris"
    assert question.options[2].text == "not json at all" and not question.options[2].is_correct
    assert score_attempt([question], [answer("q1", "Paris")]).total_score == 3


def test_fill_blank_accepts_any_listed_answer():
    question = text_question("q1", QuestionType.fill_blank, ["Paris", "paris"])
    report = score_attempt([question], [answer("q1", "Paris")])
    assert report.grades[0].outcome == GradeOutcome.correct


def test_text_grading_is_exact_and_case_sensitive():
    question = text_question("q1", QuestionType.short_answer, "Paris")
    for value in ("PARIS", " Paris", "Paris "):
        assert score_attempt([question], [answer("q1", value)]).grades[0].outcome == GradeOutcome.incorrect


def test_essay_is_pending_and_excluded_from_auto_graded_totals():
    questions = [
        mcq("mt", "q1", "A", "B", marks=4),
        text_question("q2", QuestionType.fill_blank, "x", marks=6),
        essay("q3", marks=10),
    ]
    responses = [answer("q1", "A"), answer("q2", "x"), answer("q3", "A long essay")]
    report = score_attempt(questions, responses)

    assert report.total_possible_score == 10
    assert report.pending_marks == 10
    assert report.max_possible_score == 20
    assert report.total_score == 10
    assert report.percentage_score == 100
    assert report.pending_question_ids == ["q3"]
    assert report.count(GradeOutcome.incorrect) == 0


def test_recorded_essay_score_is_included_on_recompute():
    questions = [mcq("mt", "q1", "A", "B", marks=4), essay("q2", marks=6)]
    report = score_attempt(questions, [answer("q1", "A"), answer("q2", "essay", score=3)])

    assert report.grades[1].outcome == GradeOutcome.graded
    assert report.total_score == 7
    assert report.total_possible_score == 10
    assert report.percentage_score == 70


def test_manual_scores_are_clamped_to_marks():
    report = score_attempt([essay("q1", marks=5)], [answer("q1", "text", score=50)])
    assert report.total_score == 5
    assert report.total_score <= report.total_possible_score


def test_unanswered_questions_count_toward_possible_score():
    questions = [mcq("mt", "q1", "A", "B"), mcq("mt", "q2", "C", "D")]
    report = score_attempt(questions, {"q1": answer("q1", "A"), "q2": answer("q2", "")})

    assert report.grades[1].outcome == GradeOutcome.unanswered
    assert report.total_possible_score == 10
    assert report.percentage_score == 50


def test_no_possible_marks_gives_zero_percent():
    assert score_attempt([], []).percentage_score == 0
    assert score_attempt([essay("q1")], []).percentage_score == 0


@pytest.mark.parametrize(
    "total, possible, expected",
    [(1, 8, 13), (1, 3, 33), (2, 3, 67), (0, 7, 0), (7, 7, 100), (5, 0, 0)],
)
def test_percentage_rounds_half_up(total, possible, expected):
    assert percentage(total, possible) == expected
