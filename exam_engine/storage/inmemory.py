from __future__ import annotations

from typing import Dict, Optional, Tuple

from exam_engine.errors import ConcurrencyError, NotFoundError
from exam_engine.models import (
    AttemptStatus,
    MockTest,
    Question,
    ResponseValue,
    StudentAttempt,
    StudentResponse,
    utcnow,
)
from exam_engine.storage.repo import ExamRepository


class InMemoryExamRepository(ExamRepository):
    def __init__(self) -> None:
        self.mock_tests: Dict[str, MockTest] = {}
        self.questions: Dict[str, Question] = {}
        self.attempts: Dict[str, StudentAttempt] = {}
        self.responses: Dict[Tuple[str, str], StudentResponse] = {}

    async def get_mock_test(self, mock_test_id: str) -> MockTest:
        mock_test = self.mock_tests.get(mock_test_id)
        if mock_test is None:
            raise NotFoundError("mock test not found", mock_test_id=mock_test_id)
        return mock_test.model_copy()

    async def save_mock_test(self, mock_test: MockTest) -> MockTest:
        self.mock_tests[mock_test.id] = mock_test.model_copy()
        return mock_test

    async def get_questions(self, mock_test_id: str) -> list[Question]:
        return [q.model_copy() for q in self.questions.values() if q.mock_test_id == mock_test_id]

    async def save_question(self, question: Question) -> Question:
        self.questions[question.id] = question.model_copy()
        return question

    async def create_attempt(self, user_id: str, mock_test_id: str) -> StudentAttempt:
        await self.get_mock_test(mock_test_id)
        attempt = StudentAttempt(user_id=user_id, mock_test_id=mock_test_id, started_at=utcnow())
        self.attempts[attempt.id] = attempt
        return attempt.model_copy()

    async def get_attempt(self, attempt_id: str) -> StudentAttempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("attempt not found", attempt_id=attempt_id)
        return attempt.model_copy()

    async def find_active_attempt(self, user_id: str, mock_test_id: str) -> Optional[StudentAttempt]:
        for attempt in self.attempts.values():
            if (
                attempt.user_id == user_id
                and attempt.mock_test_id == mock_test_id
                and attempt.status == AttemptStatus.in_progress
            ):
                return attempt.model_copy()
        return None

    async def complete_attempt(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("attempt not found", attempt_id=attempt_id)
        if attempt.status == AttemptStatus.completed:
            raise ConcurrencyError("attempt already completed", attempt_id=attempt_id)
        completed = attempt.model_copy(
            update={
                "completed_at": utcnow(),
                "status": AttemptStatus.completed,
                "total_score": total_score,
                "percentage_score": percentage_score,
            }
        )
        self.attempts[attempt_id] = completed
        return completed.model_copy()

    async def update_attempt_scores(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("attempt not found", attempt_id=attempt_id)
        attempt.total_score = total_score
        attempt.percentage_score = percentage_score
        return attempt.model_copy()

    async def get_responses(self, attempt_id: str) -> list[StudentResponse]:
        return [r.model_copy() for (a_id, _), r in self.responses.items() if a_id == attempt_id]

    async def create_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        key = (attempt_id, question_id)
        if key in self.responses:
            raise ConcurrencyError("response already exists", attempt_id=attempt_id, question_id=question_id)
        response = StudentResponse(attempt_id=attempt_id, question_id=question_id, response=value)
        self.responses[key] = response
        return response.model_copy()

    async def update_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        response = self.responses.get((attempt_id, question_id))
        if response is None:
            raise NotFoundError("response not found", attempt_id=attempt_id, question_id=question_id)
        response.response = value
        response.updated_at = utcnow()
        return response.model_copy()

    async def grade_response(
        self, attempt_id: str, question_id: str, score: float, feedback: str, graded_by: str
    ) -> StudentResponse:
        response = self.responses.get((attempt_id, question_id))
        if response is None:
            raise NotFoundError("response not found", attempt_id=attempt_id, question_id=question_id)
        response.score = score
        response.feedback = feedback
        response.graded_by = graded_by
        response.graded_at = utcnow()
        return response.model_copy()
