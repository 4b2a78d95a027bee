from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from exam_engine.models import MockTest, Question, ResponseValue, StudentAttempt, StudentResponse


class ExamRepository(ABC):
    """Persistence collaborator consumed by the session engine.

    Implementations raise the engine's error taxonomy: ``NotFoundError`` for
    missing records, ``TransientPersistenceError`` for backend failures and
    ``ConcurrencyError`` when a write would break a uniqueness or
    state-transition rule.
    """

    @abstractmethod
    async def get_mock_test(self, mock_test_id: str) -> MockTest:
        raise NotImplementedError

    @abstractmethod
    async def save_mock_test(self, mock_test: MockTest) -> MockTest:
        raise NotImplementedError

    @abstractmethod
    async def get_questions(self, mock_test_id: str) -> list[Question]:
        raise NotImplementedError

    @abstractmethod
    async def save_question(self, question: Question) -> Question:
        raise NotImplementedError

    @abstractmethod
    async def create_attempt(self, user_id: str, mock_test_id: str) -> StudentAttempt:
        raise NotImplementedError

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> StudentAttempt:
        raise NotImplementedError

    @abstractmethod
    async def find_active_attempt(self, user_id: str, mock_test_id: str) -> Optional[StudentAttempt]:
        raise NotImplementedError

    @abstractmethod
    async def complete_attempt(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        """Atomically set completed_at, status=completed and both scores.

        Raises ``ConcurrencyError`` if the attempt is already completed.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_attempt_scores(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        raise NotImplementedError

    @abstractmethod
    async def get_responses(self, attempt_id: str) -> list[StudentResponse]:
        raise NotImplementedError

    @abstractmethod
    async def create_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        """Raises ``ConcurrencyError`` if a response for the pair already exists."""
        raise NotImplementedError

    @abstractmethod
    async def update_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        """Raises ``NotFoundError`` if no response for the pair exists."""
        raise NotImplementedError

    @abstractmethod
    async def grade_response(
        self, attempt_id: str, question_id: str, score: float, feedback: str, graded_by: str
    ) -> StudentResponse:
        raise NotImplementedError
