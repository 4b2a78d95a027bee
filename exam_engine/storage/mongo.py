from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from exam_engine.errors import ConcurrencyError, NotFoundError, TransientPersistenceError
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

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _translate_errors(operation: str, **context: object) -> AsyncIterator[None]:
    try:
        yield
    except DuplicateKeyError as exc:
        raise ConcurrencyError(f"{operation}: duplicate record", **context) from exc
    except PyMongoError as exc:
        logger.error(f"{operation} failed: {exc}")
        raise TransientPersistenceError(f"{operation} failed", **context) from exc


class MongoExamRepository(ExamRepository):
    def __init__(self, mongo_uri: str, db_name: str) -> None:
        self.client = AsyncIOMotorClient(mongo_uri)
        self.db = self.client[db_name]
        self.mock_tests = self.db["mock_tests"]
        self.questions = self.db["questions"]
        self.attempts = self.db["student_attempts"]
        self.responses = self.db["student_responses"]
        self._indexes_ready = False

    async def ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        async with _translate_errors("ensure_indexes"):
            await self.responses.create_index(
                [("attempt_id", ASCENDING), ("question_id", ASCENDING)], unique=True
            )
            await self.attempts.create_index([("user_id", ASCENDING), ("mock_test_id", ASCENDING)])
            await self.questions.create_index([("mock_test_id", ASCENDING), ("order", ASCENDING)])
        self._indexes_ready = True

    async def get_mock_test(self, mock_test_id: str) -> MockTest:
        async with _translate_errors("get_mock_test", mock_test_id=mock_test_id):
            doc = await self.mock_tests.find_one({"id": mock_test_id})
        if not doc:
            raise NotFoundError("mock test not found", mock_test_id=mock_test_id)
        return MockTest.model_validate(doc)

    async def save_mock_test(self, mock_test: MockTest) -> MockTest:
        async with _translate_errors("save_mock_test", mock_test_id=mock_test.id):
            await self.mock_tests.update_one(
                {"id": mock_test.id}, {"$set": mock_test.model_dump(mode="json")}, upsert=True
            )
        return mock_test

    async def get_questions(self, mock_test_id: str) -> list[Question]:
        async with _translate_errors("get_questions", mock_test_id=mock_test_id):
            cursor = self.questions.find({"mock_test_id": mock_test_id}).sort("order", ASCENDING)
            docs = await cursor.to_list(length=10_000)
        return [Question.model_validate(d) for d in docs]

    async def save_question(self, question: Question) -> Question:
        async with _translate_errors("save_question", question_id=question.id):
            await self.questions.update_one(
                {"id": question.id}, {"$set": question.model_dump(mode="json")}, upsert=True
            )
        return question

    async def create_attempt(self, user_id: str, mock_test_id: str) -> StudentAttempt:
        await self.get_mock_test(mock_test_id)
        attempt = StudentAttempt(user_id=user_id, mock_test_id=mock_test_id, started_at=utcnow())
        async with _translate_errors("create_attempt", user_id=user_id, mock_test_id=mock_test_id):
            await self.attempts.insert_one(attempt.model_dump(mode="json"))
        return attempt

    async def get_attempt(self, attempt_id: str) -> StudentAttempt:
        async with _translate_errors("get_attempt", attempt_id=attempt_id):
            doc = await self.attempts.find_one({"id": attempt_id})
        if not doc:
            raise NotFoundError("attempt not found", attempt_id=attempt_id)
        return StudentAttempt.model_validate(doc)

    async def find_active_attempt(self, user_id: str, mock_test_id: str) -> Optional[StudentAttempt]:
        async with _translate_errors("find_active_attempt", user_id=user_id, mock_test_id=mock_test_id):
            doc = await self.attempts.find_one(
                {"user_id": user_id, "mock_test_id": mock_test_id, "status": AttemptStatus.in_progress.value}
            )
        return StudentAttempt.model_validate(doc) if doc else None

    async def complete_attempt(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        # The status filter makes the transition a single compare-and-set.
        async with _translate_errors("complete_attempt", attempt_id=attempt_id):
            doc = await self.attempts.find_one_and_update(
                {"id": attempt_id, "status": AttemptStatus.in_progress.value},
                {
                    "$set": {
                        "completed_at": utcnow().isoformat(),
                        "status": AttemptStatus.completed.value,
                        "total_score": total_score,
                        "percentage_score": percentage_score,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        if doc:
            return StudentAttempt.model_validate(doc)
        existing = await self.get_attempt(attempt_id)
        raise ConcurrencyError("attempt already completed", attempt_id=existing.id)

    async def update_attempt_scores(self, attempt_id: str, total_score: float, percentage_score: int) -> StudentAttempt:
        async with _translate_errors("update_attempt_scores", attempt_id=attempt_id):
            doc = await self.attempts.find_one_and_update(
                {"id": attempt_id},
                {"$set": {"total_score": total_score, "percentage_score": percentage_score}},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFoundError("attempt not found", attempt_id=attempt_id)
        return StudentAttempt.model_validate(doc)

    async def get_responses(self, attempt_id: str) -> list[StudentResponse]:
        async with _translate_errors("get_responses", attempt_id=attempt_id):
            docs = await self.responses.find({"attempt_id": attempt_id}).to_list(length=10_000)
        return [StudentResponse.model_validate(d) for d in docs]

    async def create_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        await self.ensure_indexes()
        response = StudentResponse(attempt_id=attempt_id, question_id=question_id, response=value)
        async with _translate_errors("create_response", attempt_id=attempt_id, question_id=question_id):
            await self.responses.insert_one(response.model_dump(mode="json"))
        return response

    async def update_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        async with _translate_errors("update_response", attempt_id=attempt_id, question_id=question_id):
            doc = await self.responses.find_one_and_update(
                {"attempt_id": attempt_id, "question_id": question_id},
                {"$set": {"response": value, "updated_at": utcnow().isoformat()}},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFoundError("response not found", attempt_id=attempt_id, question_id=question_id)
        return StudentResponse.model_validate(doc)

    async def grade_response(
        self, attempt_id: str, question_id: str, score: float, feedback: str, graded_by: str
    ) -> StudentResponse:
        async with _translate_errors("grade_response", attempt_id=attempt_id, question_id=question_id):
            doc = await self.responses.find_one_and_update(
                {"attempt_id": attempt_id, "question_id": question_id},
                {
                    "$set": {
                        "score": score,
                        "feedback": feedback,
                        "graded_by": graded_by,
                        "graded_at": utcnow().isoformat(),
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            raise NotFoundError("response not found", attempt_id=attempt_id, question_id=question_id)
        return StudentResponse.model_validate(doc)
