from __future__ import annotations

import os

os.environ.setdefault("EXAM_OBSERVABILITY_ENABLED", "false")
os.environ.setdefault("EXAM_CLOCK_AUTOSTART", "false")

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from exam_engine.errors import TransientPersistenceError
from exam_engine.models import MockTest, Question, QuestionOption, QuestionType, ResponseValue, StudentResponse
from exam_engine.storage.anchors import InMemoryAnchorStore
from exam_engine.storage.inmemory import InMemoryExamRepository

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeNow:
    """Settable wall clock passed to SessionClock."""

    def __init__(self, start: datetime = T0) -> None:
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += timedelta(seconds=seconds)


class FlakyRepository(InMemoryExamRepository):
    """In-memory repository with call counting, failure injection and write gates."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()
        self.gates: dict[str, asyncio.Event] = {}

    def fail(self, method: str, times: int = 1) -> None:
        self.failures[method] += times

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    async def _enter(self, method: str) -> None:
        self.calls[method] += 1
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        if self.failures[method] > 0:
            self.failures[method] -= 1
            raise TransientPersistenceError(f"{method} unavailable")

    async def create_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        await self._enter("create_response")
        return await super().create_response(attempt_id, question_id, value)

    async def update_response(self, attempt_id: str, question_id: str, value: ResponseValue) -> StudentResponse:
        await self._enter("update_response")
        return await super().update_response(attempt_id, question_id, value)

    async def complete_attempt(self, attempt_id: str, total_score: float, percentage_score: int):
        await self._enter("complete_attempt")
        return await super().complete_attempt(attempt_id, total_score, percentage_score)


class FlakyAnchorStore(InMemoryAnchorStore):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    async def get(self, key: str) -> Optional[str]:
        if self.broken:
            raise TransientPersistenceError("storage unavailable")
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        if self.broken:
            raise TransientPersistenceError("storage unavailable")
        await super().set(key, value)


def mcq(mock_test_id: str, qid: str, correct: str, wrong: str, marks: int = 5, order: int = 0) -> Question:
    return Question(
        id=qid,
        mock_test_id=mock_test_id,
        question_type=QuestionType.multiple_choice,
        question_text=f"Question {qid}",
        options=[QuestionOption(text=correct, is_correct=True), QuestionOption(text=wrong)],
        marks=marks,
        order=order,
    )


@pytest.fixture
def now() -> FakeNow:
    return FakeNow()


@pytest.fixture
def repo() -> FlakyRepository:
    return FlakyRepository()


@pytest.fixture
def anchors() -> FlakyAnchorStore:
    return FlakyAnchorStore()


@pytest.fixture
async def two_mcq_test(repo: FlakyRepository) -> MockTest:
    """Scenario A fixture: two multiple choice questions worth 5 marks each, 1 minute long."""
    mock_test = MockTest(id="mt-a", title="Reading 1", duration=1, total_marks=10)
    await repo.save_mock_test(mock_test)
    await repo.save_question(mcq(mock_test.id, "q1", "Paris", "Lyon", order=1))
    await repo.save_question(mcq(mock_test.id, "q2", "Berlin", "Bonn", order=2))
    return mock_test


@pytest.fixture
async def attempt(repo: FlakyRepository, two_mcq_test: MockTest, now: FakeNow):
    created = await repo.create_attempt("student-1", two_mcq_test.id)
    created.started_at = now()
    repo.attempts[created.id].started_at = now()
    return created
