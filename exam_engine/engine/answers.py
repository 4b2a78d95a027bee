"""Per-question answer cache with create-or-update persistence.

``record()`` updates local state immediately and hands the value to a writer
task owned by that question. Each question has at most one writer at a
time; values recorded while a write is outstanding are picked up by the same
writer once the current call returns, so an ``update`` can never overtake
the ``create`` it depends on. The "persisted" flag only advances after the
collaborator confirms the write.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, Optional, Set

from exam_engine.errors import ConcurrencyError, NotFoundError, TransientPersistenceError, ValidationError
from exam_engine.models import Question, QuestionType, ResponseValue, StudentResponse
from exam_engine.observability import get_tracer
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)

ALLOWED_SHAPES: dict[QuestionType, tuple[type, ...]] = {
    QuestionType.multiple_choice: (str,),
    QuestionType.fill_blank: (str,),
    QuestionType.short_answer: (str,),
    QuestionType.essay: (str,),
    QuestionType.speaking: (str, dict),
}


def validate_response(question: Question, value: object) -> ResponseValue:
    allowed = ALLOWED_SHAPES[question.question_type]
    if not isinstance(value, allowed):
        raise ValidationError(
            f"{question.question_type.value} answers must be one of: {', '.join(t.__name__ for t in allowed)}",
            question_id=question.id,
        )
    if isinstance(value, dict) and not all(isinstance(k, str) for k in value):
        raise ValidationError("structured answers must have string keys", question_id=question.id)
    return value  # type: ignore[return-value]


class AnswerStore:
    def __init__(self, repo: ExamRepository, questions: Iterable[Question]) -> None:
        self.repo = repo
        self.questions: Dict[str, Question] = {q.id: q for q in questions}
        self.attempt_id: Optional[str] = None

        self._values: Dict[str, ResponseValue] = {}
        self._records: Dict[str, StudentResponse] = {}
        self._persisted: Dict[str, bool] = {}
        self._answered: Set[str] = set()

        # Monotonic per-question versions: recorded vs. confirmed by the collaborator.
        self._version: Dict[str, int] = {}
        self._saved_version: Dict[str, int] = {}

        self._writers: Dict[str, asyncio.Task] = {}
        self.errors: Dict[str, Exception] = {}

    async def load(self, attempt_id: str) -> None:
        self.attempt_id = attempt_id
        for response in await self.repo.get_responses(attempt_id):
            qid = response.question_id
            self._values[qid] = response.response
            self._records[qid] = response
            self._persisted[qid] = True
            self._answered.add(qid)
            self._version[qid] = self._saved_version[qid] = 0
        logger.debug(f"Loaded {len(self._records)} responses for attempt {attempt_id}")

    # ----- read side -----

    def value(self, question_id: str) -> Optional[ResponseValue]:
        return self._values.get(question_id)

    def is_persisted(self, question_id: str) -> bool:
        return self._persisted.get(question_id, False)

    @property
    def answered_question_ids(self) -> Set[str]:
        return set(self._answered)

    @property
    def unsaved_question_ids(self) -> Set[str]:
        return {qid for qid, v in self._version.items() if self._saved_version.get(qid, -1) != v}

    @property
    def pending_writes(self) -> int:
        return len(self._writers)

    def snapshot(self) -> Dict[str, StudentResponse]:
        """Latest known response per question, local values over persisted records."""
        if self.attempt_id is None:
            raise RuntimeError("AnswerStore.snapshot() called before load()")
        snap: Dict[str, StudentResponse] = {}
        for qid, value in self._values.items():
            record = self._records.get(qid)
            if record is None:
                snap[qid] = StudentResponse(attempt_id=self.attempt_id, question_id=qid, response=value)
            else:
                snap[qid] = record.model_copy(update={"response": value})
        return snap

    # ----- write side -----

    def record(self, question_id: str, value: object) -> asyncio.Task:
        if self.attempt_id is None:
            raise RuntimeError("AnswerStore.record() called before load()")
        question = self.questions.get(question_id)
        if question is None:
            raise ValidationError("question does not belong to this test", question_id=question_id)
        checked = validate_response(question, value)

        self._values[question_id] = checked
        self._answered.add(question_id)
        self._version[question_id] = self._version.get(question_id, 0) + 1
        return self._ensure_writer(question_id)

    def retry(self, question_id: Optional[str] = None) -> list[asyncio.Task]:
        targets = [question_id] if question_id is not None else sorted(self.unsaved_question_ids)
        return [self._ensure_writer(qid) for qid in targets if qid in self.unsaved_question_ids]

    async def flush(self, retry_failed: bool = False) -> Set[str]:
        """Wait for every outstanding write; return ids whose latest value is still unsaved."""
        if retry_failed:
            self.retry()
        while self._writers:
            await asyncio.gather(*list(self._writers.values()))
        return self.unsaved_question_ids

    def _ensure_writer(self, question_id: str) -> asyncio.Task:
        writer = self._writers.get(question_id)
        if writer is None or writer.done():
            writer = asyncio.create_task(self._drain(question_id), name=f"answer-writer-{question_id}")
            self._writers[question_id] = writer
        return writer

    async def _write_once(self, question_id: str, value: ResponseValue) -> StudentResponse:
        if self.attempt_id is None:
            raise RuntimeError("AnswerStore write attempted before load()")
        if self._persisted.get(question_id):
            try:
                return await self.repo.update_response(self.attempt_id, question_id, value)
            except NotFoundError:
                logger.warning(f"Response for {question_id} vanished remotely, re-creating")
                self._persisted[question_id] = False
                return await self._write_once(question_id, value)
        try:
            record = await self.repo.create_response(self.attempt_id, question_id, value)
        except ConcurrencyError:
            # Already exists remotely (an earlier create landed but its reply was lost).
            self._persisted[question_id] = True
            return await self.repo.update_response(self.attempt_id, question_id, value)
        self._persisted[question_id] = True
        return record

    async def _drain(self, question_id: str) -> None:
        tracer = get_tracer("answers")
        try:
            while True:
                version = self._version[question_id]
                value = self._values[question_id]
                with tracer.start_as_current_span("answer.write") as span:
                    span.set_attribute("attempt.id", str(self.attempt_id))
                    span.set_attribute("question.id", question_id)
                    span.set_attribute("answer.persisted", self.is_persisted(question_id))
                    try:
                        record = await self._write_once(question_id, value)
                    except TransientPersistenceError as exc:
                        self.errors[question_id] = exc
                        logger.warning(f"Saving answer for {question_id} failed, kept locally: {exc}")
                        return

                self._records[question_id] = record
                self._saved_version[question_id] = version
                self.errors.pop(question_id, None)
                if self._version[question_id] == version:
                    return
        finally:
            if self._writers.get(question_id) is asyncio.current_task():
                del self._writers[question_id]
