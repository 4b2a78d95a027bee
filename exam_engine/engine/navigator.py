from __future__ import annotations

from typing import Iterable, Optional

from exam_engine.engine.answers import AnswerStore
from exam_engine.errors import ValidationError
from exam_engine.models import Progress, Question, QuestionProgress


class Navigator:
    """Question traversal; progress is always derived from the AnswerStore."""

    def __init__(self, questions: Iterable[Question], answers: AnswerStore) -> None:
        self.questions: list[Question] = sorted(questions, key=lambda q: q.order)
        self.answers = answers
        self.current_question_index = 0

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.current_question_index]

    def navigate(self, index: int) -> Question:
        if not 0 <= index < len(self.questions):
            raise ValidationError(f"question index {index} out of range", total=len(self.questions))
        self.current_question_index = index
        return self.questions[index]

    def next(self) -> Optional[Question]:
        if self.questions:
            self.current_question_index = min(self.current_question_index + 1, len(self.questions) - 1)
        return self.current_question

    def previous(self) -> Optional[Question]:
        self.current_question_index = max(self.current_question_index - 1, 0)
        return self.current_question

    def index_of(self, question_id: str) -> int:
        for i, question in enumerate(self.questions):
            if question.id == question_id:
                return i
        raise ValidationError("question does not belong to this test", question_id=question_id)

    def progress(self) -> Progress:
        total = len(self.questions)
        answered = len({q.id for q in self.questions} & self.answers.answered_question_ids)
        percent = round(answered / total * 100, 2) if total else 0.0
        return Progress(answered=answered, total=total, percent=percent)

    def statuses(self) -> list[QuestionProgress]:
        answered = self.answers.answered_question_ids
        out: list[QuestionProgress] = []
        for i, question in enumerate(self.questions):
            if i == self.current_question_index:
                status = "current"
            elif question.id in answered:
                status = "answered"
            else:
                status = "unanswered"
            out.append(QuestionProgress(question_id=question.id, index=i, status=status))
        return out
