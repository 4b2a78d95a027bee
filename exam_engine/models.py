from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class QuestionType(str, Enum):
    multiple_choice = "multiple_choice"
    fill_blank = "fill_blank"
    short_answer = "short_answer"
    essay = "essay"
    speaking = "speaking"


class AttemptStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"


class MockTestCategory(str, Enum):
    reading = "reading"
    listening = "listening"
    writing = "writing"
    speaking = "speaking"


ResponseValue = Union[str, list[str], dict[str, Any]]


class MockTest(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str = ""
    description: str = ""
    category: MockTestCategory = MockTestCategory.reading
    duration: int = Field(ge=0, description="minutes")
    total_marks: int = Field(default=0, ge=0)
    scheduled_date: Optional[datetime] = None
    is_active: bool = True
    instructions: Optional[str] = None

    @property
    def duration_seconds(self) -> int:
        return self.duration * 60


class QuestionOption(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    is_correct: bool = False


def parse_option(raw: Any) -> Any:
    """Options are stored by the backend as JSON strings; decode them.

    A string that is not a JSON object is kept as a plain, non-correct option.
    """
    if not isinstance(raw, str):
        return raw
    try:
        decoded = json.loads(raw)
    except ValueError:
        return {"text": raw, "is_correct": False}
    if not isinstance(decoded, dict):
        return {"text": raw, "is_correct": False}
    if "isCorrect" in decoded and "is_correct" not in decoded:
        decoded["is_correct"] = decoded.pop("isCorrect")
    return decoded


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    mock_test_id: str
    question_type: QuestionType
    question_text: str = ""
    options: Optional[list[QuestionOption]] = None
    correct_answer: Optional[Union[str, list[str]]] = None
    marks: int = Field(ge=1)
    order: int = 0
    time_limit: Optional[int] = Field(default=None, description="seconds")
    instructions: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _decode_options(cls, value: Any) -> Any:
        if value is None:
            return None
        return [parse_option(opt) for opt in value]

    @property
    def correct_option(self) -> Optional[QuestionOption]:
        return next((opt for opt in self.options or [] if opt.is_correct), None)


class StudentAttempt(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    mock_test_id: str
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    status: AttemptStatus = AttemptStatus.in_progress
    total_score: Optional[float] = None
    percentage_score: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.completed


class StudentResponse(BaseModel):
    id: str = Field(default_factory=new_id)
    attempt_id: str
    question_id: str
    response: ResponseValue
    score: Optional[float] = None
    feedback: Optional[str] = None
    graded_at: Optional[datetime] = None
    graded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ===== Scoring =====


class GradeOutcome(str, Enum):
    correct = "correct"
    incorrect = "incorrect"
    unanswered = "unanswered"
    pending = "pending"
    graded = "graded"


class QuestionGrade(BaseModel):
    question_id: str
    question_type: QuestionType
    marks: int
    outcome: GradeOutcome
    awarded: float = 0.0

    @property
    def counts_toward_total(self) -> bool:
        return self.outcome != GradeOutcome.pending


class ScoreReport(BaseModel):
    grades: list[QuestionGrade] = Field(default_factory=list)
    total_score: float = 0.0
    total_possible_score: int = 0
    max_possible_score: int = 0
    pending_marks: int = 0
    percentage_score: int = 0

    def count(self, outcome: GradeOutcome) -> int:
        return sum(1 for g in self.grades if g.outcome == outcome)

    @property
    def pending_question_ids(self) -> list[str]:
        return [g.question_id for g in self.grades if g.outcome == GradeOutcome.pending]


class SubmissionResult(BaseModel):
    attempt: StudentAttempt
    report: Optional[ScoreReport] = None
    duplicate: bool = False
    unsaved_question_ids: list[str] = Field(default_factory=list)


# ===== Session / API DTOs =====


class StartAttemptRequest(BaseModel):
    user_id: str
    mock_test_id: str


class RecordAnswerRequest(BaseModel):
    response: ResponseValue


class NavigateRequest(BaseModel):
    index: int


class GradeResponseRequest(BaseModel):
    score: float = Field(ge=0)
    feedback: str = ""
    graded_by: Literal["manual", "ai"] = "manual"


class QuestionProgress(BaseModel):
    question_id: str
    index: int
    status: Literal["current", "answered", "unanswered"]


class Progress(BaseModel):
    answered: int
    total: int
    percent: float


class SessionState(BaseModel):
    attempt_id: str
    mock_test_id: str
    status: AttemptStatus
    current_question_index: int
    current_question: Optional[Question] = None
    remaining_seconds: int
    remaining_display: str
    time_warning: Literal["normal", "warning", "critical"]
    answered_question_ids: list[str] = Field(default_factory=list)
    unsaved_question_ids: list[str] = Field(default_factory=list)
    progress: Progress
    questions: list[QuestionProgress] = Field(default_factory=list)
    last_error: Optional[str] = None
