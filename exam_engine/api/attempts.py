from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Response, status

from exam_engine.engine.attempts import start_attempt
from exam_engine.engine.grading import build_report, grade_response
from exam_engine.models import (
    GradeResponseRequest,
    NavigateRequest,
    RecordAnswerRequest,
    ScoreReport,
    SessionState,
    StartAttemptRequest,
    StudentAttempt,
    SubmissionResult,
)
from exam_engine.storage.repo import ExamRepository
from exam_engine.wiring import SessionManager, get_repo, get_sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attempts", tags=["attempts"])


def log_writer_failure(task: asyncio.Task) -> None:
    # Transient failures are already kept on the AnswerStore for retry.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background answer write {task.get_name()} failed: {exc!r}")


@router.post("", response_model=StudentAttempt, status_code=status.HTTP_201_CREATED)
async def create_attempt(req: StartAttemptRequest, repo: ExamRepository = Depends(get_repo)) -> StudentAttempt:
    return await start_attempt(repo, req.user_id, req.mock_test_id)


@router.get("/{attempt_id}/session", response_model=SessionState)
async def get_session(attempt_id: str, sessions: SessionManager = Depends(get_sessions)) -> SessionState:
    session = await sessions.get(attempt_id)
    await session.refresh()
    return session.state()


@router.delete("/{attempt_id}/session", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(attempt_id: str, sessions: SessionManager = Depends(get_sessions)) -> Response:
    sessions.close(attempt_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/{attempt_id}/responses/{question_id}",
    response_model=SessionState,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_answer(
    attempt_id: str,
    question_id: str,
    req: RecordAnswerRequest,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionState:
    # Accepted, not awaited: the write completes in the background.
    session = await sessions.get(attempt_id)
    session.record(question_id, req.response).add_done_callback(log_writer_failure)
    return session.state()


@router.post("/{attempt_id}/navigate", response_model=SessionState)
async def navigate(
    attempt_id: str, req: NavigateRequest, sessions: SessionManager = Depends(get_sessions)
) -> SessionState:
    session = await sessions.get(attempt_id)
    session.navigate(req.index)
    return session.state()


@router.post("/{attempt_id}/submit", response_model=SubmissionResult)
async def submit(attempt_id: str, sessions: SessionManager = Depends(get_sessions)) -> SubmissionResult:
    return await sessions.submit(attempt_id)


@router.get("/{attempt_id}/result", response_model=ScoreReport)
async def get_result(attempt_id: str, repo: ExamRepository = Depends(get_repo)) -> ScoreReport:
    return await build_report(repo, attempt_id)


@router.post("/{attempt_id}/responses/{question_id}/grade", response_model=ScoreReport)
async def grade(
    attempt_id: str,
    question_id: str,
    req: GradeResponseRequest,
    repo: ExamRepository = Depends(get_repo),
) -> ScoreReport:
    return await grade_response(repo, attempt_id, question_id, req.score, req.feedback, req.graded_by)
