from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Dict

from exam_engine.engine.session import ExamSession
from exam_engine.models import SubmissionResult
from exam_engine.settings import settings
from exam_engine.storage.anchors import AnchorStore, InMemoryAnchorStore, MongoAnchorStore
from exam_engine.storage.inmemory import InMemoryExamRepository
from exam_engine.storage.mongo import MongoExamRepository
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


@lru_cache
def get_repo() -> ExamRepository:
    if settings.storage_backend == "mongo":
        return MongoExamRepository(settings.mongodb_uri, settings.mongodb_db)
    return InMemoryExamRepository()


@lru_cache
def get_anchor_store() -> AnchorStore:
    if settings.storage_backend == "mongo":
        return MongoAnchorStore(settings.mongodb_uri, settings.mongodb_db, settings.anchor_collection)
    return InMemoryAnchorStore()


class SessionManager:
    """Keeps one live ExamSession per in-progress attempt inside this process.

    A session leaves the registry once its attempt completes, either through
    ``submit()`` or the clock's auto-submit.
    """

    def __init__(self, repo: ExamRepository, anchors: AnchorStore, autostart_clock: bool = True) -> None:
        self.repo = repo
        self.anchors = anchors
        self.autostart_clock = autostart_clock
        self.sessions: Dict[str, ExamSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, attempt_id: str) -> ExamSession:
        session = self.sessions.get(attempt_id)
        if session is not None:
            return session
        async with self._lock:
            session = self.sessions.get(attempt_id)
            if session is not None:
                return session
            session = await ExamSession.open(self.repo, self.anchors, attempt_id)
            if session.attempt.is_completed:
                return session
            session.clock.on_expired(lambda _: self._discard_if_completed(session))
            if self.autostart_clock:
                session.start()
            self.sessions[attempt_id] = session
        return session

    async def submit(self, attempt_id: str) -> SubmissionResult:
        session = await self.get(attempt_id)
        try:
            return await session.submit()
        finally:
            await self._discard_if_completed(session)

    async def _discard_if_completed(self, session: ExamSession) -> None:
        attempt_id = session.attempt.id
        if session.attempt.is_completed and self.sessions.get(attempt_id) is session:
            del self.sessions[attempt_id]
            session.close()
            logger.info(f"Released session for completed attempt {attempt_id}")

    def close(self, attempt_id: str) -> bool:
        session = self.sessions.pop(attempt_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"Closed session view for attempt {attempt_id}")
        return True

    def close_all(self) -> None:
        for attempt_id in list(self.sessions):
            self.close(attempt_id)


@lru_cache
def get_sessions() -> SessionManager:
    return SessionManager(get_repo(), get_anchor_store(), autostart_clock=settings.clock_autostart)
