"""Reload-safe countdown for an attempt.

Remaining time is never decremented in memory. Every tick re-reads the
persisted anchor (start time + duration) and derives the remaining seconds
from the wall clock, so closing and reopening a session lands on the right
value.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Literal, Optional

from exam_engine.errors import TransientPersistenceError
from exam_engine.storage.anchors import AnchorStore, duration_key, start_key

logger = logging.getLogger(__name__)

ExpiredListener = Callable[[str], Awaitable[None]]
Now = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def remaining_seconds(started_at: datetime, duration_seconds: int, now: datetime) -> int:
    elapsed = math.floor((_as_utc(now) - _as_utc(started_at)).total_seconds())
    return max(0, duration_seconds - elapsed)


def format_remaining(seconds: int) -> str:
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def warning_level(seconds: int, warning_at: int = 600, critical_at: int = 300) -> Literal["normal", "warning", "critical"]:
    if seconds < critical_at:
        return "critical"
    if seconds < warning_at:
        return "warning"
    return "normal"


class SessionClock:
    def __init__(
        self,
        anchors: AnchorStore,
        *,
        now: Optional[Now] = None,
        tick_seconds: float = 1.0,
    ) -> None:
        self.anchors = anchors
        self.now = now or _utcnow
        self.tick_seconds = tick_seconds

        self.attempt_id: Optional[str] = None
        # Server-recorded anchor, used when the durable copy is missing or unreadable.
        self._started_at: Optional[datetime] = None
        self._duration_seconds = 0

        self._remaining = 0
        self._expired = False
        self._listeners: list[ExpiredListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_expired(self, listener: ExpiredListener) -> None:
        self._listeners.append(listener)

    async def initialize(self, attempt_id: str, started_at: datetime, duration_seconds: int) -> int:
        self.attempt_id = attempt_id
        self._started_at = _as_utc(started_at)
        self._duration_seconds = int(duration_seconds)
        self._remaining = remaining_seconds(self._started_at, self._duration_seconds, self.now())

        try:
            await self.anchors.set(start_key(attempt_id), self._started_at.isoformat())
            await self.anchors.set(duration_key(attempt_id), str(self._duration_seconds))
        except TransientPersistenceError as exc:
            logger.warning(f"Could not persist countdown anchor for {attempt_id}: {exc}")
        return self._remaining

    async def _read_anchor(self) -> tuple[datetime, int]:
        if self.attempt_id is None or self._started_at is None:
            raise RuntimeError("SessionClock anchor read before initialize()")
        try:
            raw_start = await self.anchors.get(start_key(self.attempt_id))
            raw_duration = await self.anchors.get(duration_key(self.attempt_id))
        except TransientPersistenceError as exc:
            logger.warning(f"Anchor read failed for {self.attempt_id}, using in-memory anchor: {exc}")
            return self._started_at, self._duration_seconds

        if raw_start is None or raw_duration is None:
            return self._started_at, self._duration_seconds
        try:
            return datetime.fromisoformat(raw_start), int(raw_duration)
        except ValueError:
            logger.warning(f"Corrupt anchor for {self.attempt_id}, using in-memory anchor")
            return self._started_at, self._duration_seconds

    async def tick(self) -> int:
        if self.attempt_id is None:
            raise RuntimeError("SessionClock.tick() called before initialize()")

        started_at, duration = await self._read_anchor()
        self._remaining = remaining_seconds(started_at, duration, self.now())

        if self._remaining == 0 and not self._expired:
            self._expired = True
            logger.info(f"Attempt {self.attempt_id} countdown expired")
            await self.clear()
            for listener in list(self._listeners):
                await listener(self.attempt_id)
        return self._remaining

    async def clear(self) -> None:
        if self.attempt_id is None:
            return
        try:
            await self.anchors.clear(start_key(self.attempt_id))
            await self.anchors.clear(duration_key(self.attempt_id))
        except TransientPersistenceError as exc:
            logger.warning(f"Could not clear countdown anchor for {self.attempt_id}: {exc}")

    async def _run(self) -> None:
        while not self._expired:
            await self.tick()
            if self._expired:
                break
            await asyncio.sleep(self.tick_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"session-clock-{self.attempt_id}")

    def stop(self) -> None:
        task, self._task = self._task, None
        # A listener running inside the tick loop may call stop(); the loop ends on its own.
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
