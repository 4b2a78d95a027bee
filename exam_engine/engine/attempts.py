from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from exam_engine.errors import ValidationError
from exam_engine.models import MockTest, StudentAttempt
from exam_engine.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


def is_available(mock_test: MockTest, now: Optional[datetime] = None) -> bool:
    """A test can be started once it is active and its scheduled date (if any) has passed."""
    if not mock_test.is_active:
        return False
    if mock_test.scheduled_date is None:
        return True
    now = now or datetime.now(timezone.utc)
    scheduled = mock_test.scheduled_date
    if scheduled.tzinfo is None:
        scheduled = scheduled.replace(tzinfo=timezone.utc)
    return now >= scheduled


async def start_attempt(
    repo: ExamRepository, user_id: str, mock_test_id: str, now: Optional[datetime] = None
) -> StudentAttempt:
    """Create an attempt, or resume the user's in-progress one for the same test."""
    mock_test = await repo.get_mock_test(mock_test_id)
    if not is_available(mock_test, now):
        raise ValidationError("mock test is not available yet", mock_test_id=mock_test_id)

    existing = await repo.find_active_attempt(user_id, mock_test_id)
    if existing is not None:
        logger.info(f"User {user_id} resumed attempt {existing.id} for test {mock_test_id}")
        return existing

    attempt = await repo.create_attempt(user_id, mock_test_id)
    logger.info(f"User {user_id} started attempt {attempt.id} for test {mock_test_id}")
    return attempt
