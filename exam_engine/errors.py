from __future__ import annotations


class ExamEngineError(Exception):
    """Base class for every error raised by the exam session engine."""

    status_code = 500

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class TransientPersistenceError(ExamEngineError):
    """Network or service failure on a create/update/complete call.

    Local state is retained and the operation may be retried.
    """

    status_code = 503
    retryable = True


class NotFoundError(ExamEngineError):
    """Attempt, mock test, question or response does not exist."""

    status_code = 404


class ValidationError(ExamEngineError):
    """Malformed input rejected locally, never sent to the collaborator."""

    status_code = 422


class ConcurrencyError(ExamEngineError):
    """A state transition lost a race (second completion, duplicate create)."""

    status_code = 409
